"""
HTTP helpers shared by every workflow step.

Wraps Locust's :class:`~locust.clients.HttpSession` so that each request:

* is named for Locust's statistics table,
* is validated in-band with ``catch_response=True`` and marked as a
  success or failure before control returns to the step,
* carries the configured per-step timeout, and
* turns an unexpected outcome into the matching :mod:`ingestion_perf.errors`
  exception so that the owning session aborts.

Key Concepts Demonstrated:
- ``catch_response`` protocol: decide pass/fail ourselves instead of
  relying on Locust's "any 4xx is an error" default (404 is a valid
  lookup answer here)
- Bounded retry with exponential backoff for idempotent GETs only
- Small header builders reused across the management API, registry and
  gateway calls
"""

from __future__ import annotations

import base64
import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

import requests

from ingestion_perf.errors import ConflictError, DataError, ProtocolError, TransportError

logger = logging.getLogger(__name__)


class ApiClient:
    """
    Status-checking facade over a Locust HTTP session.

    Args:
        session: A Locust ``HttpSession`` (or anything exposing the same
            ``request(method, url, name=..., catch_response=...)`` call).
        timeout: Seconds before a single request is abandoned.
        get_retries: Extra attempts granted to GET requests that fail at
            the transport level.  Non-idempotent requests are never retried.
        retry_backoff: Base delay, doubled after every failed attempt.
        sleep: Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        session: Any,
        *,
        timeout: float = 30.0,
        get_retries: int = 0,
        retry_backoff: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session = session
        self.timeout = timeout
        self.get_retries = get_retries
        self.retry_backoff = retry_backoff
        self._sleep = sleep

    def get(self, path: str, *, name: str, expect: Iterable[int] = (200,), **kwargs: Any):
        """Issue a GET request; see :meth:`request`."""
        return self.request("GET", path, name=name, expect=expect, **kwargs)

    def post(self, path: str, *, name: str, expect: Iterable[int] = (200,), **kwargs: Any):
        """Issue a POST request; see :meth:`request`."""
        return self.request("POST", path, name=name, expect=expect, **kwargs)

    def request(
        self,
        method: str,
        path: str,
        *,
        name: str,
        expect: Iterable[int] = (200,),
        **kwargs: Any,
    ):
        """
        Send a request and verify its status code.

        Args:
            method: HTTP method.
            path: Path relative to the session's base URL.
            name: Label used in Locust statistics and error messages.
            expect: Status codes that count as success.
            **kwargs: Forwarded to the session (``headers``, ``params``,
                ``data``, ``json``).

        Returns:
            The response object, with its status already validated.

        Raises:
            TransportError: No response was received (after retries for GET).
            ConflictError: The server answered ``409`` and it was not expected.
            ProtocolError: Any other unexpected status code.
        """
        expected = tuple(expect)
        attempts = 1 + (self.get_retries if method.upper() == "GET" else 0)

        attempt = 0
        while True:
            try:
                return self._send(method, path, name=name, expected=expected, **kwargs)
            except TransportError as exc:
                attempt += 1
                if attempt >= attempts:
                    raise
                delay = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    "%s failed (%s); retry %d/%d in %.2fs",
                    name,
                    exc.reason,
                    attempt,
                    attempts - 1,
                    delay,
                )
                self._sleep(delay)

    def _send(self, method: str, path: str, *, name: str, expected: tuple[int, ...], **kwargs: Any):
        """Perform one attempt and translate its outcome."""
        error: Exception | None = None
        try:
            with self._session.request(
                method,
                path,
                name=name,
                catch_response=True,
                timeout=self.timeout,
                **kwargs,
            ) as response:
                status = response.status_code
                if not status:
                    # Locust reports connection errors and timeouts as status 0
                    # with the original exception attached to ``error``.
                    reason = getattr(response, "error", None) or "no response"
                    error = TransportError(name, str(reason))
                elif status in expected:
                    response.success()
                elif status == 409:
                    error = ConflictError(name, status, expected)
                else:
                    error = ProtocolError(name, status, expected)

                if error is not None:
                    response.failure(str(error))
        except requests.RequestException as exc:
            raise TransportError(name, str(exc)) from exc

        if error is not None:
            raise error
        return response


# =====================================================================
# Response helpers
# =====================================================================


def json_body(response: Any, request_name: str) -> Any:
    """
    Return the decoded JSON body of *response*.

    Raises:
        DataError: If the body is not valid JSON.
    """
    try:
        return response.json()
    except ValueError as exc:
        raise DataError(f"{request_name}: response body is not valid JSON") from exc


def json_object(response: Any, request_name: str) -> dict[str, Any]:
    """Return the JSON body of *response*, which must be an object."""
    body = json_body(response, request_name)
    if not isinstance(body, dict):
        raise DataError(f"{request_name}: expected a JSON object")
    return body


def json_list(response: Any, request_name: str) -> list[Any]:
    """Return the JSON body of *response*, which must be an array."""
    body = json_body(response, request_name)
    if not isinstance(body, list):
        raise DataError(f"{request_name}: expected a JSON array")
    return body


def require_field(body: dict[str, Any], field: str, request_name: str) -> Any:
    """
    Fetch a mandatory, non-empty field from a response object.

    Raises:
        DataError: If the field is absent, ``None`` or an empty string.
    """
    value = body.get(field)
    if value is None or value == "":
        raise DataError(f"{request_name}: response is missing '{field}'")
    return value


# =====================================================================
# Header builders
# =====================================================================


def basic_auth_headers(client_id: str, client_secret: str) -> dict[str, str]:
    """Headers for an OAuth2 token request authenticated as a client."""
    credentials = f"{client_id}:{client_secret}".encode("utf-8")
    return {
        "Authorization": "Basic " + base64.b64encode(credentials).decode("ascii"),
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }


def bearer_headers(token: str) -> dict[str, str]:
    """Standard bearer auth headers for JSON API requests."""
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
