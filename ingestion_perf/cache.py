"""
Run-scoped registry of values shared between virtual sessions.

Sessions of one phase fill these maps and sessions of later phases read
them.  Writers serialize on a single lock; readers never take it.  A reader
only ever looks for a value written in an *earlier* phase, and the phase
barrier guarantees that write has already happened, so a plain ``dict.get``
is enough.

Two write disciplines are used:

- **write-once** (resource DTOs, schema bindings, parsed schemas): the first
  value stored under a key wins and later writes return that winner.
- **last-writer-wins** (token pairs): every refresh replaces the pair.

Key Concepts Demonstrated:
- Atomic upserts behind one ``threading.Lock`` (gevent-patched under Locust)
- Frozen dataclasses for values that must be replaced, never mutated
- Lookup helpers that raise :class:`~ingestion_perf.errors.DataError` so a
  missing dependency aborts the session instead of producing bad requests
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Any

from ingestion_perf.errors import DataError

logger = logging.getLogger(__name__)

KEY = "key"
VALUE = "value"
DIRECTIONS = (KEY, VALUE)


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh tokens issued together for one subject login."""

    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class SchemaBinding:
    """Registry schema assigned to one side (key or value) of a topic."""

    topic: str
    direction: str
    schema_id: int
    version: int = 1
    schema: str | None = None

    def __post_init__(self):
        if self.direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {DIRECTIONS}, got {self.direction!r}")


class SharedRegistryCache:
    """Concurrency-safe maps linking natural keys to DTOs, schemas and tokens."""

    def __init__(self):
        self._lock = threading.Lock()
        self._resources: dict[tuple[str, str], dict[str, Any]] = {}
        self._schemas: dict[tuple[str, str], SchemaBinding] = {}
        self._parsed_schemas: dict[int, Any] = {}
        self._tokens: dict[str, TokenPair] = {}
        self._token_locks: dict[str, threading.Lock] = {}
        self._subjects: dict[str, str] = {}

    # -----------------------------------------------------------------
    # Resource DTOs (write-once)
    # -----------------------------------------------------------------

    def resource(self, kind: str, key: str) -> dict[str, Any] | None:
        """Return the DTO stored for ``(kind, key)``, or ``None``."""
        return self._resources.get((kind, key))

    def require_resource(self, kind: str, key: str) -> dict[str, Any]:
        """Return the DTO stored for ``(kind, key)`` or raise :class:`DataError`."""
        dto = self.resource(kind, key)
        if dto is None:
            raise DataError(f"No {kind} '{key}' in the registry cache")
        return dto

    def put_resource(self, kind: str, key: str, dto: dict[str, Any]) -> dict[str, Any]:
        """
        Store *dto* unless a DTO already exists for the key.

        Returns:
            The DTO that is stored after the call: *dto* for the first
            writer, the earlier value for everyone else.
        """
        with self._lock:
            return self._resources.setdefault((kind, key), dto)

    # -----------------------------------------------------------------
    # Schema bindings (write-once)
    # -----------------------------------------------------------------

    def schema(self, topic: str, direction: str) -> SchemaBinding | None:
        return self._schemas.get((topic, direction))

    def require_schema(self, topic: str, direction: str) -> SchemaBinding:
        """
        Return the binding for ``(topic, direction)``.

        Raises:
            DataError: If the topic was never resolved against the registry.
        """
        binding = self.schema(topic, direction)
        if binding is None:
            raise DataError(f"No {direction} schema id cached for topic '{topic}'")
        return binding

    def bind_schema(self, binding: SchemaBinding) -> SchemaBinding:
        """Store *binding* if its ``(topic, direction)`` slot is still empty."""
        slot = (binding.topic, binding.direction)
        with self._lock:
            stored = self._schemas.setdefault(slot, binding)
        if stored.schema_id != binding.schema_id:
            logger.warning(
                "Ignoring schema id %s for %s-%s; already bound to %s",
                binding.schema_id,
                binding.topic,
                binding.direction,
                stored.schema_id,
            )
        return stored

    def parsed_schema(self, schema_id: int) -> Any | None:
        return self._parsed_schemas.get(schema_id)

    def put_parsed_schema(self, schema_id: int, schema: Any) -> Any:
        with self._lock:
            return self._parsed_schemas.setdefault(schema_id, schema)

    # -----------------------------------------------------------------
    # Token pairs (last writer wins)
    # -----------------------------------------------------------------

    def tokens(self, login: str) -> TokenPair | None:
        return self._tokens.get(login)

    def require_tokens(self, login: str) -> TokenPair:
        pair = self.tokens(login)
        if pair is None:
            raise DataError(f"No token pair cached for login '{login}'")
        return pair

    def put_tokens(self, login: str, pair: TokenPair) -> None:
        """Replace the token pair for *login* as a whole."""
        with self._lock:
            self._tokens[login] = pair

    def token_lock(self, login: str) -> threading.Lock:
        """Return the lock that serializes refresh-token rotation for *login*."""
        with self._lock:
            return self._token_locks.setdefault(login, threading.Lock())

    # -----------------------------------------------------------------
    # Registered subjects
    # -----------------------------------------------------------------

    def register_subject(self, external_id: str, login: str) -> None:
        with self._lock:
            self._subjects[external_id] = login

    def subjects(self) -> list[tuple[str, str]]:
        """Return ``(external_id, login)`` pairs registered so far."""
        return list(self._subjects.items())

    def random_subject(self, rng: random.Random | None = None) -> tuple[str, str]:
        """
        Sample one registered subject uniformly at random.

        Raises:
            DataError: If no subject has been registered yet.
        """
        subjects = self.subjects()
        if not subjects:
            raise DataError("No registered subjects to sample from")
        return (rng or random).choice(subjects)
