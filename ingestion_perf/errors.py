"""
Error taxonomy for virtual sessions.

Every error that should stop a single virtual session derives from
:class:`SessionAborted`.  The orchestrator catches that base class, records
the session as aborted and lets sibling sessions carry on.  Anything else
(notably :class:`GeneratorDefect`) is a bug and propagates.

Key Concepts Demonstrated:
- Fail-fast sessions: the first failing step aborts the remaining ones
- Separating transport, protocol and data failures for clearer logs
- Keeping defects out of the recoverable hierarchy
"""

from __future__ import annotations

from collections.abc import Iterable


class SessionAborted(Exception):
    """Base class for errors that are fatal to the owning session only."""

    #: Name of the step that raised, filled in by the step runner.
    step: str | None = None


class TransportError(SessionAborted):
    """The request never produced an HTTP response (connection, timeout)."""

    def __init__(self, request_name: str, reason: str):
        super().__init__(f"{request_name}: transport failure ({reason})")
        self.request_name = request_name
        self.reason = reason


class ProtocolError(SessionAborted):
    """The server answered with a status code the step does not accept."""

    def __init__(self, request_name: str, status_code: int, expected: Iterable[int]):
        self.request_name = request_name
        self.status_code = status_code
        self.expected = tuple(expected)
        expected_text = "/".join(str(code) for code in self.expected)
        super().__init__(
            f"{request_name}: expected {expected_text}, got {status_code}"
        )


class ConflictError(ProtocolError):
    """A create request was rejected because the resource already exists."""


class DataError(SessionAborted):
    """A value the session depends on is missing or malformed."""


class GeneratorDefect(Exception):
    """Synthetic data broke its own invariants; never a runtime condition."""
