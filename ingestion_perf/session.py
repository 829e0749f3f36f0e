"""
Per-session context and the sequential step runner.

A virtual session owns exactly one :class:`SessionContext`.  Steps receive
it by reference, read the fields earlier steps produced and fill in their
own.  Nothing in the context is visible to other sessions; shared values go
through :class:`~ingestion_perf.cache.SharedRegistryCache` instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, fields
from typing import Any

from ingestion_perf.errors import DataError, SessionAborted

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """Mutable state of one virtual session."""

    external_id: str | None = None
    login: str | None = None
    admin_token: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    source_id: str | None = None
    topic: str | None = None

    def require(self, field: str) -> Any:
        """
        Return a field a previous step must have set.

        Raises:
            DataError: If the field is still unset.
        """
        if field not in _FIELD_NAMES:
            raise AttributeError(f"SessionContext has no field {field!r}")
        value = getattr(self, field)
        if value is None:
            raise DataError(f"Session field '{field}' has not been set")
        return value


_FIELD_NAMES = frozenset(f.name for f in fields(SessionContext))


@dataclass(frozen=True)
class Step:
    """A named unit of work inside a session."""

    name: str
    action: Callable[[SessionContext], None]


def run_steps(context: SessionContext, steps: Iterable[Step]) -> SessionContext:
    """
    Execute *steps* in order against *context*.

    The first :class:`SessionAborted` stops the sequence; the exception is
    tagged with the failing step name and re-raised for the orchestrator.

    Returns:
        The same *context*, after every step ran.
    """
    for step in steps:
        logger.debug("Running step %r", step.name)
        try:
            step.action(context)
        except SessionAborted as exc:
            exc.step = step.name
            raise
    return context
