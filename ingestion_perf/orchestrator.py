"""
Phase sequencing with barrier semantics.

A run is an ordered list of :class:`Phase` objects, each pairing a Locust
user class with an injection profile.  :class:`PhaseOrchestrator` turns
that list into the ``(user_count, spawn_rate, user_classes)`` answers of
Locust's shape API:

1. While a phase is *running*, its profile decides the user count.
2. Once the profile reports completion the phase is *draining*: the user
   count drops to zero and the orchestrator waits until no user of the
   phase is alive and no session is still in flight.
3. Only then does the next phase start (the barrier).

Sessions report their outcome through :meth:`PhaseOrchestrator.run_session`.
An aborted session stops only itself.  When ``max_aborted_sessions`` is
set, exceeding it marks the whole run as failed and the shape stops the
test.

The orchestrator also owns the run state (caches, feeders): it is created
by ``run_factory`` when the test starts and dropped when it stops.

Key Concepts Demonstrated:
- Engine-agnostic scheduling logic behind a thin ``LoadTestShape``
- Thread-safe per-phase counters used as the barrier condition
- Explicit ownership of cross-session state for the duration of a run
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from ingestion_perf.errors import SessionAborted
from ingestion_perf.injection import InjectionProfile
from ingestion_perf.session import SessionContext, Step, run_steps

logger = logging.getLogger(__name__)

COMPLETED = "completed"
ABORTED = "aborted"
INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class Phase:
    """One stage of the workflow."""

    name: str
    user_class: type
    profile: InjectionProfile


class PhaseTracker:
    """Count the sessions of one phase by outcome."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self.started = 0
        self.completed = 0
        self.aborted = 0
        self.interrupted = 0

    @property
    def finished(self) -> int:
        """Sessions that completed, aborted or were interrupted."""
        return self.completed + self.aborted + self.interrupted

    @property
    def in_flight(self) -> int:
        return self.started - self.finished

    def session_started(self) -> None:
        with self._lock:
            self.started += 1

    def session_ended(self, outcome: str) -> None:
        with self._lock:
            if outcome == COMPLETED:
                self.completed += 1
            elif outcome == ABORTED:
                self.aborted += 1
            else:
                self.interrupted += 1

    def summary(self) -> dict[str, int]:
        return {
            "started": self.started,
            "completed": self.completed,
            "aborted": self.aborted,
            "interrupted": self.interrupted,
        }


class PhaseOrchestrator:
    """
    Drive a sequence of phases through Locust's shape API.

    Args:
        phases: Phases in execution order; names must be unique.
        run_factory: Builds the run state when the test starts.
        max_aborted_sessions: Abort limit for the whole run; ``None``
            means aborted sessions never stop the run.
    """

    def __init__(
        self,
        phases: Iterable[Phase],
        run_factory: Callable[[], Any],
        *,
        max_aborted_sessions: int | None = None,
    ):
        self.phases: Sequence[Phase] = tuple(phases)
        names = [phase.name for phase in self.phases]
        if len(set(names)) != len(names):
            raise ValueError(f"Phase names must be unique: {names}")

        self._run_factory = run_factory
        self.max_aborted_sessions = max_aborted_sessions
        self.state: Any = None
        self._policy_lock = threading.Lock()
        self._reset()

    # -----------------------------------------------------------------
    # Run lifecycle
    # -----------------------------------------------------------------

    def start(self) -> None:
        """Create fresh run state and rewind to the first phase."""
        self.state = self._run_factory()
        self._reset()
        logger.info("Run started with phases: %s", ", ".join(p.name for p in self.phases))

    def stop(self) -> None:
        """Log per-phase outcomes and discard the run state."""
        for name, tracker in self._trackers.items():
            logger.info("Phase %s: %s", name, tracker.summary())
        self.state = None

    def _reset(self) -> None:
        # Locust asks the shape for its first tick before test_start fires,
        # so trackers must exist before start() is called.
        self._trackers: dict[str, PhaseTracker] = {
            phase.name: PhaseTracker(phase.name) for phase in self.phases
        }
        self._index = 0
        self._phase_started_at: float | None = None
        self._draining = False
        self.failed = False

    @property
    def current_phase(self) -> Phase | None:
        if self._index < len(self.phases):
            return self.phases[self._index]
        return None

    def phase(self, name: str) -> Phase:
        for phase in self.phases:
            if phase.name == name:
                return phase
        raise KeyError(name)

    def tracker(self, phase_name: str) -> PhaseTracker:
        return self._trackers[phase_name]

    # -----------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------

    def run_session(
        self,
        phase_name: str,
        steps: Iterable[Step] | Callable[[], Iterable[Step]],
        context: SessionContext | None = None,
    ) -> bool:
        """
        Run one session's steps and record the outcome.

        *steps* may be a factory, called once the session counts as started.

        Returns:
            True if every step completed, False if the session aborted.
        """
        tracker = self.tracker(phase_name)
        tracker.session_started()
        outcome = INTERRUPTED
        try:
            if callable(steps):
                steps = steps()
            run_steps(context or SessionContext(), steps)
            outcome = COMPLETED
        except SessionAborted as exc:
            outcome = ABORTED
            logger.warning(
                "Session aborted in phase %s at step %r: %s", phase_name, exc.step, exc
            )
        finally:
            # Anything other than success or SessionAborted (including the
            # greenlet being killed when the phase drains) is an interruption.
            tracker.session_ended(outcome)

        if outcome == ABORTED:
            self._apply_abort_policy()
        return outcome == COMPLETED

    def _apply_abort_policy(self) -> None:
        if self.max_aborted_sessions is None:
            return
        aborted = sum(tracker.aborted for tracker in self._trackers.values())
        with self._policy_lock:
            if aborted > self.max_aborted_sessions and not self.failed:
                self.failed = True
                logger.error(
                    "%d sessions aborted (limit %d); stopping the run",
                    aborted,
                    self.max_aborted_sessions,
                )

    # -----------------------------------------------------------------
    # Shape
    # -----------------------------------------------------------------

    def tick(self, elapsed: float, active_users: int) -> tuple[int, float, list[type]] | None:
        """
        Decide the user population at *elapsed* seconds into the run.

        Args:
            elapsed: Seconds since the test started.
            active_users: Users currently alive in the load generator.

        Returns:
            ``(user_count, spawn_rate, [user_class])`` or ``None`` once every
            phase has drained or the run failed.
        """
        if self.failed:
            return None

        phase = self.current_phase
        if phase is None:
            return None

        if self._phase_started_at is None:
            self._phase_started_at = elapsed
            logger.info("Starting phase %s with %r", phase.name, phase.profile)

        phase_elapsed = elapsed - self._phase_started_at
        tracker = self.tracker(phase.name)

        if not self._draining and phase.profile.is_complete(phase_elapsed, tracker):
            self._draining = True
            logger.info("Phase %s is draining", phase.name)

        if not self._draining:
            user_count, spawn_rate = phase.profile.target(phase_elapsed)
            return user_count, spawn_rate, [phase.user_class]

        if active_users == 0 and tracker.in_flight == 0:
            logger.info("Phase %s finished: %s", phase.name, tracker.summary())
            self._index += 1
            self._phase_started_at = None
            self._draining = False
            return self.tick(elapsed, active_users)

        return 0, float(max(active_users, 1)), [phase.user_class]
