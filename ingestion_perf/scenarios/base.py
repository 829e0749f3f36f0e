"""
Shared abstract Locust user for workflow phases.

A :class:`PlatformUser` executes *sessions*: one pass over the step list
of its phase, run through
:meth:`~ingestion_perf.orchestrator.PhaseOrchestrator.run_session` so the
orchestrator can count outcomes and hold the phase barrier.

- In an **open** phase each user runs exactly one session and then idles
  until the orchestrator drains the phase.
- In a **closed** phase a user starts a new session as soon as the
  previous one ends, keeping the concurrency at the planned level.

Concrete classes only name their phase and pick their step list from
:class:`~ingestion_perf.workflow.Workflow`.

Key Concepts Demonstrated:
- Abstract Locust base class (``abstract = True``)
- Per-user collaborators built lazily from the run state
- Run-once versus looping users driven by the injection profile
"""

from __future__ import annotations

from locust import HttpUser, task

from ingestion_perf.client import ApiClient
from ingestion_perf.session import SessionContext, Step
from ingestion_perf.workflow import Workflow


class PlatformUser(HttpUser):
    """
    Base user bound to one phase of the workflow.

    Attributes:
        phase_name: Name of the phase this class is spawned for.
        sessions_run: Number of sessions this user has started.
    """

    abstract = True
    #: Seconds an open-phase user sleeps between checks once its session ran.
    idle_interval = 1.0

    phase_name: str = ""

    def on_start(self) -> None:
        self.sessions_run = 0
        self._idle = False
        self._workflow: Workflow | None = None

    def wait_time(self) -> float:
        return self.idle_interval if self._idle else 0.0

    @property
    def orchestrator(self):
        return self.environment.orchestrator

    @property
    def workflow(self) -> Workflow:
        """Collaborators for this user, created on first use."""
        if self._workflow is None:
            state = self.orchestrator.state
            config = state.config
            api = ApiClient(
                self.client,
                timeout=config.request_timeout,
                get_retries=config.get_retries,
                retry_backoff=config.retry_backoff,
            )
            self._workflow = Workflow(api, state)
        return self._workflow

    def build_steps(self, workflow: Workflow) -> list[Step]:
        raise NotImplementedError

    @task
    def run_session(self) -> None:
        """Run one session, or idle once an open-phase user is done."""
        phase = self.orchestrator.phase(self.phase_name)
        if self.sessions_run and not phase.profile.closed:
            self._idle = True
            return

        self.sessions_run += 1
        self.orchestrator.run_session(
            self.phase_name,
            lambda: self.build_steps(self.workflow),
            SessionContext(),
        )
