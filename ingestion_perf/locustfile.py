# ruff: noqa: E402
"""
Locust entrypoint for the phased ingestion workflow.

Loads the run configuration, assembles the four phases and hands their
scheduling to :class:`PhasedLoadShape`, which asks the
:class:`~ingestion_perf.orchestrator.PhaseOrchestrator` for the user
population on every tick.

Usage examples::

    # Local development stack, defaults from DevelopmentConfig:
    locust -f ingestion_perf/locustfile.py --headless

    # Shared environment with a tuned run file:
    PERF_ENV=production PERF_CONFIG=perf.yml \\
        locust -f ingestion_perf/locustfile.py --headless --host https://radar.example.org

The ``--host`` option wins over ``base_url`` from the configuration.  The
workflow keeps its state in this process, so it runs in Locust's local
mode only.

Key Concepts Demonstrated:
- ``events.init`` / ``test_start`` / ``test_stop`` listeners owning the
  run state
- A ``LoadTestShape`` that delegates to engine-agnostic scheduling code
- Phases described as data (user class + injection profile)
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Locust adds this file's directory to sys.path; the package needs the root.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from locust import LoadTestShape, events

from ingestion_perf.config import RunConfig, load_run_config
from ingestion_perf.injection import AtOnceUsers, IncrementConcurrentUsers
from ingestion_perf.orchestrator import Phase, PhaseOrchestrator
from ingestion_perf.scenarios.discovery import TopicDiscoveryUser
from ingestion_perf.scenarios.ingestion import QuestionnaireIngestionUser
from ingestion_perf.scenarios.registration import SubjectRegistrationUser
from ingestion_perf.scenarios.setup import ProjectSetupUser
from ingestion_perf.workflow import build_run_state

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

__all__ = [
    "ProjectSetupUser",
    "SubjectRegistrationUser",
    "TopicDiscoveryUser",
    "QuestionnaireIngestionUser",
    "PhasedLoadShape",
]


def build_phases(config: RunConfig) -> list[Phase]:
    """Return the setup, registration, discovery and ingestion phases."""
    return [
        Phase(ProjectSetupUser.phase_name, ProjectSetupUser, AtOnceUsers(1)),
        Phase(
            SubjectRegistrationUser.phase_name,
            SubjectRegistrationUser,
            AtOnceUsers(config.number_of_participants),
        ),
        Phase(TopicDiscoveryUser.phase_name, TopicDiscoveryUser, AtOnceUsers(1)),
        Phase(
            QuestionnaireIngestionUser.phase_name,
            QuestionnaireIngestionUser,
            IncrementConcurrentUsers(
                config.ingestion_user_increment,
                times=config.ingestion_steps,
                level_duration=config.ingestion_level_seconds,
                ramp_duration=config.ingestion_ramp_seconds,
                starting_from=config.ingestion_start_users,
            ),
        ),
    ]


def build_orchestrator(config: RunConfig) -> PhaseOrchestrator:
    return PhaseOrchestrator(
        build_phases(config),
        lambda: build_run_state(config),
        max_aborted_sessions=config.max_aborted_sessions,
    )


run_config = load_run_config()
orchestrator = build_orchestrator(run_config)


@events.init.add_listener
def _attach_orchestrator(environment, **_kwargs):
    """Expose the orchestrator to users and default the host from config."""
    environment.orchestrator = orchestrator
    if not environment.host:
        environment.host = run_config.base_url
    for phase in orchestrator.phases:
        phase.user_class.host = environment.host
    logger.info("Targeting %s", environment.host)


@events.test_start.add_listener
def _start_run(environment, **_kwargs):
    orchestrator.start()


@events.test_stop.add_listener
def _stop_run(environment, **_kwargs):
    orchestrator.stop()
    if orchestrator.failed:
        environment.process_exit_code = 1


class PhasedLoadShape(LoadTestShape):
    """Run the workflow phases one after another."""

    def tick(self):
        return orchestrator.tick(self.get_run_time(), self.get_current_user_count())
