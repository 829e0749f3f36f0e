"""
Unit tests for the Locust wiring: phases, the load shape and the users.

Users are instantiated against a real Locust ``Environment`` but their
HTTP client is swapped for the fake platform session, so no socket is
ever opened.
"""

import pytest
from locust.env import Environment

from ingestion_perf import locustfile
from ingestion_perf.injection import IncrementConcurrentUsers
from ingestion_perf.scenarios.discovery import TopicDiscoveryUser
from ingestion_perf.scenarios.ingestion import QuestionnaireIngestionUser
from ingestion_perf.scenarios.registration import SubjectRegistrationUser
from ingestion_perf.scenarios.setup import ProjectSetupUser

pytestmark = pytest.mark.unit

USER_CLASSES = [ProjectSetupUser, SubjectRegistrationUser, TopicDiscoveryUser, QuestionnaireIngestionUser]


@pytest.fixture
def orchestrator(run_config, run_state):
    orchestrator = locustfile.build_orchestrator(run_config)
    orchestrator.start()
    # Share the fixture's run state so tests can inspect the cache.
    orchestrator.state = run_state
    return orchestrator


@pytest.fixture
def make_user(orchestrator, http_session, run_config, monkeypatch):
    environment = Environment(user_classes=USER_CLASSES, host=run_config.base_url)
    environment.orchestrator = orchestrator

    def _make(user_class):
        monkeypatch.setattr(user_class, "host", run_config.base_url)
        user = user_class(environment)
        user.client = http_session
        user.on_start()
        return user

    return _make


# =============================================================================
# Phases and shape
# =============================================================================


def test_build_phases_in_workflow_order(run_config):
    # Act
    phases = locustfile.build_phases(run_config)

    # Assert
    assert [phase.name for phase in phases] == ["setup", "registration", "discovery", "ingestion"]
    assert [phase.user_class for phase in phases] == USER_CLASSES
    assert phases[1].profile.users == run_config.number_of_participants
    assert [phase.profile.closed for phase in phases] == [False, False, False, True]
    assert isinstance(phases[3].profile, IncrementConcurrentUsers)
    assert phases[3].profile.levels() == [5, 10, 15, 20, 25]


def test_shape_delegates_to_orchestrator(run_config, monkeypatch):
    # Arrange
    monkeypatch.setattr(locustfile, "orchestrator", locustfile.build_orchestrator(run_config))
    shape = locustfile.PhasedLoadShape()
    monkeypatch.setattr(shape, "get_run_time", lambda: 0.0)
    monkeypatch.setattr(shape, "get_current_user_count", lambda: 0)

    # Act
    result = shape.tick()

    # Assert
    assert result == (1, 1.0, [ProjectSetupUser])


# =============================================================================
# Users
# =============================================================================


def test_open_phase_user_runs_one_session_then_idles(make_user, orchestrator, run_config):
    # Arrange
    user = make_user(ProjectSetupUser)

    # Act
    user.run_session()
    user.run_session()

    # Assert
    tracker = orchestrator.tracker("setup")
    assert tracker.completed == 1
    assert tracker.started == 1
    assert user.wait_time() == user.idle_interval
    assert orchestrator.state.cache.resource("project", run_config.project_name) is not None


def test_closed_phase_user_loops_sessions(make_user, orchestrator, run_config, platform_state):
    # Arrange
    make_user(ProjectSetupUser).run_session()
    for _ in range(run_config.number_of_participants):
        make_user(SubjectRegistrationUser).run_session()
    make_user(TopicDiscoveryUser).run_session()
    user = make_user(QuestionnaireIngestionUser)

    # Act
    for _ in range(3):
        user.run_session()

    # Assert
    assert orchestrator.tracker("ingestion").completed == 3
    assert user.wait_time() == 0.0
    assert len(platform_state.received) == 3


def test_user_requests_carry_the_configured_timeout(make_user, http_session, run_config):
    make_user(ProjectSetupUser).run_session()

    assert set(http_session.timeouts) == {run_config.request_timeout}


def test_user_whose_steps_cannot_be_built_still_finishes_its_session(
    make_user, orchestrator, monkeypatch
):
    # Arrange
    def broken_steps(self, workflow):
        raise RuntimeError("no steps")

    monkeypatch.setattr(ProjectSetupUser, "build_steps", broken_steps)
    user = make_user(ProjectSetupUser)
    orchestrator.tick(0, 0)

    # Act
    with pytest.raises(RuntimeError):
        user.run_session()

    # Assert
    tracker = orchestrator.tracker("setup")
    assert tracker.started == 1
    assert tracker.interrupted == 1
    assert tracker.in_flight == 0
    assert orchestrator.tick(1, 0)[2] == [SubjectRegistrationUser]
