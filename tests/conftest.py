"""
Shared pytest fixtures for the ingestion workflow test suite.

Every test gets a fresh fake platform, a Locust-compatible session bound to
it and a run configuration based on ``TestingConfig`` whose feeds live in
the test's temporary directory.

Key Concepts Demonstrated:
- Fixture dependencies (config -> state -> workflow)
- Test data generated with Faker
- No network: all HTTP goes to an in-process Flask app
"""

from __future__ import annotations

# Locust monkey-patches ssl via gevent on import; it must run before
# requests/urllib3 import ssl, or SSL context creation recurses.
import locust  # noqa: F401  isort:skip

import dataclasses
import random
from pathlib import Path

import pytest
from faker import Faker

from ingestion_perf.cache import SharedRegistryCache
from ingestion_perf.config import RunConfig, load_run_config
from ingestion_perf.client import ApiClient
from ingestion_perf.workflow import RunState, Workflow, build_run_state
from tests.fakes import FakePlatformState, FlaskHttpSession, create_fake_platform

fake = Faker()

INGESTION_TOPIC = "questionnaire_response"
OTHER_TOPIC = "android_phone_acceleration"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def write_feed(path: Path, column: str, values: list[str]) -> Path:
    """Write a one-column CSV feed and return its path."""
    path.write_text("\n".join([column, *values]) + "\n", encoding="utf-8")
    return path


# -----------------------------------------------------------------------------
# Configuration Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Keep a developer's PERF_* settings out of the tests."""
    monkeypatch.delenv("PERF_CONFIG", raising=False)
    monkeypatch.delenv("PERF_ENV", raising=False)


@pytest.fixture
def external_ids() -> list[str]:
    """Unique subject external ids for the subject feed."""
    return [fake.unique.bothify("perf-????-####") for _ in range(4)]


@pytest.fixture
def run_config(tmp_path, external_ids) -> RunConfig:
    """Testing configuration with feeds written to ``tmp_path``."""
    topics = write_feed(tmp_path / "topics.csv", "topic", [INGESTION_TOPIC, OTHER_TOPIC])
    subjects = write_feed(tmp_path / "users.csv", "externalId", external_ids)
    return dataclasses.replace(
        load_run_config("testing"),
        topics_feed=topics,
        subjects_feed=subjects,
    )


# -----------------------------------------------------------------------------
# Fake Platform Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def platform_state(run_config) -> FakePlatformState:
    """Platform state accepting the testing credentials and knowing two topics."""
    state = FakePlatformState(
        client_id=run_config.client_id,
        client_secret=run_config.client_secret,
        pair_client_id=run_config.pair_client_id,
        pair_client_secret=run_config.pair_client_secret,
        admin_username=run_config.admin_username,
        admin_password=run_config.admin_password,
    )
    state.add_topic(INGESTION_TOPIC, 11, 12)
    state.add_topic(OTHER_TOPIC, 13, 14)
    return state


@pytest.fixture
def platform_app(platform_state):
    return create_fake_platform(platform_state)


@pytest.fixture
def http_session(platform_app) -> FlaskHttpSession:
    return FlaskHttpSession(platform_app)


@pytest.fixture
def api(http_session, run_config) -> ApiClient:
    """ApiClient over the fake platform; retries never sleep."""
    return ApiClient(
        http_session,
        timeout=run_config.request_timeout,
        get_retries=run_config.get_retries,
        retry_backoff=run_config.retry_backoff,
        sleep=lambda _seconds: None,
    )


# -----------------------------------------------------------------------------
# Run State Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def cache() -> SharedRegistryCache:
    return SharedRegistryCache()


@pytest.fixture
def run_state(run_config) -> RunState:
    return build_run_state(run_config, rng=random.Random(7))


@pytest.fixture
def workflow(api, run_state) -> Workflow:
    return Workflow(api, run_state)
