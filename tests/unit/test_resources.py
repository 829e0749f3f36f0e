"""
Unit tests for fetch-or-create resource handling.

The generic ensurer is exercised with plain callables; the management
API wrapper is exercised against the fake platform.
"""

import pytest

from ingestion_perf import bodies
from ingestion_perf.cache import SharedRegistryCache
from ingestion_perf.errors import ConflictError, DataError, ProtocolError
from ingestion_perf.resources import (
    ORGANIZATION,
    PROJECT,
    SOURCE,
    SOURCE_TYPE,
    SUBJECT,
    Found,
    IdempotentResourceEnsurer,
    ManagementPortal,
    NotFound,
)
from ingestion_perf.session import SessionContext
from ingestion_perf.tokens import TokenBroker

pytestmark = pytest.mark.unit


class _Calls:
    """Counting stand-ins for lookup and create."""

    def __init__(self, lookups, create_results):
        self._lookups = list(lookups)
        self._create_results = list(create_results)
        self.lookups = 0
        self.creates = 0

    def lookup(self):
        self.lookups += 1
        return self._lookups.pop(0)

    def create(self):
        self.creates += 1
        result = self._create_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


# =============================================================================
# IdempotentResourceEnsurer
# =============================================================================


def test_ensure_acme_creates_once_then_serves_from_cache():
    """404 on lookup -> one create; the second ensure issues no requests."""
    # Arrange
    cache = SharedRegistryCache()
    ensurer = IdempotentResourceEnsurer(cache)
    calls = _Calls([NotFound(), NotFound()], [{"id": 1, "name": "Acme"}])

    # Act
    first = ensurer.ensure(ORGANIZATION, "Acme", calls.lookup, calls.create)
    second = ensurer.ensure(ORGANIZATION, "Acme", calls.lookup, calls.create)

    # Assert
    assert first == {"id": 1, "name": "Acme"}
    assert second is first
    assert calls.creates == 1
    assert calls.lookups == 1
    assert cache.resource(ORGANIZATION, "Acme") is first


def test_ensure_found_never_creates():
    cache = SharedRegistryCache()
    calls = _Calls([Found({"id": 4, "name": "Acme"})], [])

    dto = IdempotentResourceEnsurer(cache).ensure(ORGANIZATION, "Acme", calls.lookup, calls.create)

    assert dto["id"] == 4
    assert calls.creates == 0


def test_conflict_on_create_falls_back_to_lookup():
    """A concurrent creator wins: 409 is answered by looking the resource up again."""
    # Arrange
    cache = SharedRegistryCache()
    winner = {"id": 9, "name": "Acme"}
    calls = _Calls(
        [NotFound(), Found(winner)],
        [ConflictError("Create organization", 409, (201,))],
    )

    # Act
    dto = IdempotentResourceEnsurer(cache).ensure(ORGANIZATION, "Acme", calls.lookup, calls.create)

    # Assert
    assert dto is winner
    assert calls.lookups == 2
    assert calls.creates == 1


def test_persistent_conflict_without_resource_aborts_session():
    conflict = ConflictError("Create organization", 409, (201,))
    calls = _Calls([NotFound()] * 3, [conflict] * 3)

    with pytest.raises(DataError, match="after 3 attempts"):
        IdempotentResourceEnsurer(SharedRegistryCache(), conflict_retries=2).ensure(
            ORGANIZATION, "Acme", calls.lookup, calls.create
        )
    assert calls.creates == 3


def test_lookup_protocol_error_propagates():
    def lookup():
        raise ProtocolError("Get organization", 500, (200, 404))

    with pytest.raises(ProtocolError, match="expected 200/404, got 500"):
        IdempotentResourceEnsurer(SharedRegistryCache()).ensure(
            ORGANIZATION, "Acme", lookup, lambda: {}
        )


def test_lookup_must_return_a_lookup_result():
    with pytest.raises(TypeError):
        IdempotentResourceEnsurer(SharedRegistryCache()).ensure(
            ORGANIZATION, "Acme", lambda: {"id": 1}, lambda: {}
        )


# =============================================================================
# ManagementPortal against the fake platform
# =============================================================================


@pytest.fixture
def portal(api, run_config, cache):
    return ManagementPortal(api, run_config, cache, IdempotentResourceEnsurer(cache))


@pytest.fixture
def admin_context(api, run_config, cache):
    context = SessionContext()
    context.admin_token = TokenBroker(api, run_config, cache).password_grant()
    return context


def _ensure_project(portal, context):
    portal.ensure_organization(context)
    portal.ensure_source_types(context)
    return portal.ensure_project(context)


def test_project_setup_creates_everything_once(portal, admin_context, platform_state, run_config):
    # Act
    project = _ensure_project(portal, admin_context)

    # Assert
    assert project["projectName"] == run_config.project_name
    assert project["organization"]["name"] == run_config.organization_name
    assert [item["name"] for item in project["sourceTypes"]] == [
        "RADAR_aRMT",
        "RADAR_pRMT",
        "ANDROID_PHONE",
    ]
    assert dict(platform_state.creates) == {"organization": 1, "source-type": 3, "project": 1}


def test_project_setup_is_idempotent_across_runs(
    api, run_config, admin_context, platform_state
):
    """A second run with an empty cache finds every resource and creates none."""
    # Arrange
    first_cache = SharedRegistryCache()
    _ensure_project(
        ManagementPortal(api, run_config, first_cache, IdempotentResourceEnsurer(first_cache)),
        admin_context,
    )
    second_cache = SharedRegistryCache()
    portal = ManagementPortal(api, run_config, second_cache, IdempotentResourceEnsurer(second_cache))

    # Act
    _ensure_project(portal, admin_context)

    # Assert
    assert dict(platform_state.creates) == {"organization": 1, "source-type": 3, "project": 1}
    assert second_cache.resource(PROJECT, run_config.project_name) is not None
    assert second_cache.resource(SOURCE_TYPE, "android") is not None


def test_subject_sources_and_subject(portal, admin_context, cache, external_ids):
    # Arrange
    _ensure_project(portal, admin_context)
    admin_context.external_id = external_ids[0]

    # Act
    sources = portal.ensure_project_sources(admin_context)
    login = portal.ensure_subject(admin_context)

    # Assert
    assert set(sources) == {"aRMT", "pRMT", "android"}
    assert admin_context.source_id == sources["aRMT"]["sourceId"]
    assert admin_context.login == login
    subject = cache.require_resource(SUBJECT, external_ids[0])
    assert subject["status"] == "ACTIVATED"
    assert [source["sourceName"] for source in subject["sources"]] == [
        bodies.project_source_name(alias, external_ids[0]) for alias in ("aRMT", "pRMT", "android")
    ]
    assert cache.resource(SOURCE, bodies.project_source_name("pRMT", external_ids[0])) is not None


def test_existing_subject_is_found_by_external_id(portal, admin_context, platform_state, external_ids):
    # Arrange
    platform_state.subjects.append({"id": 77, "externalId": external_ids[0], "login": "subject-77"})
    admin_context.external_id = external_ids[0]

    # Act
    login = portal.ensure_subject(admin_context)

    # Assert
    assert login == "subject-77"
    assert platform_state.creates["subject"] == 0


def test_unfiltered_subject_listing_matches_on_external_id(
    portal, admin_context, platform_state, external_ids
):
    # Arrange
    platform_state.ignore_subject_filter = True
    platform_state.subjects.append({"id": 76, "externalId": external_ids[1], "login": "subject-76"})
    platform_state.subjects.append({"id": 77, "externalId": external_ids[0], "login": "subject-77"})
    admin_context.external_id = external_ids[0]

    # Act
    login = portal.ensure_subject(admin_context)

    # Assert
    assert login == "subject-77"
    assert platform_state.creates["subject"] == 0


def test_conflict_converges_on_organization_created_elsewhere(
    portal, admin_context, platform_state, run_config
):
    """First lookup misses, create answers 409, the re-lookup finds the winner."""
    # Arrange
    name = run_config.organization_name
    platform_state.organizations[name] = {"id": 500, "name": name}
    platform_state.force_status("GET", f"/managementportal/api/organizations/{name}", 404)

    # Act
    dto = portal.ensure_organization(admin_context)

    # Assert
    assert dto["id"] == 500
    assert platform_state.creates["organization"] == 0


def test_admin_token_is_required(portal):
    with pytest.raises(DataError, match="admin_token"):
        portal.ensure_organization(SessionContext())
