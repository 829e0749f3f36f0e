"""
Fetch-or-create ("ensure") access to management API resources.

:class:`IdempotentResourceEnsurer` implements the generic pattern: look the
resource up by its natural key, create it when the lookup reports it
absent, and remember the resulting DTO in the run cache so that later
calls for the same key issue no requests at all.

:class:`ManagementPortal` applies the pattern to the concrete resources a
test run needs: the organization, the source types, the project, the
per-subject project sources and the subject itself.

Key Concepts Demonstrated:
- Explicit ``Found`` / ``NotFound`` result types instead of empty-string
  checks on response fields
- Create-then-refetch loop on ``409 Conflict`` so concurrent sessions
  ensuring the same key converge on one DTO
- Request bodies assembled by builder functions from explicit inputs
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Union

from ingestion_perf import bodies
from ingestion_perf.cache import SharedRegistryCache
from ingestion_perf.client import ApiClient, bearer_headers, json_list, json_object, require_field
from ingestion_perf.config import RunConfig
from ingestion_perf.errors import ConflictError, DataError
from ingestion_perf.session import SessionContext

logger = logging.getLogger(__name__)

API = "/managementportal/api"

ORGANIZATION = "organization"
SOURCE_TYPE = "source-type"
PROJECT = "project"
SOURCE = "source"
SUBJECT = "subject"


@dataclass(frozen=True)
class Found:
    """The lookup returned an existing resource."""

    dto: dict[str, Any]


@dataclass(frozen=True)
class NotFound:
    """The lookup reported the resource as absent."""


LookupResult = Union[Found, NotFound]


class IdempotentResourceEnsurer:
    """
    Generic fetch-or-create backed by the shared registry cache.

    Args:
        cache: Run cache receiving every ensured DTO (write-once).
        conflict_retries: How many times a ``409`` on create is answered by
            looking the resource up again before the session aborts.
    """

    def __init__(self, cache: SharedRegistryCache, *, conflict_retries: int = 2):
        self._cache = cache
        self.conflict_retries = conflict_retries

    def ensure(
        self,
        kind: str,
        key: str,
        lookup: Callable[[], LookupResult],
        create: Callable[[], dict[str, Any]],
    ) -> dict[str, Any]:
        """
        Return the DTO for ``(kind, key)``, creating the resource if needed.

        Args:
            kind: Resource namespace inside the cache.
            key: Natural key of the resource.
            lookup: Issues the lookup request and returns ``Found`` or
                ``NotFound``.
            create: Issues the create request (expecting ``201``) and
                returns the created DTO.

        Raises:
            DataError: If creation keeps conflicting while lookups keep
                reporting the resource as absent.
            ProtocolError: Propagated from *lookup* or *create*.
        """
        cached = self._cache.resource(kind, key)
        if cached is not None:
            return cached

        for attempt in range(self.conflict_retries + 1):
            result = lookup()
            if isinstance(result, Found):
                return self._cache.put_resource(kind, key, result.dto)
            if not isinstance(result, NotFound):
                raise TypeError(f"lookup for {kind} '{key}' returned {result!r}")

            try:
                dto = create()
            except ConflictError:
                logger.info(
                    "Create %s '%s' conflicted (attempt %d); looking it up again",
                    kind,
                    key,
                    attempt + 1,
                )
                continue

            logger.info("Created %s '%s'", kind, key)
            return self._cache.put_resource(kind, key, dto)

        raise DataError(
            f"{kind} '{key}' could not be created and was not found after "
            f"{self.conflict_retries + 1} attempts"
        )


class ManagementPortal:
    """
    Ensure the resources of one test project through the management API.

    Every method expects ``context.admin_token`` to hold an admin access
    token.

    Args:
        api: HTTP facade bound to the platform base URL.
        config: Run configuration (names used as natural keys).
        cache: Run cache.
        ensurer: Fetch-or-create helper sharing the same cache.
    """

    def __init__(
        self,
        api: ApiClient,
        config: RunConfig,
        cache: SharedRegistryCache,
        ensurer: IdempotentResourceEnsurer,
    ):
        self._api = api
        self._config = config
        self._cache = cache
        self._ensurer = ensurer

    # -----------------------------------------------------------------
    # Lookup / create primitives
    # -----------------------------------------------------------------

    def _lookup_one(self, context: SessionContext, name: str, path: str, field: str) -> LookupResult:
        """GET a single resource; 404 or an empty *field* means absent."""
        response = self._api.get(
            path,
            name=name,
            expect=(200, 404),
            headers=bearer_headers(context.require("admin_token")),
        )
        if response.status_code == 404:
            return NotFound()
        body = json_object(response, name)
        if not body.get(field):
            return NotFound()
        return Found(body)

    def _lookup_in_list(
        self,
        context: SessionContext,
        name: str,
        path: str,
        match: Callable[[dict[str, Any]], bool],
        params: dict[str, str] | None = None,
    ) -> LookupResult:
        """GET a collection and pick the first element accepted by *match*."""
        response = self._api.get(
            path,
            name=name,
            params=params,
            headers=bearer_headers(context.require("admin_token")),
        )
        for item in json_list(response, name):
            if isinstance(item, dict) and match(item):
                return Found(item)
        return NotFound()

    def _create(self, context: SessionContext, name: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        response = self._api.post(
            path,
            name=name,
            expect=(201,),
            json=body,
            headers=bearer_headers(context.require("admin_token")),
        )
        return json_object(response, name)

    # -----------------------------------------------------------------
    # Concrete resources
    # -----------------------------------------------------------------

    def ensure_organization(self, context: SessionContext) -> dict[str, Any]:
        name = self._config.organization_name
        return self._ensurer.ensure(
            ORGANIZATION,
            name,
            lambda: self._lookup_one(
                context, "Get organization", f"{API}/organizations/{name}", "name"
            ),
            lambda: self._create(
                context, "Create organization", f"{API}/organizations",
                bodies.organization_body(self._config),
            ),
        )

    def ensure_source_types(self, context: SessionContext) -> dict[str, dict[str, Any]]:
        """Ensure every source type in :data:`bodies.SOURCE_TYPES`, keyed by alias."""
        ensured = {}
        for spec in bodies.SOURCE_TYPES:
            ensured[spec.alias] = self._ensurer.ensure(
                SOURCE_TYPE,
                spec.alias,
                lambda spec=spec: self._lookup_in_list(
                    context,
                    "Get source types",
                    f"{API}/source-types",
                    lambda item: item.get("name") == spec.name,
                ),
                lambda spec=spec: self._create(
                    context,
                    f"Create {spec.alias} source type",
                    f"{API}/source-types",
                    bodies.source_type_body(spec),
                ),
            )
        return ensured

    def ensure_project(self, context: SessionContext) -> dict[str, Any]:
        """Ensure the project; organization and source types must be cached."""
        name = self._config.project_name

        def create() -> dict[str, Any]:
            organization = self._cache.require_resource(ORGANIZATION, self._config.organization_name)
            source_types = [
                self._cache.require_resource(SOURCE_TYPE, spec.alias) for spec in bodies.SOURCE_TYPES
            ]
            return self._create(
                context,
                "Create project",
                f"{API}/projects",
                bodies.project_body(self._config, organization, source_types),
            )

        return self._ensurer.ensure(
            PROJECT,
            name,
            lambda: self._lookup_one(context, "Get project", f"{API}/projects/{name}", "projectName"),
            create,
        )

    def ensure_project_sources(self, context: SessionContext) -> dict[str, dict[str, Any]]:
        """
        Ensure one project source per source type for the session's subject.

        Sets ``context.source_id`` to the id of the first (aRMT) source,
        which is the one questionnaire data is sent for.

        Returns:
            The source DTOs keyed by source type alias.
        """
        external_id = context.require("external_id")
        project = self._cache.require_resource(PROJECT, self._config.project_name)
        ensured = {}
        for spec in bodies.SOURCE_TYPES:
            source_name = bodies.project_source_name(spec.alias, external_id)
            source_type = self._cache.require_resource(SOURCE_TYPE, spec.alias)
            ensured[spec.alias] = self._ensurer.ensure(
                SOURCE,
                source_name,
                lambda source_name=source_name: self._lookup_in_list(
                    context,
                    "Get project sources",
                    f"{API}/sources",
                    lambda item: item.get("sourceName") == source_name and bool(item.get("sourceId")),
                ),
                lambda spec=spec, source_name=source_name, source_type=source_type: self._create(
                    context,
                    f"Create {spec.alias} project source",
                    f"{API}/sources",
                    bodies.project_source_body(project, source_type, source_name),
                ),
            )

        first = bodies.SOURCE_TYPES[0].alias
        context.source_id = require_field(ensured[first], "sourceId", "Project source")
        return ensured

    def ensure_subject(self, context: SessionContext) -> str:
        """
        Ensure the subject with the session's external id and return its login.

        Sets ``context.login``.
        """
        external_id = context.require("external_id")

        def create() -> dict[str, Any]:
            project = self._cache.require_resource(PROJECT, self._config.project_name)
            sources = [
                self._cache.require_resource(
                    SOURCE, bodies.project_source_name(spec.alias, external_id)
                )
                for spec in bodies.SOURCE_TYPES
            ]
            return self._create(
                context,
                "Create new subject",
                f"{API}/subjects",
                bodies.subject_body(project, external_id, sources),
            )

        subject = self._ensurer.ensure(
            SUBJECT,
            external_id,
            lambda: self._lookup_in_list(
                context,
                "Get subject",
                f"{API}/subjects",
                lambda item: item.get("externalId") == external_id and bool(item.get("login")),
                params={"externalId": external_id},
            ),
            create,
        )
        context.login = require_field(subject, "login", "Subject")
        return context.login
