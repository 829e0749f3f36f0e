"""
The four phases of an ingestion run, expressed as session steps.

1. **Setup**: one admin session ensures the organization, the source types
   and the project.
2. **Registration**: one session per participant takes the next external id
   from the subject feed, ensures the subject's project sources and the
   subject itself, then pairs an app for it and stores the token pair.
3. **Discovery**: one session checks every topic of the topic feed and
   resolves its key and value schema ids into the cache.
4. **Ingestion**: closed-model sessions pick a registered subject at random,
   build questionnaire records and post them to the ingestion gateway.

Each phase only reads what an earlier phase wrote to the
:class:`~ingestion_perf.cache.SharedRegistryCache` in :class:`RunState`.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from ingestion_perf.bodies import SOURCE_TYPES, project_source_name
from ingestion_perf.cache import KEY, VALUE, SharedRegistryCache
from ingestion_perf.client import ApiClient, bearer_headers, require_field
from ingestion_perf.config import RunConfig
from ingestion_perf.encoding import EncodedPayload, PayloadEncoderRouter
from ingestion_perf.errors import ProtocolError
from ingestion_perf.feeds import SequentialFeeder, read_subjects, read_topics
from ingestion_perf.generator import SyntheticDataGenerator
from ingestion_perf.resources import SOURCE, IdempotentResourceEnsurer, ManagementPortal
from ingestion_perf.schemas import SchemaRegistry
from ingestion_perf.session import SessionContext, Step
from ingestion_perf.tokens import TokenBroker

logger = logging.getLogger(__name__)

KAFKA_PATH = "/kafka"


@dataclass
class RunState:
    """Everything shared by the sessions of one run."""

    config: RunConfig
    cache: SharedRegistryCache
    subjects: SequentialFeeder
    topics: list[str]
    rng: random.Random = field(default_factory=random.Random)


def build_run_state(config: RunConfig, rng: random.Random | None = None) -> RunState:
    """
    Read the feeds and create an empty cache for a new run.

    The ingestion topic is appended to the topic list when the feed does
    not name it, so that discovery always resolves its schemas.

    Raises:
        ValueError: If a feed is malformed or lists too few subjects.
    """
    topics = read_topics(config.topics_feed)
    if config.ingestion_topic not in topics:
        topics.append(config.ingestion_topic)

    subjects = read_subjects(config.subjects_feed, config.number_of_participants)
    logger.info("Loaded %d subjects and %d topics", len(subjects), len(topics))
    return RunState(
        config=config,
        cache=SharedRegistryCache(),
        subjects=SequentialFeeder(subjects),
        topics=topics,
        rng=rng or random.Random(),
    )


class Workflow:
    """
    Build the step lists of every phase for one virtual user.

    Args:
        api: HTTP facade bound to the user's Locust session.
        state: Run state owned by the orchestrator.
        generator: Source of questionnaire records.
    """

    def __init__(
        self,
        api: ApiClient,
        state: RunState,
        *,
        generator: SyntheticDataGenerator | None = None,
    ):
        self._api = api
        self._state = state
        self._config = state.config
        self._cache = state.cache
        ensurer = IdempotentResourceEnsurer(
            state.cache, conflict_retries=state.config.conflict_retries
        )
        self.portal = ManagementPortal(api, state.config, state.cache, ensurer)
        self.tokens = TokenBroker(api, state.config, state.cache)
        self._generator = generator or SyntheticDataGenerator(rng=state.rng)

    # -----------------------------------------------------------------
    # Phase step lists
    # -----------------------------------------------------------------

    def setup_steps(self) -> list[Step]:
        return [
            Step("Authentication", self._authenticate_admin),
            Step("Ensure organization", self.portal.ensure_organization),
            Step("Ensure source types", self.portal.ensure_source_types),
            Step("Ensure project", self.portal.ensure_project),
        ]

    def registration_steps(self) -> list[Step]:
        return [
            Step("Next subject", self._next_subject),
            Step("Authentication", self._authenticate_admin),
            Step("Ensure project sources", self.portal.ensure_project_sources),
            Step("Ensure subject", self.portal.ensure_subject),
            Step("Pair app", self._pair_app),
        ]

    def discovery_steps(self) -> list[Step]:
        return [
            Step("Pick subject", self._pick_subject),
            Step("Resolve topic schemas", self._resolve_topics),
        ]

    def ingestion_steps(self) -> list[Step]:
        return [
            Step("Pick subject", self._pick_subject),
            Step("Resolve source", self._resolve_source),
            Step("Send questionnaire data", self._send_questionnaires),
        ]

    # -----------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------

    def _authenticate_admin(self, context: SessionContext) -> None:
        context.admin_token = self.tokens.password_grant()

    def _next_subject(self, context: SessionContext) -> None:
        context.external_id = self._state.subjects.next()["externalId"].strip()

    def _pair_app(self, context: SessionContext) -> None:
        login = context.require("login")
        pair = self.tokens.bootstrap(context.require("admin_token"), login)
        context.access_token = pair.access_token
        context.refresh_token = pair.refresh_token
        self._cache.register_subject(context.require("external_id"), login)

    def _pick_subject(self, context: SessionContext) -> None:
        external_id, login = self._cache.random_subject(self._state.rng)
        pair = self._cache.require_tokens(login)
        context.external_id = external_id
        context.login = login
        context.access_token = pair.access_token
        context.refresh_token = pair.refresh_token

    def _resolve_topics(self, context: SessionContext) -> None:
        registry = self._registry(context)
        version = self._config.schema_version
        for topic in self._state.topics:
            registry.check_topic(topic)
            registry.resolve(topic, KEY, version)
            registry.resolve(topic, VALUE, version)

    def _resolve_source(self, context: SessionContext) -> None:
        source_name = project_source_name(SOURCE_TYPES[0].alias, context.require("external_id"))
        source = self._cache.require_resource(SOURCE, source_name)
        context.source_id = require_field(source, "sourceId", "Project source")
        context.topic = self._config.ingestion_topic

    def _send_questionnaires(self, context: SessionContext) -> None:
        key = {
            "projectId": self._config.project_name,
            "userId": context.require("login"),
            "sourceId": context.require("source_id"),
        }
        values = [
            self._generator.questionnaire(self._config.message_size).to_record()
            for _ in range(self._config.message_number)
        ]
        router = PayloadEncoderRouter(
            self._cache,
            self._registry(context),
            api_version=self._config.kafka_api_version,
        )
        payload = router.encode_for_topic(
            self._config.payload_format, context.require("topic"), key, values
        )

        try:
            self._post_records(context, payload)
        except ProtocolError as exc:
            if exc.status_code != 401:
                raise
            logger.info("Access token of %s was rejected; rotating once", context.login)
            pair = self.tokens.refresh(context.require("login"), context.access_token)
            context.access_token = pair.access_token
            context.refresh_token = pair.refresh_token
            self._post_records(context, payload)

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    def _registry(self, context: SessionContext) -> SchemaRegistry:
        return SchemaRegistry(
            self._api,
            self._cache,
            token=context.require("access_token"),
            kafka_path=KAFKA_PATH,
        )

    def _post_records(self, context: SessionContext, payload: EncodedPayload) -> None:
        headers = bearer_headers(context.require("access_token"))
        headers["Content-Type"] = payload.content_type
        self._api.post(
            f"{KAFKA_PATH}/topics/{context.require('topic')}",
            name="Send questionnaire data",
            expect=(200, 201, 204),
            data=payload.body,
            headers=headers,
        )
