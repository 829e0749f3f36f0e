"""
Avro schemas and the schema-registry client.

The local schema definitions mirror the platform's published schemas for
observation keys, questionnaire values and the binary ``RecordSet``
envelope.  The registry client resolves the numeric ids the ingestion
gateway expects and fetches schemas by id so that binary payloads are
written with exactly the schema the registry holds.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastavro import parse_schema
from fastavro.schema import SchemaParseException

from ingestion_perf.cache import DIRECTIONS, SchemaBinding, SharedRegistryCache
from ingestion_perf.client import ApiClient, bearer_headers, json_object, require_field
from ingestion_perf.errors import DataError

logger = logging.getLogger(__name__)

OBSERVATION_KEY_SCHEMA: dict[str, Any] = {
    "namespace": "org.radarcns.kafka",
    "type": "record",
    "name": "ObservationKey",
    "doc": "Key of an observation.",
    "fields": [
        {"name": "projectId", "type": ["null", "string"], "doc": "Project identifier."},
        {"name": "userId", "type": "string", "doc": "User identifier."},
        {"name": "sourceId", "type": "string", "doc": "Unique identifier of the source."},
    ],
}

ANSWER_SCHEMA: dict[str, Any] = {
    "namespace": "org.radarcns.active.questionnaire",
    "type": "record",
    "name": "Answer",
    "fields": [
        {"name": "questionId", "type": ["null", "string"], "default": None},
        {"name": "value", "type": ["int", "string", "double"]},
        {"name": "startTime", "type": "double"},
        {"name": "endTime", "type": "double"},
    ],
}

QUESTIONNAIRE_SCHEMA: dict[str, Any] = {
    "namespace": "org.radarcns.active.questionnaire",
    "type": "record",
    "name": "Questionnaire",
    "fields": [
        {"name": "time", "type": "double"},
        {"name": "timeCompleted", "type": "double"},
        {"name": "timeNotification", "type": ["null", "double"], "default": None},
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "answers", "type": {"type": "array", "items": ANSWER_SCHEMA}},
    ],
}

RECORD_SET_SCHEMA: dict[str, Any] = {
    "namespace": "org.radarcns.kafka",
    "type": "record",
    "name": "RecordSet",
    "fields": [
        {"name": "keySchemaVersion", "type": "int"},
        {"name": "valueSchemaVersion", "type": "int"},
        {"name": "projectId", "type": ["null", "string"], "default": None},
        {"name": "userId", "type": ["null", "string"], "default": None},
        {"name": "sourceId", "type": "string"},
        {"name": "data", "type": {"type": "array", "items": "bytes"}},
    ],
}

OBSERVATION_KEY = parse_schema(OBSERVATION_KEY_SCHEMA)
QUESTIONNAIRE = parse_schema(QUESTIONNAIRE_SCHEMA)
RECORD_SET = parse_schema(RECORD_SET_SCHEMA)


def parse_schema_text(text: str) -> Any:
    """Parse a schema string as returned by the registry."""
    try:
        return parse_schema(json.loads(text))
    except (ValueError, TypeError, SchemaParseException) as exc:
        raise DataError(f"Registry returned an unusable schema: {exc}") from exc


class SchemaRegistry:
    """
    Resolve topic schemas through the registry exposed by the platform.

    Args:
        api: HTTP facade bound to the platform base URL.
        cache: Run-scoped cache receiving bindings and parsed schemas.
        token: Bearer token sent with registry and topic requests.
        registry_path: Path prefix of the schema registry.
        kafka_path: Path prefix of the ingestion gateway.
    """

    def __init__(
        self,
        api: ApiClient,
        cache: SharedRegistryCache,
        *,
        token: str | None = None,
        registry_path: str = "/schema",
        kafka_path: str = "/kafka",
    ):
        self._api = api
        self._cache = cache
        self._token = token
        self._registry_path = registry_path.rstrip("/")
        self._kafka_path = kafka_path.rstrip("/")

    def _headers(self) -> dict[str, str]:
        if self._token is None:
            return {"Accept": "application/json"}
        return bearer_headers(self._token)

    def check_topic(self, topic: str) -> None:
        """Fail the session unless the gateway knows *topic*."""
        self._api.get(
            f"{self._kafka_path}/topics/{topic}",
            name="Check topic exists",
            headers=self._headers(),
        )

    def resolve(self, topic: str, direction: str, version: int = 1) -> SchemaBinding:
        """
        Return the binding of ``{topic}-{direction}`` at *version*.

        Cached bindings are returned without a request.

        Raises:
            DataError: If the registry response carries no integer ``id``.
        """
        if direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {DIRECTIONS}, got {direction!r}")

        cached = self._cache.schema(topic, direction)
        if cached is not None:
            return cached

        request_name = f"Get {direction} schema id"
        response = self._api.get(
            f"{self._registry_path}/subjects/{topic}-{direction}/versions/{version}",
            name=request_name,
            headers=self._headers(),
        )
        body = json_object(response, request_name)
        schema_id = require_field(body, "id", request_name)
        if not isinstance(schema_id, int):
            raise DataError(f"{request_name}: 'id' is not an integer")

        binding = SchemaBinding(
            topic=topic,
            direction=direction,
            schema_id=schema_id,
            version=int(body.get("version") or version),
            schema=body.get("schema"),
        )
        stored = self._cache.bind_schema(binding)
        logger.info("Resolved %s-%s to schema id %s", topic, direction, stored.schema_id)
        return stored

    def schema_by_id(self, schema_id: int) -> Any:
        """Fetch (once per run) and parse the schema registered under *schema_id*."""
        cached = self._cache.parsed_schema(schema_id)
        if cached is not None:
            return cached

        request_name = "Get schema by id"
        response = self._api.get(
            f"{self._registry_path}/schemas/ids/{schema_id}",
            name=request_name,
            headers=self._headers(),
        )
        text = require_field(json_object(response, request_name), "schema", request_name)
        return self._cache.put_parsed_schema(schema_id, parse_schema_text(text))
