"""
Wire envelopes for the ingestion gateway.

The gateway accepts two request bodies for the same records:

**JSON envelope** (``application/vnd.kafka.json.v{N}+json``)::

    {"key_schema_id": 11, "value_schema_id": 12,
     "records": [{"key": {...}, "value": {...}}, ...]}

Each key and value is rendered in Avro's JSON encoding (unions are wrapped,
e.g. ``{"string": "radar"}``) and embedded as a JSON object.

**Binary envelope** (``application/vnd.radarbase.avro.v{N}+binary``): one
Avro-encoded ``RecordSet`` carrying the schema versions, the key fields and
the Avro-binary encoded values.  Values are written with the schema fetched
*by id* from the registry, not with the local definition, so that schema
evolution on the server side is exercised.

Decoders for both envelopes are provided so that payloads can be checked
against the schemas that produced them.
"""

from __future__ import annotations

import io
import json
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from fastavro import json_reader, json_writer, schemaless_reader, schemaless_writer

from ingestion_perf.cache import KEY, VALUE, SchemaBinding, SharedRegistryCache
from ingestion_perf.errors import GeneratorDefect
from ingestion_perf.schemas import OBSERVATION_KEY, QUESTIONNAIRE, RECORD_SET

# fastavro reports records that do not fit their schema with these types.
_ENCODING_ERRORS = (ValueError, TypeError, KeyError)


class PayloadFormat(str, Enum):
    """Request body formats understood by the ingestion gateway."""

    JSON = "json"
    BINARY = "binary"


class SchemaSource(Protocol):
    """Anything able to return a parsed schema for a registry id."""

    def schema_by_id(self, schema_id: int) -> Any: ...


@dataclass(frozen=True)
class EncodedPayload:
    """A ready-to-send request body and its content type."""

    body: bytes
    content_type: str


def to_avro_json(schema: Any, record: dict[str, Any]) -> str:
    """Render *record* in Avro JSON encoding as a single-line string."""
    buffer = io.StringIO()
    try:
        json_writer(buffer, schema, [record])
    except _ENCODING_ERRORS as exc:
        raise GeneratorDefect(f"Record does not match its schema: {exc}") from exc
    return buffer.getvalue().strip()


def from_avro_json(schema: Any, text: str) -> dict[str, Any]:
    """Decode one Avro JSON encoded record."""
    return next(iter(json_reader(io.StringIO(text), schema)))


def to_avro_binary(schema: Any, record: dict[str, Any]) -> bytes:
    """Render *record* in Avro binary encoding without a container header."""
    buffer = io.BytesIO()
    try:
        schemaless_writer(buffer, schema, record)
    except _ENCODING_ERRORS as exc:
        raise GeneratorDefect(f"Record does not match its schema: {exc}") from exc
    return buffer.getvalue()


def from_avro_binary(schema: Any, data: bytes, reader_schema: Any = None) -> dict[str, Any]:
    """Decode one Avro binary encoded record."""
    return schemaless_reader(io.BytesIO(data), schema, reader_schema)


class PayloadEncoderRouter:
    """
    Serialize key/value records into the gateway's JSON or binary envelope.

    Args:
        cache: Cache holding the topic schema bindings.
        schemas: Source of registry schemas by id (binary path only).
        api_version: Gateway API version embedded in the content types.
        organization: Vendor segment of the binary content type.
        key_schema: Local schema used to render keys.
        value_schema: Local schema used to render JSON values.
    """

    def __init__(
        self,
        cache: SharedRegistryCache,
        schemas: SchemaSource,
        *,
        api_version: int = 3,
        organization: str = "radarbase",
        key_schema: Any = OBSERVATION_KEY,
        value_schema: Any = QUESTIONNAIRE,
    ):
        self._cache = cache
        self._schemas = schemas
        self.api_version = api_version
        self.organization = organization
        self._key_schema = key_schema
        self._value_schema = value_schema

    @property
    def json_content_type(self) -> str:
        return f"application/vnd.kafka.json.v{self.api_version}+json; charset=utf-8"

    @property
    def binary_content_type(self) -> str:
        return f"application/vnd.{self.organization}.avro.v{self.api_version}+binary"

    def encode_for_topic(
        self,
        fmt: PayloadFormat | str,
        topic: str,
        key_record: dict[str, Any],
        value_records: Sequence[dict[str, Any]],
    ) -> EncodedPayload:
        """
        Encode records for *topic* using the schema ids cached for it.

        Raises:
            DataError: If the key or value schema of *topic* is not cached.
        """
        key_binding = self._cache.require_schema(topic, KEY)
        value_binding = self._cache.require_schema(topic, VALUE)
        return self.encode(fmt, key_binding, value_binding, key_record, value_records)

    def encode(
        self,
        fmt: PayloadFormat | str,
        key_schema: SchemaBinding,
        value_schema: SchemaBinding,
        key_record: dict[str, Any],
        value_records: Sequence[dict[str, Any]],
    ) -> EncodedPayload:
        """Route to the JSON or binary encoder according to *fmt*."""
        fmt = PayloadFormat(fmt)
        if fmt is PayloadFormat.JSON:
            body = self.encode_json(key_schema, value_schema, key_record, value_records)
            return EncodedPayload(body, self.json_content_type)
        body = self.encode_binary(key_schema, value_schema, key_record, value_records)
        return EncodedPayload(body, self.binary_content_type)

    def encode_json(
        self,
        key_schema: SchemaBinding,
        value_schema: SchemaBinding,
        key_record: dict[str, Any],
        value_records: Sequence[dict[str, Any]],
    ) -> bytes:
        # The key is identical for every record, so it is rendered once.
        key = json.loads(to_avro_json(self._key_schema, key_record))
        envelope = {
            "key_schema_id": key_schema.schema_id,
            "value_schema_id": value_schema.schema_id,
            "records": [
                {"key": key, "value": json.loads(to_avro_json(self._value_schema, value))}
                for value in value_records
            ],
        }
        return json.dumps(envelope).encode("utf-8")

    def encode_binary(
        self,
        key_schema: SchemaBinding,
        value_schema: SchemaBinding,
        key_record: dict[str, Any],
        value_records: Sequence[dict[str, Any]],
    ) -> bytes:
        writer_schema = self._schemas.schema_by_id(value_schema.schema_id)
        record_set = {
            "keySchemaVersion": key_schema.version,
            "valueSchemaVersion": value_schema.version,
            "projectId": key_record.get("projectId"),
            "userId": key_record.get("userId"),
            "sourceId": key_record["sourceId"],
            "data": [to_avro_binary(writer_schema, value) for value in value_records],
        }
        return to_avro_binary(RECORD_SET, record_set)


# =====================================================================
# Decoders
# =====================================================================


def decode_json_envelope(
    body: bytes | str,
    key_schema: Any = OBSERVATION_KEY,
    value_schema: Any = QUESTIONNAIRE,
) -> tuple[int, int, list[tuple[dict[str, Any], dict[str, Any]]]]:
    """
    Decode a JSON envelope.

    Returns:
        ``(key_schema_id, value_schema_id, [(key, value), ...])`` with keys
        and values decoded back into plain records.
    """
    envelope = json.loads(body)
    records = [
        (
            from_avro_json(key_schema, json.dumps(item["key"])),
            from_avro_json(value_schema, json.dumps(item["value"])),
        )
        for item in envelope["records"]
    ]
    return envelope["key_schema_id"], envelope["value_schema_id"], records


def decode_record_set(
    body: bytes,
    value_schema: Any = QUESTIONNAIRE,
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """
    Decode a binary ``RecordSet`` envelope.

    Returns:
        The record set fields (``data`` still holding raw bytes) and the
        values decoded with *value_schema*.
    """
    record_set = from_avro_binary(RECORD_SET, body)
    values = [from_avro_binary(value_schema, data) for data in record_set["data"]]
    return record_set, values
