"""
Unit tests for the payload encoder router.

Both envelopes are decoded again with the schemas that produced them, and
the decoded records must equal the generated ones.
"""

import json
import random

import pytest

from ingestion_perf.cache import KEY, VALUE, SchemaBinding, SharedRegistryCache
from ingestion_perf.encoding import (
    PayloadEncoderRouter,
    PayloadFormat,
    decode_json_envelope,
    decode_record_set,
    to_avro_json,
)
from ingestion_perf.errors import DataError, GeneratorDefect
from ingestion_perf.generator import SyntheticDataGenerator
from ingestion_perf.schemas import OBSERVATION_KEY, QUESTIONNAIRE

pytestmark = pytest.mark.unit

TOPIC = "questionnaire_response"
KEY_RECORD = {"projectId": "radar-test", "userId": "subject-1", "sourceId": "source-0001"}


class _StubSchemas:
    """Schema source returning the local questionnaire schema for any id."""

    def __init__(self):
        self.requested = []

    def schema_by_id(self, schema_id):
        self.requested.append(schema_id)
        return QUESTIONNAIRE


@pytest.fixture
def bound_cache():
    cache = SharedRegistryCache()
    cache.bind_schema(SchemaBinding(TOPIC, KEY, 11, version=1))
    cache.bind_schema(SchemaBinding(TOPIC, VALUE, 12, version=3))
    return cache


@pytest.fixture
def values():
    generator = SyntheticDataGenerator(rng=random.Random(3))
    return [generator.questionnaire(4).to_record() for _ in range(2)]


# =============================================================================
# JSON envelope
# =============================================================================


def test_json_envelope_round_trip(bound_cache, values):
    # Arrange
    router = PayloadEncoderRouter(bound_cache, _StubSchemas())

    # Act
    payload = router.encode_for_topic(PayloadFormat.JSON, TOPIC, KEY_RECORD, values)
    key_id, value_id, records = decode_json_envelope(payload.body)

    # Assert
    assert (key_id, value_id) == (11, 12)
    assert [key for key, _ in records] == [KEY_RECORD, KEY_RECORD]
    assert [value for _, value in records] == values


def test_json_envelope_embeds_avro_json_objects(bound_cache, values):
    """Keys and values are JSON objects with Avro union wrapping, not strings."""
    router = PayloadEncoderRouter(bound_cache, _StubSchemas())

    envelope = json.loads(router.encode_for_topic("json", TOPIC, KEY_RECORD, values).body)

    first = envelope["records"][0]
    assert first["key"]["projectId"] == {"string": "radar-test"}
    assert isinstance(first["value"], dict)
    assert len(envelope["records"]) == len(values)


def test_json_content_type_carries_api_version(bound_cache, values):
    router = PayloadEncoderRouter(bound_cache, _StubSchemas(), api_version=2)

    payload = router.encode_for_topic("json", TOPIC, KEY_RECORD, values)

    assert payload.content_type == "application/vnd.kafka.json.v2+json; charset=utf-8"


# =============================================================================
# Binary envelope
# =============================================================================


def test_binary_record_set_round_trip(bound_cache, values):
    # Arrange
    schemas = _StubSchemas()
    router = PayloadEncoderRouter(bound_cache, schemas)

    # Act
    payload = router.encode_for_topic(PayloadFormat.BINARY, TOPIC, KEY_RECORD, values)
    record_set, decoded = decode_record_set(payload.body)

    # Assert
    assert payload.content_type == "application/vnd.radarbase.avro.v3+binary"
    assert schemas.requested == [12]
    assert record_set["keySchemaVersion"] == 1
    assert record_set["valueSchemaVersion"] == 3
    assert record_set["userId"] == "subject-1"
    assert record_set["sourceId"] == "source-0001"
    assert decoded == values


# =============================================================================
# Failures
# =============================================================================


def test_missing_binding_is_a_data_error(values):
    router = PayloadEncoderRouter(SharedRegistryCache(), _StubSchemas())

    with pytest.raises(DataError, match="No key schema id"):
        router.encode_for_topic("json", TOPIC, KEY_RECORD, values)


def test_unknown_format_is_rejected(bound_cache, values):
    router = PayloadEncoderRouter(bound_cache, _StubSchemas())

    with pytest.raises(ValueError):
        router.encode_for_topic("xml", TOPIC, KEY_RECORD, values)


def test_record_not_matching_schema_is_a_generator_defect():
    with pytest.raises(GeneratorDefect):
        to_avro_json(OBSERVATION_KEY, {"projectId": 5, "userId": "u", "sourceId": "s"})
