"""
Unit tests for the synthetic questionnaire generator.

The clock and random source are injected so every timestamp can be
asserted exactly.
"""

import random

import pytest

from ingestion_perf.errors import GeneratorDefect
from ingestion_perf.generator import SyntheticDataGenerator

pytestmark = pytest.mark.unit


class _FixedRandom(random.Random):
    """Random source whose ``randrange`` always returns one value."""

    def __init__(self, value: int):
        super().__init__(0)
        self._value = value

    def randrange(self, *args, **kwargs):
        return self._value


def test_answers_start_in_the_past_and_step_forward():
    """The first answer is now - jitter + step; each next one is one step later."""
    # Arrange
    generator = SyntheticDataGenerator(
        step=1000.0, rng=_FixedRandom(2500), clock=lambda: 1_700_000_000.0
    )

    # Act
    answers = generator.generate(3)

    # Assert
    assert [answer.start_time for answer in answers] == [
        1_699_998_500.0,
        1_699_999_500.0,
        1_700_000_500.0,
    ]
    assert [answer.value for answer in answers] == ["Answer #0", "Answer #1", "Answer #2"]
    assert all(answer.start_time == answer.end_time for answer in answers)


@pytest.mark.parametrize("count", [1, 2, 10, 50])
def test_timestamps_strictly_increase_by_constant_step(count):
    # Arrange
    generator = SyntheticDataGenerator(step=7.5, rng=random.Random(count))

    # Act
    answers = generator.generate(count)

    # Assert
    deltas = [b.start_time - a.start_time for a, b in zip(answers, answers[1:])]
    assert all(delta == pytest.approx(7.5) for delta in deltas)


def test_jitter_stays_below_the_configured_bound():
    generator = SyntheticDataGenerator(step=1.0, max_jitter=10, clock=lambda: 100.0)

    first = generator.generate(1)[0]

    assert 91.0 <= first.start_time <= 101.0


def test_questionnaire_bounds_every_answer():
    # Arrange
    generator = SyntheticDataGenerator(rng=random.Random(1))

    # Act
    questionnaire = generator.questionnaire(10)

    # Assert
    assert len(questionnaire.answers) == 10
    for answer in questionnaire.answers:
        assert questionnaire.time <= answer.start_time <= answer.end_time <= questionnaire.time_completed
    assert questionnaire.time == questionnaire.answers[0].start_time
    assert questionnaire.time_completed == questionnaire.answers[-1].end_time


def test_questionnaire_record_uses_avro_field_names():
    generator = SyntheticDataGenerator(rng=random.Random(1), clock=lambda: 5000.0)

    record = generator.questionnaire(2, name="phq8", version="2").to_record()

    assert set(record) == {"time", "timeCompleted", "timeNotification", "name", "version", "answers"}
    assert record["name"] == "phq8"
    assert record["timeNotification"] is None
    assert set(record["answers"][0]) == {"questionId", "value", "startTime", "endTime"}


def test_generate_rejects_empty_sequences():
    with pytest.raises(ValueError):
        SyntheticDataGenerator().generate(0)


def test_unrepresentable_step_is_a_generator_defect():
    """A step lost to float precision at epoch scale breaks monotonicity."""
    generator = SyntheticDataGenerator(step=1e-9, clock=lambda: 1_700_000_000.0)

    with pytest.raises(GeneratorDefect):
        generator.generate(3)
