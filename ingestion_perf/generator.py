"""
Synthetic questionnaire responses.

Produces :class:`Questionnaire` records whose answers carry strictly
increasing timestamps.  The first answer is placed a random amount of time
in the past so that concurrent sessions do not all send identical
timelines, and each following answer is exactly ``step`` seconds later.

Key Concepts Demonstrated:
- Randomised but invariant-preserving payloads
- Injectable clock and RNG for deterministic tests
- Converting frozen dataclasses into Avro-ready dictionaries
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ingestion_perf.errors import GeneratorDefect

DEFAULT_STEP_SECONDS = 1000.0
DEFAULT_MAX_JITTER_SECONDS = 10000


@dataclass(frozen=True)
class Answer:
    """One answered question."""

    question_id: str
    value: str
    start_time: float
    end_time: float

    def to_record(self) -> dict[str, Any]:
        return {
            "questionId": self.question_id,
            "value": self.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }


@dataclass(frozen=True)
class Questionnaire:
    """A completed questionnaire wrapping an ordered tuple of answers."""

    time: float
    time_completed: float
    name: str
    version: str
    answers: tuple[Answer, ...]
    time_notification: float | None = None

    def to_record(self) -> dict[str, Any]:
        return {
            "time": self.time,
            "timeCompleted": self.time_completed,
            "timeNotification": self.time_notification,
            "name": self.name,
            "version": self.version,
            "answers": [answer.to_record() for answer in self.answers],
        }


class SyntheticDataGenerator:
    """
    Generate questionnaire answers with monotonic timestamps.

    Args:
        step: Seconds between consecutive answers.
        max_jitter: Upper bound (exclusive, whole seconds) of the random
            offset subtracted from the current time for the first answer.
        rng: Random source; defaults to a private :class:`random.Random`.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        *,
        step: float = DEFAULT_STEP_SECONDS,
        max_jitter: int = DEFAULT_MAX_JITTER_SECONDS,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if step <= 0:
            raise ValueError("step must be positive")
        if max_jitter < 1:
            raise ValueError("max_jitter must be at least 1")
        self.step = step
        self.max_jitter = max_jitter
        self._rng = rng or random.Random()
        self._clock = clock

    def generate(self, count: int) -> list[Answer]:
        """
        Build *count* answers, each ``step`` seconds after the previous one.

        Raises:
            ValueError: If *count* is not positive.
            GeneratorDefect: If the produced timestamps are not strictly
                increasing (for example because ``step`` is too small to be
                represented at the current epoch magnitude).
        """
        if count < 1:
            raise ValueError("count must be at least 1")

        local_time = self._clock() - self._rng.randrange(self.max_jitter)
        answers = []
        for index in range(count):
            local_time += self.step
            answers.append(Answer("questionId", f"Answer #{index}", local_time, local_time))

        _check_monotonic(answers)
        return answers

    def questionnaire(self, count: int, *, name: str = "test", version: str = "1") -> Questionnaire:
        """Wrap ``generate(count)`` into a questionnaire spanning its answers."""
        answers = self.generate(count)
        return Questionnaire(
            time=answers[0].start_time,
            time_completed=answers[-1].end_time,
            name=name,
            version=version,
            answers=tuple(answers),
        )


def _check_monotonic(answers: list[Answer]) -> None:
    previous = None
    for answer in answers:
        if answer.end_time < answer.start_time:
            raise GeneratorDefect(f"{answer.value} ends before it starts")
        if previous is not None and answer.start_time <= previous.end_time:
            raise GeneratorDefect(f"{answer.value} overlaps {previous.value}")
        previous = answer
