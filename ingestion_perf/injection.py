"""
User-injection profiles for workflow phases.

Two families are supported:

**Open model**: sessions arrive at a rate, each running its scenario once:

- :class:`AtOnceUsers`: *n* sessions immediately
- :class:`ConstantUsersPerSec`: a steady arrival rate for a duration
- :class:`RampUsersPerSec`: an arrival rate ramping linearly

**Closed model**: a target number of concurrent sessions is maintained; a
finished session is immediately replaced by a new one:

- :class:`ConstantConcurrentUsers`: one level for a duration
- :class:`IncrementConcurrentUsers`: stepped levels separated by ramps

Every profile answers :meth:`InjectionProfile.target` with the Locust
``(user_count, spawn_rate)`` pair for a point in time relative to the start
of its phase, which is how :class:`~ingestion_perf.orchestrator.PhaseOrchestrator`
drives Locust's shape API.

Key Concepts Demonstrated:
- Closed-form arrival counts (no per-tick state)
- Explicit level/ramp segments that can be inspected and tested
"""

from __future__ import annotations

import math
from typing import NamedTuple, Protocol

LEVEL = "level"
RAMP = "ramp"


class SessionCounts(Protocol):
    """Progress of the sessions of one phase (see ``PhaseTracker``)."""

    @property
    def finished(self) -> int: ...


class Segment(NamedTuple):
    """A stretch of a closed-model plan."""

    kind: str
    start: float
    end: float
    users_from: int
    users_to: int


class InjectionProfile:
    """Base class of all profiles."""

    #: Closed-model users loop sessions; open-model users run one session.
    closed = False

    @property
    def duration(self) -> float:
        raise NotImplementedError

    def target(self, elapsed: float) -> tuple[int, float]:
        """Return ``(user_count, spawn_rate)`` at *elapsed* seconds into the phase."""
        raise NotImplementedError

    def is_complete(self, elapsed: float, sessions: SessionCounts) -> bool:
        """Return True once the phase may start draining."""
        raise NotImplementedError


# =====================================================================
# Open model
# =====================================================================


class OpenProfile(InjectionProfile):
    """Arrival-driven profile: the user count only ever grows."""

    def total_users(self) -> int:
        return self.arrivals_by(self.duration)

    def arrivals_by(self, elapsed: float) -> int:
        """Number of sessions that have arrived after *elapsed* seconds."""
        raise NotImplementedError

    def spawn_rate(self) -> float:
        raise NotImplementedError

    def target(self, elapsed: float) -> tuple[int, float]:
        return self.arrivals_by(elapsed), self.spawn_rate()

    def is_complete(self, elapsed: float, sessions: SessionCounts) -> bool:
        return elapsed >= self.duration and sessions.finished >= self.total_users()


class AtOnceUsers(OpenProfile):
    """Start *users* sessions at the beginning of the phase."""

    def __init__(self, users: int):
        if users < 0:
            raise ValueError("users must not be negative")
        self.users = users

    @property
    def duration(self) -> float:
        return 0.0

    def arrivals_by(self, elapsed: float) -> int:
        return self.users

    def spawn_rate(self) -> float:
        return float(max(self.users, 1))

    def __repr__(self) -> str:
        return f"AtOnceUsers({self.users})"


class ConstantUsersPerSec(OpenProfile):
    """Start sessions at *rate* per second for *duration* seconds."""

    def __init__(self, rate: float, duration: float):
        if rate <= 0 or duration <= 0:
            raise ValueError("rate and duration must be positive")
        self.rate = rate
        self._duration = duration

    @property
    def duration(self) -> float:
        return self._duration

    def arrivals_by(self, elapsed: float) -> int:
        elapsed = min(max(elapsed, 0.0), self._duration)
        return math.floor(self.rate * elapsed + 1e-9)

    def spawn_rate(self) -> float:
        return self.rate

    def __repr__(self) -> str:
        return f"ConstantUsersPerSec({self.rate}, {self._duration})"


class RampUsersPerSec(OpenProfile):
    """Start sessions at a rate ramping linearly from *rate_from* to *rate_to*."""

    def __init__(self, rate_from: float, rate_to: float, duration: float):
        if rate_from < 0 or rate_to < 0 or duration <= 0:
            raise ValueError("rates must not be negative and duration must be positive")
        self.rate_from = rate_from
        self.rate_to = rate_to
        self._duration = duration

    @property
    def duration(self) -> float:
        return self._duration

    def arrivals_by(self, elapsed: float) -> int:
        t = min(max(elapsed, 0.0), self._duration)
        slope = (self.rate_to - self.rate_from) / self._duration
        # Integral of the instantaneous rate from 0 to t.
        return math.floor(self.rate_from * t + slope * t * t / 2 + 1e-9)

    def spawn_rate(self) -> float:
        return max(self.rate_from, self.rate_to, 1.0)

    def __repr__(self) -> str:
        return f"RampUsersPerSec({self.rate_from}, {self.rate_to}, {self._duration})"


# =====================================================================
# Closed model
# =====================================================================


class ClosedProfile(InjectionProfile):
    """Concurrency-driven profile described by level and ramp segments."""

    closed = True

    def segments(self) -> list[Segment]:
        raise NotImplementedError

    def levels(self) -> list[int]:
        """Concurrency of every level segment, in order."""
        return [segment.users_from for segment in self.segments() if segment.kind == LEVEL]

    @property
    def duration(self) -> float:
        segments = self.segments()
        return segments[-1].end if segments else 0.0

    def segment_at(self, elapsed: float) -> Segment | None:
        """Return the segment covering *elapsed*, or ``None`` past the end."""
        for segment in self.segments():
            if segment.start <= elapsed < segment.end:
                return segment
        return None

    def concurrency_at(self, elapsed: float) -> int:
        """Planned concurrency at *elapsed*, interpolated along ramps."""
        segment = self.segment_at(elapsed)
        if segment is None:
            return 0
        if segment.kind == LEVEL:
            return segment.users_from
        progress = (elapsed - segment.start) / (segment.end - segment.start)
        return round(segment.users_from + (segment.users_to - segment.users_from) * progress)

    def target(self, elapsed: float) -> tuple[int, float]:
        segment = self.segment_at(elapsed)
        if segment is None:
            return 0, 1.0
        if segment.kind == LEVEL:
            return segment.users_from, float(max(segment.users_from, 1))
        # Locust spawns towards the ramp's end level at this rate, which
        # spreads the new users evenly over the ramp.
        delta = abs(segment.users_to - segment.users_from)
        return segment.users_to, max(delta / (segment.end - segment.start), 0.1)

    def is_complete(self, elapsed: float, sessions: SessionCounts) -> bool:
        return elapsed >= self.duration


class ConstantConcurrentUsers(ClosedProfile):
    """Hold *users* concurrent sessions for *duration* seconds."""

    def __init__(self, users: int, duration: float):
        if users < 0 or duration <= 0:
            raise ValueError("users must not be negative and duration must be positive")
        self.users = users
        self._duration = duration

    def segments(self) -> list[Segment]:
        return [Segment(LEVEL, 0.0, self._duration, self.users, self.users)]

    def __repr__(self) -> str:
        return f"ConstantConcurrentUsers({self.users}, {self._duration})"


class IncrementConcurrentUsers(ClosedProfile):
    """
    Stepped closed-model profile.

    Levels are ``starting_from + i * increment`` for ``i`` in
    ``range(times)``; each is held for *level_duration* seconds and
    consecutive levels are joined by linear ramps of *ramp_duration*.

    Example:
        ``IncrementConcurrentUsers(5, times=5, level_duration=60,
        ramp_duration=10, starting_from=5)`` holds 5, 10, 15, 20 and 25
        users for 60 s each, with four 10 s ramps in between (340 s total).
    """

    def __init__(
        self,
        increment: int,
        *,
        times: int,
        level_duration: float,
        ramp_duration: float = 0.0,
        starting_from: int = 0,
    ):
        if increment < 0 or starting_from < 0:
            raise ValueError("increment and starting_from must not be negative")
        if times < 1 or level_duration <= 0 or ramp_duration < 0:
            raise ValueError("times and level_duration must be positive, ramp_duration not negative")
        self.increment = increment
        self.times = times
        self.level_duration = level_duration
        self.ramp_duration = ramp_duration
        self.starting_from = starting_from

    def segments(self) -> list[Segment]:
        segments = []
        clock = 0.0
        for index in range(self.times):
            users = self.starting_from + index * self.increment
            if index and self.ramp_duration:
                previous = users - self.increment
                segments.append(Segment(RAMP, clock, clock + self.ramp_duration, previous, users))
                clock += self.ramp_duration
            segments.append(Segment(LEVEL, clock, clock + self.level_duration, users, users))
            clock += self.level_duration
        return segments

    def __repr__(self) -> str:
        return (
            f"IncrementConcurrentUsers({self.increment}, times={self.times}, "
            f"level_duration={self.level_duration}, ramp_duration={self.ramp_duration}, "
            f"starting_from={self.starting_from})"
        )
