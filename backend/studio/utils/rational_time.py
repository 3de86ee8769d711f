"""Frame-exact time values.

A ``RationalTime`` is an integer frame count at a rate in frames per second.
Times are only combinable when their rates match; mixing rates raises
``RateMismatchError`` instead of converting silently.
"""

import math
from dataclasses import dataclass

from studio.exceptions import RateMismatchError

SUPPORTED_RATES = (24, 25, 30)
DEFAULT_RATE = 25


def to_frames(seconds: float, rate: float) -> int:
    """Convert seconds to the nearest whole frame (halves round up)."""
    if rate <= 0:
        raise ValueError(f"rate must be positive, got {rate}")
    return math.floor(seconds * rate + 0.5)


def frames_to_seconds(frames: int, rate: float) -> float:
    if rate <= 0:
        raise ValueError(f"rate must be positive, got {rate}")
    return frames / rate


@dataclass(frozen=True)
class RationalTime:
    value: int
    rate: float

    @classmethod
    def from_seconds(cls, seconds: float, rate: float) -> "RationalTime":
        return cls(value=to_frames(seconds, rate), rate=rate)

    def to_seconds(self) -> float:
        return frames_to_seconds(self.value, self.rate)

    def _check_rate(self, other: "RationalTime") -> None:
        if self.rate != other.rate:
            raise RateMismatchError(self.rate, other.rate)

    def __add__(self, other: "RationalTime") -> "RationalTime":
        return add_times(self, other)

    def __sub__(self, other: "RationalTime") -> "RationalTime":
        self._check_rate(other)
        return RationalTime(self.value - other.value, self.rate)

    def __lt__(self, other: "RationalTime") -> bool:
        self._check_rate(other)
        return self.value < other.value

    def __le__(self, other: "RationalTime") -> bool:
        self._check_rate(other)
        return self.value <= other.value


def add_times(a: RationalTime, b: RationalTime) -> RationalTime:
    """Add two times. Both must share a rate."""
    if a.rate != b.rate:
        raise RateMismatchError(a.rate, b.rate)
    return RationalTime(a.value + b.value, a.rate)


@dataclass(frozen=True)
class TimeRange:
    """A span expressed as start plus duration."""

    start: RationalTime
    duration: RationalTime

    def __post_init__(self) -> None:
        if self.start.rate != self.duration.rate:
            raise RateMismatchError(self.start.rate, self.duration.rate)
        if self.duration.value < 0:
            raise ValueError(f"duration must not be negative, got {self.duration.value}")

    @classmethod
    def from_seconds(cls, start_sec: float, duration_sec: float, rate: float) -> "TimeRange":
        return cls(
            start=RationalTime.from_seconds(start_sec, rate),
            duration=RationalTime.from_seconds(duration_sec, rate),
        )

    @property
    def rate(self) -> float:
        return self.start.rate

    def end_time(self) -> RationalTime:
        """Exclusive end of the range."""
        return add_times(self.start, self.duration)

    def contains(self, time: RationalTime) -> bool:
        if time.rate != self.rate:
            raise RateMismatchError(self.rate, time.rate)
        return self.start.value <= time.value < self.end_time().value

    def to_seconds(self) -> tuple[float, float]:
        """Return ``(start_sec, duration_sec)``."""
        return self.start.to_seconds(), self.duration.to_seconds()
