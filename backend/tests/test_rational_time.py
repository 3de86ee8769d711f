"""Tests for frame-exact time values."""

import pytest

from studio.exceptions import RateMismatchError
from studio.utils.rational_time import (
    RationalTime,
    TimeRange,
    add_times,
    frames_to_seconds,
    to_frames,
)


class TestToFrames:
    """Seconds to frames conversion."""

    @pytest.mark.parametrize(
        "seconds,rate,expected",
        [
            (0.0, 25, 0),
            (1.0, 25, 25),
            (2.5, 24, 60),
            (0.5, 1, 1),  # halves round up, not to even
            (2.5, 1, 3),
            (0.03, 25, 1),
            (0.01, 30, 0),
        ],
    )
    def test_rounds_to_nearest_frame(self, seconds, rate, expected):
        assert to_frames(seconds, rate) == expected

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            to_frames(1.0, 0)
        with pytest.raises(ValueError):
            frames_to_seconds(10, -25)

    @pytest.mark.parametrize("rate", [24, 25, 30])
    def test_round_trip_within_one_frame(self, rate):
        for seconds in (0.0, 0.333, 1.77, 12.345, 59.999):
            back = RationalTime.from_seconds(seconds, rate).to_seconds()
            assert abs(back - seconds) <= 1 / rate


class TestRationalTime:
    """Arithmetic and comparison."""

    def test_add_same_rate(self):
        total = RationalTime(10, 25) + RationalTime(15, 25)
        assert total == RationalTime(25, 25)
        assert total.to_seconds() == 1.0

    def test_add_rate_mismatch_raises(self):
        with pytest.raises(RateMismatchError) as exc_info:
            add_times(RationalTime(10, 24), RationalTime(10, 25))
        assert exc_info.value.code == "RATE_MISMATCH"

    def test_subtract_and_compare(self):
        a = RationalTime(30, 30)
        b = RationalTime(12, 30)
        assert (a - b).value == 18
        assert b < a
        assert b <= b

    def test_compare_across_rates_raises(self):
        with pytest.raises(RateMismatchError):
            RationalTime(1, 24) < RationalTime(1, 30)


class TestTimeRange:
    """Ranges are start plus duration with an exclusive end."""

    def test_end_time(self):
        time_range = TimeRange(RationalTime(25, 25), RationalTime(50, 25))
        assert time_range.end_time() == RationalTime(75, 25)

    def test_contains_is_half_open(self):
        time_range = TimeRange.from_seconds(1.0, 2.0, 25)
        assert time_range.contains(RationalTime(25, 25))
        assert time_range.contains(RationalTime(74, 25))
        assert not time_range.contains(RationalTime(75, 25))

    def test_mixed_rates_rejected(self):
        with pytest.raises(RateMismatchError):
            TimeRange(RationalTime(0, 24), RationalTime(10, 25))

    def test_negative_duration_rejected(self):
        with pytest.raises(ValueError):
            TimeRange(RationalTime(10, 25), RationalTime(-1, 25))

    def test_to_seconds(self):
        assert TimeRange.from_seconds(2.0, 3.0, 30).to_seconds() == (2.0, 3.0)
