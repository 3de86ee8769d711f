"""Track layout builder.

Turns an unordered collection of segments on one track into an ordered run of
clips and gaps measured in frames. Pure: inputs are never mutated and the
returned sequence can be iterated any number of times.
"""

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Literal, Protocol
from uuid import UUID

from studio.exceptions import InvalidTimeRangeError, InvalidTimelineOverlapError
from studio.utils.rational_time import RationalTime, TimeRange, to_frames

# Gaps of this many frames or fewer are absorbed (UI drag snap error).
GAP_TOLERANCE_FRAMES = 1


class TimelineSegment(Protocol):
    id: UUID
    in_sec: float
    out_sec: float


@dataclass(frozen=True)
class ClipItem:
    segment_id: UUID
    range: TimeRange  # position as presented on the track
    source_range: TimeRange
    label: str | None = None
    active_revision_id: UUID | None = None
    kind: Literal["clip"] = "clip"


@dataclass(frozen=True)
class GapItem:
    id: str
    range: TimeRange
    kind: Literal["gap"] = "gap"


TrackItem = ClipItem | GapItem


@dataclass(frozen=True)
class _Placed:
    segment: TimelineSegment
    start_frame: int
    end_frame: int


class TrackItems:
    """Lazy, restartable sequence of track items."""

    def __init__(self, placed: Sequence[_Placed], rate: float):
        self._placed = tuple(placed)
        self.rate = rate

    def __iter__(self) -> Iterator[TrackItem]:
        rate = self.rate
        current_frame = 0
        for entry in self._placed:
            gap_frames = entry.start_frame - current_frame
            if gap_frames > GAP_TOLERANCE_FRAMES:
                yield GapItem(
                    id=f"gap-{current_frame}",
                    range=TimeRange(RationalTime(current_frame, rate), RationalTime(gap_frames, rate)),
                )
                current_frame += gap_frames

            duration = entry.end_frame - entry.start_frame
            segment = entry.segment
            yield ClipItem(
                segment_id=segment.id,
                range=TimeRange(RationalTime(current_frame, rate), RationalTime(duration, rate)),
                source_range=TimeRange(
                    RationalTime(to_frames(getattr(segment, "source_in_sec", 0.0), rate), rate),
                    RationalTime(duration, rate),
                ),
                label=getattr(segment, "label", None),
                active_revision_id=getattr(segment, "active_revision_id", None),
            )
            current_frame += duration

    def __len__(self) -> int:
        return sum(1 for _ in self)


def build_track_items(segments: Iterable[TimelineSegment], rate: float) -> TrackItems:
    """Lay out ``segments`` on a single track at ``rate`` frames per second.

    Raises:
        InvalidTimeRangeError: a segment does not cover at least one frame.
        InvalidTimelineOverlapError: two segments overlap. Resolving the
            overlap is up to the caller.
    """
    placed = []
    for segment in segments:
        start_frame = to_frames(segment.in_sec, rate)
        end_frame = to_frames(segment.out_sec, rate)
        if end_frame <= start_frame:
            raise InvalidTimeRangeError(segment.in_sec, segment.out_sec)
        placed.append(_Placed(segment, start_frame, end_frame))

    # sorted() is stable, so equal starts keep insertion order
    placed.sort(key=lambda entry: entry.start_frame)

    previous: _Placed | None = None
    for entry in placed:
        if previous is not None and entry.start_frame < previous.end_frame:
            raise InvalidTimelineOverlapError(str(entry.segment.id), str(previous.segment.id))
        if previous is None or entry.end_frame > previous.end_frame:
            previous = entry

    return TrackItems(placed, rate)


def track_duration(items: Iterable[TrackItem], rate: float) -> RationalTime:
    total = RationalTime(0, rate)
    for item in items:
        total = total + item.range.duration
    return total


def item_at_time(items: Iterable[TrackItem], seconds: float, rate: float) -> TrackItem | None:
    """Return the item covering ``seconds`` on the presented track, if any."""
    time = RationalTime.from_seconds(seconds, rate)
    for item in items:
        if item.range.contains(time):
            return item
    return None


def timeline_duration(tracks: Iterable[TrackItems], rate: float) -> RationalTime:
    """Duration of the longest track."""
    longest = RationalTime(0, rate)
    for items in tracks:
        duration = track_duration(items, rate)
        if duration.value > longest.value:
            longest = duration
    return longest
