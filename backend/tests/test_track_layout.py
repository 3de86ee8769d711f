"""Tests for the track layout builder.

Features:
- Clip and gap items in frames, ordered by position
- Sub-frame snap tolerance
- Overlap and empty-range rejection
- Restartable iteration
"""

from types import SimpleNamespace
from uuid import uuid4

import pytest

from studio.exceptions import InvalidTimeRangeError, InvalidTimelineOverlapError
from studio.services.track_layout import (
    ClipItem,
    GapItem,
    build_track_items,
    item_at_time,
    timeline_duration,
    track_duration,
)


def _segment(in_sec: float, out_sec: float, **extra):
    return SimpleNamespace(id=uuid4(), in_sec=in_sec, out_sec=out_sec, **extra)


def _spans(items):
    return [(item.kind, item.range.start.value, item.range.duration.value) for item in items]


class TestBuildTrackItems:
    """Layout of a single track."""

    def test_empty_track(self):
        assert list(build_track_items([], 25)) == []

    def test_adjacent_segments_have_no_gap(self):
        items = list(build_track_items([_segment(0, 2), _segment(2, 4)], 25))
        assert _spans(items) == [("clip", 0, 50), ("clip", 50, 50)]

    def test_leading_and_inner_gaps(self):
        first = _segment(1, 2)
        second = _segment(3, 4)
        items = list(build_track_items([first, second], 25))

        assert _spans(items) == [
            ("gap", 0, 25),
            ("clip", 25, 25),
            ("gap", 50, 25),
            ("clip", 75, 25),
        ]
        assert isinstance(items[0], GapItem)
        assert items[0].id == "gap-0"
        assert items[2].id == "gap-50"
        assert items[1].segment_id == first.id
        assert items[3].segment_id == second.id

    def test_unsorted_input_is_ordered(self):
        late = _segment(4, 5)
        early = _segment(0, 1)
        items = [item for item in build_track_items([late, early], 30) if isinstance(item, ClipItem)]
        assert [item.segment_id for item in items] == [early.id, late.id]

    def test_one_frame_gap_is_absorbed(self):
        # 2.04s is frame 51 at 25fps: one frame after the first clip ends
        items = list(build_track_items([_segment(0, 2), _segment(2.04, 4)], 25))
        assert [item.kind for item in items] == ["clip", "clip"]
        assert _spans(items)[1] == ("clip", 50, 49)

    def test_two_frame_gap_is_kept(self):
        items = list(build_track_items([_segment(0, 2), _segment(2.08, 4)], 25))
        assert _spans(items) == [("clip", 0, 50), ("gap", 50, 2), ("clip", 52, 48)]

    def test_no_gap_shorter_than_two_frames(self):
        segments = [_segment(0, 1), _segment(1.04, 2), _segment(2.08, 3), _segment(5, 6)]
        gaps = [item for item in build_track_items(segments, 25) if isinstance(item, GapItem)]
        assert gaps
        assert all(gap.range.duration.value >= 2 for gap in gaps)

    def test_overlap_is_rejected(self):
        first = _segment(0, 2)
        second = _segment(1, 3)
        with pytest.raises(InvalidTimelineOverlapError) as exc_info:
            build_track_items([first, second], 25)
        assert exc_info.value.code == "INVALID_TIMELINE_OVERLAP"
        assert exc_info.value.location.segment_id == str(second.id)

    def test_overlap_with_earlier_long_segment(self):
        segments = [_segment(0, 10), _segment(10, 12), _segment(11, 13)]
        with pytest.raises(InvalidTimelineOverlapError):
            build_track_items(segments, 25)

    def test_sub_frame_segment_is_rejected(self):
        with pytest.raises(InvalidTimeRangeError):
            build_track_items([_segment(1.0, 1.01)], 25)

    def test_iteration_is_restartable(self):
        items = build_track_items([_segment(0, 1), _segment(2, 3)], 24)
        assert list(items) == list(items)
        assert len(items) == 3

    def test_input_is_not_mutated(self):
        segments = [_segment(3, 4), _segment(0, 1)]
        before = list(segments)
        build_track_items(segments, 25)
        assert segments == before

    def test_clip_carries_source_offset_and_revision(self):
        revision_id = uuid4()
        segment = _segment(0, 2, source_in_sec=1.5, label="Opening", active_revision_id=revision_id)
        (clip,) = build_track_items([segment], 30)
        assert clip.source_range.start.value == 45
        assert clip.source_range.duration.value == 60
        assert clip.label == "Opening"
        assert clip.active_revision_id == revision_id


class TestTrackQueries:
    """Duration and lookup helpers."""

    def test_track_duration_includes_gaps(self):
        items = build_track_items([_segment(1, 2), _segment(3, 4)], 25)
        assert track_duration(items, 25).value == 100

    def test_item_at_time(self):
        clip_segment = _segment(1, 2)
        items = build_track_items([clip_segment], 25)

        assert item_at_time(items, 0.5, 25).kind == "gap"
        assert item_at_time(items, 1.0, 25).segment_id == clip_segment.id
        assert item_at_time(items, 2.0, 25) is None

    def test_timeline_duration_is_longest_track(self):
        short = build_track_items([_segment(0, 2)], 25)
        long = build_track_items([_segment(0, 1), _segment(3, 5)], 25)
        assert timeline_duration([short, long], 25).value == 125
        assert timeline_duration([], 25).value == 0
