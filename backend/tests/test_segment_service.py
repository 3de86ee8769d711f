"""Tests for segment editing operations."""

import pytest

from studio.exceptions import InvalidTimeRangeError, SegmentBusyError, SegmentLockedError, ValidationError
from studio.schemas.timeline import Asset, RevisionStatus
from studio.services.track_layout import build_track_items


async def _track(container):
    project = await container.segments.create_project("Pilot", fps=25)
    return await container.segments.create_track(project.id, "V1")


class TestCreateSegment:

    @pytest.mark.asyncio
    async def test_default_duration(self, container):
        track = await _track(container)
        segment = await container.segments.create_segment(track.id, 2.0)
        assert segment.out_sec == 7.0
        assert segment.project_id == track.project_id
        assert segment.active_revision_id is None

    @pytest.mark.asyncio
    async def test_invalid_range(self, container):
        track = await _track(container)
        with pytest.raises(InvalidTimeRangeError):
            await container.segments.create_segment(track.id, 3.0, 3.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "in_sec,out_sec",
        [(1.0, float("nan")), (float("nan"), 2.0), (0.0, float("inf")), (float("-inf"), 1.0)],
    )
    async def test_non_finite_times_rejected(self, container, in_sec, out_sec):
        track = await _track(container)
        with pytest.raises(InvalidTimeRangeError):
            await container.segments.create_segment(track.id, in_sec, out_sec)

        assert await container.repository.list_segments(track.id) == []

    @pytest.mark.asyncio
    async def test_non_finite_source_offset_rejected(self, container):
        track = await _track(container)
        with pytest.raises(ValidationError):
            await container.segments.create_segment(track.id, 0.0, 1.0, source_in_sec=float("nan"))

    @pytest.mark.asyncio
    async def test_tracks_are_ordered(self, container):
        project = await container.segments.create_project("Pilot")
        first = await container.segments.create_track(project.id, "V1")
        second = await container.segments.create_track(project.id, "A1", type="audio")
        assert (first.order, second.order) == (0, 1)


class TestEdits:

    @pytest.mark.asyncio
    async def test_trim_in_point_shifts_source(self, container):
        track = await _track(container)
        segment = await container.segments.create_segment(track.id, 1.0, 5.0)

        trimmed = await container.segments.trim(segment.id, in_sec=2.0)

        assert (trimmed.in_sec, trimmed.out_sec) == (2.0, 5.0)
        assert trimmed.source_in_sec == 1.0

    @pytest.mark.asyncio
    async def test_trim_to_empty_rejected(self, container):
        track = await _track(container)
        segment = await container.segments.create_segment(track.id, 1.0, 5.0)
        with pytest.raises(InvalidTimeRangeError):
            await container.segments.trim(segment.id, out_sec=0.5)

    @pytest.mark.asyncio
    async def test_move_keeps_duration(self, container):
        track = await _track(container)
        segment = await container.segments.create_segment(track.id, 1.0, 3.0)
        moved = await container.segments.move(segment.id, 10.0)
        assert (moved.in_sec, moved.out_sec) == (10.0, 12.0)

    @pytest.mark.asyncio
    async def test_split(self, container):
        track = await _track(container)
        segment = await container.segments.create_segment(track.id, 0.0, 4.0, label="Shot 1")
        revision = await container.revisions.create_revision(segment.id, "nano-fast")

        left, right = await container.segments.split(segment.id, 1.5)

        assert (left.id, left.in_sec, left.out_sec) == (segment.id, 0.0, 1.5)
        assert (right.in_sec, right.out_sec) == (1.5, 4.0)
        assert right.source_in_sec == 1.5
        assert right.label == "Shot 1"
        assert right.active_revision_id is None
        assert [r.id for r in await container.repository.list_revisions(left.id)] == [revision.id]
        assert await container.repository.list_revisions(right.id) == []

        items = list(build_track_items(await container.repository.list_segments(track.id), 25))
        assert [item.kind for item in items] == ["clip", "clip"]

    @pytest.mark.asyncio
    async def test_split_outside_segment(self, container):
        track = await _track(container)
        segment = await container.segments.create_segment(track.id, 0.0, 4.0)
        with pytest.raises(ValidationError):
            await container.segments.split(segment.id, 4.0)

    @pytest.mark.asyncio
    async def test_duplicate_appends_after_track_end(self, container):
        track = await _track(container)
        first = await container.segments.create_segment(track.id, 0.0, 2.0, label="Intro")
        await container.segments.create_segment(track.id, 3.0, 6.0)

        copy = await container.segments.duplicate(first.id)

        assert (copy.in_sec, copy.out_sec) == (6.0, 8.0)
        assert copy.label == "Intro (copy)"
        assert copy.id != first.id

    @pytest.mark.asyncio
    async def test_locked_segment_refuses_edits(self, container):
        track = await _track(container)
        segment = await container.segments.create_segment(track.id, 0.0, 2.0)
        await container.segments.set_locked(segment.id, True)

        with pytest.raises(SegmentLockedError):
            await container.segments.trim(segment.id, out_sec=3.0)
        with pytest.raises(SegmentLockedError):
            await container.segments.split(segment.id, 1.0)
        with pytest.raises(SegmentLockedError):
            await container.segments.delete(segment.id)

        unlocked = await container.segments.set_locked(segment.id, False)
        assert unlocked.locked is False

    @pytest.mark.asyncio
    async def test_non_finite_trim_keeps_layout_intact(self, container):
        track = await _track(container)
        segment = await container.segments.create_segment(track.id, 1.0, 5.0)

        with pytest.raises(InvalidTimeRangeError):
            await container.segments.trim(segment.id, out_sec=float("inf"))
        with pytest.raises(InvalidTimeRangeError):
            await container.segments.move(segment.id, float("nan"))

        segments = await container.repository.list_segments(track.id)
        items = list(build_track_items(segments, 25))
        assert [item.kind for item in items] == ["gap", "clip"]

    @pytest.mark.asyncio
    async def test_delete_refused_while_generating(self, container):
        track = await _track(container)
        segment = await container.segments.create_segment(track.id, 0.0, 2.0)
        revision = await container.revisions.create_revision(segment.id, "nano-fast")
        await container.revisions.mark_queued(revision.id)

        with pytest.raises(SegmentBusyError):
            await container.segments.delete(segment.id)
        assert (await container.repository.get_revision(revision.id)).status == RevisionStatus.QUEUED

        await container.revisions.mark_running(revision.id)
        with pytest.raises(SegmentBusyError):
            await container.segments.delete(segment.id)

    @pytest.mark.asyncio
    async def test_delete_cascades(self, container):
        track = await _track(container)
        segment = await container.segments.create_segment(track.id, 0.0, 2.0)
        revision = await container.revisions.create_revision(segment.id, "nano-fast")
        asset = await container.repository.create_asset(
            Asset(project_id=track.project_id, kind="image", storage_path="a.png", mime_type="image/png")
        )
        await container.revisions.add_keyframe(revision.id, 1.0, asset.id)

        await container.segments.delete(segment.id)

        assert await container.repository.list_segments(track.id) == []
        assert await container.repository.list_revisions(segment.id) == []
        assert await container.repository.list_keyframes(revision.id) == []
