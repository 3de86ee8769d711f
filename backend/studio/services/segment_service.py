"""User edits on segments: create, trim, move, split, duplicate, lock, delete.

Every edit except unlocking is refused on a locked segment. Overlap with
neighbours is not checked here; the layout builder rejects overlapping
arrangements and the caller decides how to resolve them.
"""

import logging
import math
from uuid import UUID

from studio.exceptions import InvalidTimeRangeError, SegmentBusyError, SegmentLockedError, ValidationError
from studio.schemas.envelope import ErrorLocation
from studio.schemas.timeline import Project, RevisionStatus, Segment, Track
from studio.services.repository import TimelineRepository

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_DURATION_SEC = 5.0


def _check_range(in_sec: float, out_sec: float) -> None:
    if not (math.isfinite(in_sec) and math.isfinite(out_sec)):
        raise InvalidTimeRangeError(in_sec, out_sec)
    if in_sec < 0 or out_sec <= in_sec:
        raise InvalidTimeRangeError(in_sec, out_sec)


class SegmentService:
    def __init__(self, repository: TimelineRepository):
        self.repository = repository

    async def create_project(self, title: str, fps: int = 25, aspect: str = "16:9", user_id: str | None = None) -> Project:
        return await self.repository.create_project(Project(title=title, fps=fps, aspect=aspect, user_id=user_id))

    async def create_track(self, project_id: UUID, name: str, type: str = "video", order: int | None = None) -> Track:
        if order is None:
            order = len(await self.repository.list_tracks(project_id))
        return await self.repository.create_track(Track(project_id=project_id, name=name, type=type, order=order))

    async def create_segment(
        self,
        track_id: UUID,
        in_sec: float,
        out_sec: float | None = None,
        label: str | None = None,
        source_in_sec: float = 0.0,
    ) -> Segment:
        track = await self.repository.get_track(track_id)
        if out_sec is None:
            out_sec = in_sec + DEFAULT_SEGMENT_DURATION_SEC
        _check_range(in_sec, out_sec)
        if not math.isfinite(source_in_sec) or source_in_sec < 0:
            raise ValidationError(
                f"Invalid source offset: {source_in_sec}", location=ErrorLocation(field="source_in_sec")
            )
        order = len(await self.repository.list_segments(track_id))
        segment = Segment(
            project_id=track.project_id,
            track_id=track_id,
            order=order,
            in_sec=in_sec,
            out_sec=out_sec,
            label=label,
            source_in_sec=source_in_sec,
        )
        created = await self.repository.create_segment(segment)
        logger.info(f"Created segment {created.id} on track {track_id} [{in_sec}, {out_sec})")
        return created

    async def _editable(self, segment_id: UUID) -> Segment:
        segment = await self.repository.get_segment(segment_id)
        if segment.locked:
            raise SegmentLockedError(str(segment_id))
        return segment

    async def trim(self, segment_id: UUID, in_sec: float | None = None, out_sec: float | None = None) -> Segment:
        """Move either edge. Trimming the in point shifts the source offset with it."""
        segment = await self._editable(segment_id)
        new_in = segment.in_sec if in_sec is None else in_sec
        new_out = segment.out_sec if out_sec is None else out_sec
        _check_range(new_in, new_out)
        source_in = max(0.0, segment.source_in_sec + (new_in - segment.in_sec))
        return await self.repository.update_segment(
            segment_id, in_sec=new_in, out_sec=new_out, source_in_sec=source_in
        )

    async def move(self, segment_id: UUID, in_sec: float) -> Segment:
        """Move a segment keeping its duration."""
        segment = await self._editable(segment_id)
        out_sec = in_sec + segment.duration_sec
        _check_range(in_sec, out_sec)
        return await self.repository.update_segment(segment_id, in_sec=in_sec, out_sec=out_sec)

    async def split(self, segment_id: UUID, at_sec: float) -> tuple[Segment, Segment]:
        """Split at an absolute timeline time.

        The left half keeps the revisions and active take. The right half starts
        without revisions, since an active pointer may only name the segment's own.
        """
        segment = await self._editable(segment_id)
        if not segment.in_sec < at_sec < segment.out_sec:
            raise ValidationError(
                f"Split point {at_sec} is outside segment ({segment.in_sec}, {segment.out_sec})",
                location=ErrorLocation(field="at_sec", segment_id=str(segment_id)),
            )
        left = await self.repository.update_segment(segment_id, out_sec=at_sec)
        right = await self.repository.create_segment(
            Segment(
                project_id=segment.project_id,
                track_id=segment.track_id,
                order=segment.order + 1,
                in_sec=at_sec,
                out_sec=segment.out_sec,
                source_in_sec=segment.source_in_sec + (at_sec - segment.in_sec),
                label=segment.label,
            )
        )
        return left, right

    async def duplicate(self, segment_id: UUID) -> Segment:
        """Copy a segment to directly after the last segment on its track."""
        segment = await self.repository.get_segment(segment_id)
        siblings = await self.repository.list_segments(segment.track_id)
        track_end = max(s.out_sec for s in siblings)
        copy = Segment(
            project_id=segment.project_id,
            track_id=segment.track_id,
            order=len(siblings),
            in_sec=track_end,
            out_sec=track_end + segment.duration_sec,
            source_in_sec=segment.source_in_sec,
            label=f"{segment.label} (copy)" if segment.label else None,
        )
        return await self.repository.create_segment(copy)

    async def set_label(self, segment_id: UUID, label: str | None) -> Segment:
        await self._editable(segment_id)
        return await self.repository.update_segment(segment_id, label=label)

    async def set_locked(self, segment_id: UUID, locked: bool) -> Segment:
        await self.repository.get_segment(segment_id)
        return await self.repository.update_segment(segment_id, locked=locked)

    async def delete(self, segment_id: UUID) -> None:
        """Delete a segment with its history. Refused while a generation is queued or running."""
        await self._editable(segment_id)
        in_flight = (RevisionStatus.QUEUED, RevisionStatus.RUNNING)
        if any(r.status in in_flight for r in await self.repository.list_revisions(segment_id)):
            raise SegmentBusyError(str(segment_id))
        await self.repository.delete_segment(segment_id)
        logger.info(f"Deleted segment {segment_id}")
