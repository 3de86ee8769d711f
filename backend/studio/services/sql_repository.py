"""SQLAlchemy-backed timeline repository."""

from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio import models
from studio.exceptions import (
    AssetNotFoundError,
    ProjectNotFoundError,
    ResourceNotFoundError,
    RevisionNotFoundError,
    SegmentNotFoundError,
    TrackNotFoundError,
)
from studio.models.base import utcnow
from studio.models.database import session_scope
from studio.schemas.timeline import (
    Asset,
    Keyframe,
    Project,
    Revision,
    RevisionStatus,
    Segment,
    Track,
)
from studio.services.repository import TimelineRepository


def _column_values(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value.value if isinstance(value, Enum) else value for key, value in values.items()}


class SqlTimelineRepository(TimelineRepository):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def _add(self, row_cls: type, entity: Any) -> None:
        async with session_scope(self._session_maker) as session:
            session.add(row_cls(**_column_values(entity.model_dump())))

    async def _fetch(self, row_cls: type, entity_id: UUID, error: type[ResourceNotFoundError]) -> Any:
        async with self._session_maker() as session:
            row = await session.get(row_cls, entity_id)
            if row is None:
                raise error(entity_id)
            return row

    async def _update(
        self,
        row_cls: type,
        entity_id: UUID,
        fields: dict[str, Any],
        error: type[ResourceNotFoundError],
    ) -> Any:
        async with session_scope(self._session_maker) as session:
            row = await session.get(row_cls, entity_id)
            if row is None:
                raise error(entity_id)
            for key, value in _column_values(fields).items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            await session.flush()
            return row

    async def _list(self, stmt: Any) -> list[Any]:
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # Projects / tracks

    async def create_project(self, project: Project) -> Project:
        await self._add(models.Project, project)
        return project

    async def get_project(self, project_id: UUID) -> Project:
        return Project.model_validate(await self._fetch(models.Project, project_id, ProjectNotFoundError))

    async def create_track(self, track: Track) -> Track:
        await self._fetch(models.Project, track.project_id, ProjectNotFoundError)
        await self._add(models.Track, track)
        return track

    async def get_track(self, track_id: UUID) -> Track:
        return Track.model_validate(await self._fetch(models.Track, track_id, TrackNotFoundError))

    async def list_tracks(self, project_id: UUID) -> list[Track]:
        rows = await self._list(
            select(models.Track).where(models.Track.project_id == project_id).order_by(models.Track.order)
        )
        return [Track.model_validate(row) for row in rows]

    # Segments

    async def create_segment(self, segment: Segment) -> Segment:
        await self._fetch(models.Track, segment.track_id, TrackNotFoundError)
        await self._add(models.Segment, segment)
        return segment

    async def get_segment(self, segment_id: UUID) -> Segment:
        return Segment.model_validate(await self._fetch(models.Segment, segment_id, SegmentNotFoundError))

    async def update_segment(self, segment_id: UUID, **fields: Any) -> Segment:
        row = await self._update(models.Segment, segment_id, fields, SegmentNotFoundError)
        return Segment.model_validate(row)

    async def list_segments(self, track_id: UUID) -> list[Segment]:
        rows = await self._list(
            select(models.Segment)
            .where(models.Segment.track_id == track_id)
            .order_by(models.Segment.order, models.Segment.in_sec)
        )
        return [Segment.model_validate(row) for row in rows]

    async def delete_segment(self, segment_id: UUID) -> None:
        async with session_scope(self._session_maker) as session:
            if await session.get(models.Segment, segment_id) is None:
                raise SegmentNotFoundError(segment_id)
            await session.execute(delete(models.Keyframe).where(models.Keyframe.segment_id == segment_id))
            await session.execute(
                update(models.SegmentRevision)
                .where(models.SegmentRevision.segment_id == segment_id)
                .values(parent_revision_id=None)
            )
            await session.execute(
                delete(models.SegmentRevision).where(models.SegmentRevision.segment_id == segment_id)
            )
            await session.execute(delete(models.Segment).where(models.Segment.id == segment_id))

    # Revisions

    async def create_revision(self, revision: Revision) -> Revision:
        await self._fetch(models.Segment, revision.segment_id, SegmentNotFoundError)
        await self._add(models.SegmentRevision, revision)
        return revision

    async def get_revision(self, revision_id: UUID) -> Revision:
        row = await self._fetch(models.SegmentRevision, revision_id, RevisionNotFoundError)
        return Revision.model_validate(row)

    async def update_revision(self, revision_id: UUID, **fields: Any) -> Revision:
        row = await self._update(models.SegmentRevision, revision_id, fields, RevisionNotFoundError)
        return Revision.model_validate(row)

    async def list_revisions(self, segment_id: UUID) -> list[Revision]:
        rows = await self._list(
            select(models.SegmentRevision)
            .where(models.SegmentRevision.segment_id == segment_id)
            .order_by(models.SegmentRevision.created_at)
        )
        return [Revision.model_validate(row) for row in rows]

    async def delete_revision(self, revision_id: UUID) -> None:
        async with session_scope(self._session_maker) as session:
            if await session.get(models.SegmentRevision, revision_id) is None:
                raise RevisionNotFoundError(revision_id)
            await session.execute(
                update(models.SegmentRevision)
                .where(models.SegmentRevision.parent_revision_id == revision_id)
                .values(parent_revision_id=None)
            )
            await session.execute(delete(models.Keyframe).where(models.Keyframe.revision_id == revision_id))
            await session.execute(delete(models.SegmentRevision).where(models.SegmentRevision.id == revision_id))

    async def finalize_revision(
        self,
        revision_id: UUID,
        fields: dict[str, Any],
        activate_unless_locked: bool,
    ) -> tuple[Revision, bool]:
        async with session_scope(self._session_maker) as session:
            revision = (
                await session.execute(
                    select(models.SegmentRevision)
                    .where(models.SegmentRevision.id == revision_id)
                    .with_for_update()
                )
            ).scalar_one_or_none()
            if revision is None:
                raise RevisionNotFoundError(revision_id)
            segment = (
                await session.execute(
                    select(models.Segment).where(models.Segment.id == revision.segment_id).with_for_update()
                )
            ).scalar_one_or_none()
            if segment is None:
                raise SegmentNotFoundError(revision.segment_id)

            for key, value in _column_values(fields).items():
                setattr(revision, key, value)
            revision.updated_at = utcnow()

            activated = False
            if (
                activate_unless_locked
                and revision.status == RevisionStatus.SUCCEEDED.value
                and not segment.locked
            ):
                segment.active_revision_id = revision.id
                segment.updated_at = utcnow()
                activated = True
            await session.flush()
            return Revision.model_validate(revision), activated

    # Assets / keyframes

    async def create_asset(self, asset: Asset) -> Asset:
        await self._add(models.Asset, asset)
        return asset

    async def get_asset(self, asset_id: UUID) -> Asset:
        return Asset.model_validate(await self._fetch(models.Asset, asset_id, AssetNotFoundError))

    async def create_keyframe(self, keyframe: Keyframe) -> Keyframe:
        await self._fetch(models.SegmentRevision, keyframe.revision_id, RevisionNotFoundError)
        await self._fetch(models.Asset, keyframe.asset_id, AssetNotFoundError)
        await self._add(models.Keyframe, keyframe)
        return keyframe

    async def list_keyframes(self, revision_id: UUID) -> list[Keyframe]:
        rows = await self._list(
            select(models.Keyframe).where(models.Keyframe.revision_id == revision_id).order_by(models.Keyframe.t_sec)
        )
        return [Keyframe.model_validate(row) for row in rows]
