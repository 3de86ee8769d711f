"""Persistence boundary for timeline entities.

Services talk to a ``TimelineRepository``; the in-memory implementation here
backs development and tests, ``SqlTimelineRepository`` backs production.
"""

import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any, TypeVar
from uuid import UUID

from studio.exceptions import (
    AssetNotFoundError,
    ProjectNotFoundError,
    ResourceNotFoundError,
    RevisionNotFoundError,
    SegmentNotFoundError,
    TrackNotFoundError,
)
from studio.schemas.timeline import (
    Asset,
    Keyframe,
    Project,
    Revision,
    RevisionStatus,
    Segment,
    Track,
)

EntityT = TypeVar("EntityT", Project, Track, Segment, Revision, Asset, Keyframe)


class TimelineRepository(ABC):
    """CRUD over projects, tracks, segments, revisions, assets and keyframes."""

    @abstractmethod
    async def create_project(self, project: Project) -> Project: ...

    @abstractmethod
    async def get_project(self, project_id: UUID) -> Project: ...

    @abstractmethod
    async def create_track(self, track: Track) -> Track: ...

    @abstractmethod
    async def get_track(self, track_id: UUID) -> Track: ...

    @abstractmethod
    async def list_tracks(self, project_id: UUID) -> list[Track]: ...

    @abstractmethod
    async def create_segment(self, segment: Segment) -> Segment: ...

    @abstractmethod
    async def get_segment(self, segment_id: UUID) -> Segment: ...

    @abstractmethod
    async def update_segment(self, segment_id: UUID, **fields: Any) -> Segment: ...

    @abstractmethod
    async def list_segments(self, track_id: UUID) -> list[Segment]: ...

    @abstractmethod
    async def delete_segment(self, segment_id: UUID) -> None:
        """Delete a segment together with its revisions and keyframes."""

    @abstractmethod
    async def create_revision(self, revision: Revision) -> Revision: ...

    @abstractmethod
    async def get_revision(self, revision_id: UUID) -> Revision: ...

    @abstractmethod
    async def update_revision(self, revision_id: UUID, **fields: Any) -> Revision: ...

    @abstractmethod
    async def list_revisions(self, segment_id: UUID) -> list[Revision]:
        """Revisions of a segment, oldest first."""

    @abstractmethod
    async def delete_revision(self, revision_id: UUID) -> None:
        """Delete a revision and its keyframes. Children lose their parent link."""

    @abstractmethod
    async def finalize_revision(
        self,
        revision_id: UUID,
        fields: dict[str, Any],
        activate_unless_locked: bool,
    ) -> tuple[Revision, bool]:
        """Write a revision's terminal state and, optionally, activate it.

        Both writes happen as one atomic step. The segment lock is read inside
        the same step, so a lock taken concurrently is always honored.

        Returns:
            The updated revision and whether the segment now points at it.
        """

    @abstractmethod
    async def create_asset(self, asset: Asset) -> Asset: ...

    @abstractmethod
    async def get_asset(self, asset_id: UUID) -> Asset: ...

    @abstractmethod
    async def create_keyframe(self, keyframe: Keyframe) -> Keyframe: ...

    @abstractmethod
    async def list_keyframes(self, revision_id: UUID) -> list[Keyframe]: ...


class InMemoryTimelineRepository(TimelineRepository):
    """Thread-safe dict-backed repository. Returns copies, never shared instances."""

    def __init__(self) -> None:
        self._projects: dict[UUID, Project] = {}
        self._tracks: dict[UUID, Track] = {}
        self._segments: dict[UUID, Segment] = {}
        self._revisions: dict[UUID, Revision] = {}
        self._assets: dict[UUID, Asset] = {}
        self._keyframes: dict[UUID, Keyframe] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _get(store: dict[UUID, EntityT], entity_id: UUID, error: type[ResourceNotFoundError]) -> EntityT:
        entity = store.get(entity_id)
        if entity is None:
            raise error(entity_id)
        return entity.model_copy(deep=True)

    def _put(self, store: dict[UUID, EntityT], entity: EntityT) -> EntityT:
        with self._lock:
            store[entity.id] = entity.model_copy(deep=True)
        return entity

    @staticmethod
    def _touch(fields: dict[str, Any]) -> dict[str, Any]:
        return {**fields, "updated_at": datetime.now(UTC)}

    # Projects / tracks

    async def create_project(self, project: Project) -> Project:
        return self._put(self._projects, project)

    async def get_project(self, project_id: UUID) -> Project:
        return self._get(self._projects, project_id, ProjectNotFoundError)

    async def create_track(self, track: Track) -> Track:
        if track.project_id not in self._projects:
            raise ProjectNotFoundError(track.project_id)
        return self._put(self._tracks, track)

    async def get_track(self, track_id: UUID) -> Track:
        return self._get(self._tracks, track_id, TrackNotFoundError)

    async def list_tracks(self, project_id: UUID) -> list[Track]:
        tracks = [t.model_copy() for t in self._tracks.values() if t.project_id == project_id]
        return sorted(tracks, key=lambda t: t.order)

    # Segments

    async def create_segment(self, segment: Segment) -> Segment:
        if segment.track_id not in self._tracks:
            raise TrackNotFoundError(segment.track_id)
        return self._put(self._segments, segment)

    async def get_segment(self, segment_id: UUID) -> Segment:
        return self._get(self._segments, segment_id, SegmentNotFoundError)

    async def update_segment(self, segment_id: UUID, **fields: Any) -> Segment:
        with self._lock:
            current = self._segments.get(segment_id)
            if current is None:
                raise SegmentNotFoundError(segment_id)
            updated = current.model_copy(update=self._touch(fields))
            self._segments[segment_id] = updated
        return updated.model_copy()

    async def list_segments(self, track_id: UUID) -> list[Segment]:
        segments = [s.model_copy() for s in self._segments.values() if s.track_id == track_id]
        return sorted(segments, key=lambda s: (s.order, s.in_sec))

    async def delete_segment(self, segment_id: UUID) -> None:
        with self._lock:
            if self._segments.pop(segment_id, None) is None:
                raise SegmentNotFoundError(segment_id)
            for revision_id in [r.id for r in self._revisions.values() if r.segment_id == segment_id]:
                del self._revisions[revision_id]
            for keyframe_id in [k.id for k in self._keyframes.values() if k.segment_id == segment_id]:
                del self._keyframes[keyframe_id]

    # Revisions

    async def create_revision(self, revision: Revision) -> Revision:
        if revision.segment_id not in self._segments:
            raise SegmentNotFoundError(revision.segment_id)
        return self._put(self._revisions, revision)

    async def get_revision(self, revision_id: UUID) -> Revision:
        return self._get(self._revisions, revision_id, RevisionNotFoundError)

    async def update_revision(self, revision_id: UUID, **fields: Any) -> Revision:
        with self._lock:
            current = self._revisions.get(revision_id)
            if current is None:
                raise RevisionNotFoundError(revision_id)
            updated = current.model_copy(update=self._touch(fields), deep=True)
            self._revisions[revision_id] = updated
        return updated.model_copy(deep=True)

    async def list_revisions(self, segment_id: UUID) -> list[Revision]:
        revisions = [r.model_copy(deep=True) for r in self._revisions.values() if r.segment_id == segment_id]
        return sorted(revisions, key=lambda r: r.created_at)

    async def delete_revision(self, revision_id: UUID) -> None:
        with self._lock:
            if self._revisions.pop(revision_id, None) is None:
                raise RevisionNotFoundError(revision_id)
            for keyframe_id in [k.id for k in self._keyframes.values() if k.revision_id == revision_id]:
                del self._keyframes[keyframe_id]
            for child in list(self._revisions.values()):
                if child.parent_revision_id == revision_id:
                    self._revisions[child.id] = child.model_copy(update={"parent_revision_id": None})

    async def finalize_revision(
        self,
        revision_id: UUID,
        fields: dict[str, Any],
        activate_unless_locked: bool,
    ) -> tuple[Revision, bool]:
        with self._lock:
            current = self._revisions.get(revision_id)
            if current is None:
                raise RevisionNotFoundError(revision_id)
            segment = self._segments.get(current.segment_id)
            if segment is None:
                raise SegmentNotFoundError(current.segment_id)

            updated = current.model_copy(update=self._touch(fields), deep=True)
            self._revisions[revision_id] = updated

            activated = False
            if (
                activate_unless_locked
                and updated.status == RevisionStatus.SUCCEEDED
                and not segment.locked
            ):
                self._segments[segment.id] = segment.model_copy(
                    update=self._touch({"active_revision_id": revision_id})
                )
                activated = True
        return updated.model_copy(deep=True), activated

    # Assets / keyframes

    async def create_asset(self, asset: Asset) -> Asset:
        return self._put(self._assets, asset)

    async def get_asset(self, asset_id: UUID) -> Asset:
        return self._get(self._assets, asset_id, AssetNotFoundError)

    async def create_keyframe(self, keyframe: Keyframe) -> Keyframe:
        if keyframe.revision_id not in self._revisions:
            raise RevisionNotFoundError(keyframe.revision_id)
        if keyframe.asset_id not in self._assets:
            raise AssetNotFoundError(keyframe.asset_id)
        return self._put(self._keyframes, keyframe)

    async def list_keyframes(self, revision_id: UUID) -> list[Keyframe]:
        keyframes = [k.model_copy() for k in self._keyframes.values() if k.revision_id == revision_id]
        return sorted(keyframes, key=lambda k: k.t_sec)
