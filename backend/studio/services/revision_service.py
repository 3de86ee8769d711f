"""Revision lifecycle.

A revision moves ``draft -> queued -> running -> succeeded | failed``. A failed
revision may be queued again in place, though retrying into a child revision is
preferred so the failure stays in history. Only the generation orchestrator
drives ``queued``/``running``/terminal transitions; the rest of this service
covers user-driven actions (create, branch, activate, delete, reconcile).
"""

import logging
from dataclasses import dataclass
from typing import Any, Literal
from uuid import UUID

from studio.exceptions import (
    ActiveRevisionDeleteError,
    InvalidRevisionTransitionError,
    RevisionCycleError,
    SegmentLockedError,
    StudioError,
    ValidationError,
)
from studio.schemas.envelope import ErrorLocation
from studio.schemas.timeline import Keyframe, Revision, RevisionStatus, Segment
from studio.services.repository import TimelineRepository

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[RevisionStatus, frozenset[RevisionStatus]] = {
    RevisionStatus.DRAFT: frozenset({RevisionStatus.QUEUED}),
    RevisionStatus.QUEUED: frozenset({RevisionStatus.RUNNING, RevisionStatus.FAILED}),
    RevisionStatus.RUNNING: frozenset({RevisionStatus.SUCCEEDED, RevisionStatus.FAILED}),
    RevisionStatus.SUCCEEDED: frozenset(),
    RevisionStatus.FAILED: frozenset({RevisionStatus.QUEUED}),
}

Outcome = Literal["succeeded", "succeeded-but-not-activated", "failed"]


@dataclass(frozen=True)
class RevisionOutcome:
    revision: Revision
    outcome: Outcome

    @property
    def activated(self) -> bool:
        return self.outcome == "succeeded"


def can_transition(current: RevisionStatus, target: RevisionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class RevisionService:
    def __init__(self, repository: TimelineRepository):
        self.repository = repository

    # ------------------------------------------------------------------
    # Creation and branching
    # ------------------------------------------------------------------

    async def create_revision(
        self,
        segment_id: UUID,
        provider: str,
        prompt_json: dict[str, Any] | None = None,
        base_asset_id: UUID | None = None,
        parent_revision_id: UUID | None = None,
    ) -> Revision:
        """Create a draft revision, optionally branched from ``parent_revision_id``."""
        await self.repository.get_segment(segment_id)
        if base_asset_id is not None:
            await self.repository.get_asset(base_asset_id)

        revision = Revision(
            segment_id=segment_id,
            provider=provider,
            prompt_json=prompt_json if prompt_json is not None else {"root_prompt": ""},
            base_asset_id=base_asset_id,
            parent_revision_id=parent_revision_id,
        )
        if parent_revision_id is not None:
            await self._check_acyclic(revision.id, parent_revision_id)
        created = await self.repository.create_revision(revision)
        logger.info(f"Created revision {created.id} for segment {segment_id} (provider={provider})")
        return created

    async def set_parent(self, revision_id: UUID, parent_revision_id: UUID | None) -> Revision:
        """Re-point a revision's parent, refusing anything that closes a cycle."""
        await self.repository.get_revision(revision_id)
        if parent_revision_id is not None:
            await self._check_acyclic(revision_id, parent_revision_id)
        return await self.repository.update_revision(revision_id, parent_revision_id=parent_revision_id)

    async def _check_acyclic(self, revision_id: UUID, parent_revision_id: UUID) -> None:
        """Walk up from the proposed parent; reaching ``revision_id`` means a cycle."""
        seen: set[UUID] = set()
        current: UUID | None = parent_revision_id
        while current is not None:
            if current == revision_id:
                raise RevisionCycleError(
                    f"Revision {parent_revision_id} is {revision_id} or one of its descendants",
                    location=ErrorLocation(field="parent_revision_id", revision_id=str(revision_id)),
                )
            if current in seen:
                raise RevisionCycleError(f"Revision ancestry of {parent_revision_id} already contains a cycle")
            seen.add(current)
            current = (await self.repository.get_revision(current)).parent_revision_id

    async def retry(self, revision_id: UUID, *, in_place: bool = False) -> Revision:
        """Retry a failed revision.

        By default a new draft child is created with the same provider, prompt
        and base asset, keeping the failed attempt in history. ``in_place``
        re-queues the failed record itself.
        """
        revision = await self.repository.get_revision(revision_id)
        if revision.status != RevisionStatus.FAILED:
            raise InvalidRevisionTransitionError(str(revision_id), revision.status.value, "retry")
        if in_place:
            return await self.mark_queued(revision_id)
        return await self.create_revision(
            revision.segment_id,
            revision.provider,
            prompt_json=revision.prompt_json,
            base_asset_id=revision.base_asset_id,
            parent_revision_id=revision.id,
        )

    async def update_prompt(self, revision_id: UUID, prompt_json: dict[str, Any]) -> Revision:
        """Drafts stay editable until they are queued."""
        revision = await self.repository.get_revision(revision_id)
        if revision.status != RevisionStatus.DRAFT:
            raise InvalidRevisionTransitionError(str(revision_id), revision.status.value, "draft")
        return await self.repository.update_revision(revision_id, prompt_json=prompt_json)

    # ------------------------------------------------------------------
    # Orchestrator-driven transitions
    # ------------------------------------------------------------------

    async def _transition(self, revision_id: UUID, target: RevisionStatus, **fields: Any) -> Revision:
        revision = await self.repository.get_revision(revision_id)
        if not can_transition(revision.status, target):
            raise InvalidRevisionTransitionError(str(revision_id), revision.status.value, target.value)
        return await self.repository.update_revision(revision_id, status=target, **fields)

    async def mark_queued(self, revision_id: UUID) -> Revision:
        """Queue a draft, or re-queue a failed revision in place (clears its error)."""
        return await self._transition(
            revision_id, RevisionStatus.QUEUED, error_json=None, output_asset_id=None
        )

    async def mark_running(self, revision_id: UUID) -> Revision:
        return await self._transition(revision_id, RevisionStatus.RUNNING)

    async def mark_succeeded(
        self,
        revision_id: UUID,
        output_asset_id: UUID,
        metrics: dict[str, Any] | None = None,
    ) -> RevisionOutcome:
        """Record success and activate the revision unless its segment is locked."""
        if output_asset_id is None:
            raise ValidationError("A succeeded revision needs an output asset")
        revision = await self.repository.get_revision(revision_id)
        if not can_transition(revision.status, RevisionStatus.SUCCEEDED):
            raise InvalidRevisionTransitionError(
                str(revision_id), revision.status.value, RevisionStatus.SUCCEEDED.value
            )
        fields: dict[str, Any] = {
            "status": RevisionStatus.SUCCEEDED,
            "output_asset_id": output_asset_id,
            "error_json": None,
        }
        if metrics is not None:
            fields["metrics_json"] = metrics
        updated, activated = await self.repository.finalize_revision(
            revision_id, fields, activate_unless_locked=True
        )
        if not activated:
            logger.info(f"Revision {revision_id} succeeded but segment {updated.segment_id} is locked")
        return RevisionOutcome(updated, "succeeded" if activated else "succeeded-but-not-activated")

    async def mark_failed(
        self,
        revision_id: UUID,
        error: StudioError | dict[str, Any],
        metrics: dict[str, Any] | None = None,
    ) -> RevisionOutcome:
        """Record failure. The error payload always carries a machine-readable code."""
        error_json = error.to_error_json() if isinstance(error, StudioError) else dict(error)
        if not error_json.get("code"):
            raise ValidationError("A failed revision needs an error code")
        error_json.setdefault("message", error_json["code"])

        revision = await self.repository.get_revision(revision_id)
        if not can_transition(revision.status, RevisionStatus.FAILED):
            raise InvalidRevisionTransitionError(
                str(revision_id), revision.status.value, RevisionStatus.FAILED.value
            )
        fields: dict[str, Any] = {"status": RevisionStatus.FAILED, "error_json": error_json}
        if metrics is not None:
            fields["metrics_json"] = metrics
        updated, _ = await self.repository.finalize_revision(
            revision_id, fields, activate_unless_locked=False
        )
        logger.warning(f"Revision {revision_id} failed: {error_json['code']}")
        return RevisionOutcome(updated, "failed")

    # ------------------------------------------------------------------
    # Active pointer
    # ------------------------------------------------------------------

    async def activate_revision(self, segment_id: UUID, revision_id: UUID) -> Segment:
        """User picks a take. Only succeeded revisions of this segment qualify."""
        segment = await self.repository.get_segment(segment_id)
        if segment.locked:
            raise SegmentLockedError(str(segment_id))
        revision = await self.repository.get_revision(revision_id)
        if revision.segment_id != segment_id:
            raise ValidationError(
                f"Revision {revision_id} belongs to another segment",
                location=ErrorLocation(field="revision_id", revision_id=str(revision_id)),
            )
        if revision.status != RevisionStatus.SUCCEEDED:
            raise ValidationError(
                f"Only succeeded revisions can be activated (status={revision.status.value})",
                location=ErrorLocation(field="revision_id", revision_id=str(revision_id)),
            )
        return await self.repository.update_segment(segment_id, active_revision_id=revision_id)

    async def clear_active_revision(self, segment_id: UUID) -> Segment:
        segment = await self.repository.get_segment(segment_id)
        if segment.locked:
            raise SegmentLockedError(str(segment_id))
        return await self.repository.update_segment(segment_id, active_revision_id=None)

    async def delete_revision(self, revision_id: UUID) -> None:
        revision = await self.repository.get_revision(revision_id)
        segment = await self.repository.get_segment(revision.segment_id)
        if segment.active_revision_id == revision_id:
            raise ActiveRevisionDeleteError(
                f"Revision {revision_id} is active on segment {segment.id}",
                location=ErrorLocation(segment_id=str(segment.id), revision_id=str(revision_id)),
            )
        if revision.status in (RevisionStatus.QUEUED, RevisionStatus.RUNNING):
            raise InvalidRevisionTransitionError(str(revision_id), revision.status.value, "deleted")
        await self.repository.delete_revision(revision_id)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def find_orphaned_revisions(self, segment_id: UUID) -> list[Revision]:
        """Succeeded revisions newer than the active one that were never activated.

        These appear when the activation write failed after the revision was
        stored, or when the segment was locked at the time.
        """
        segment = await self.repository.get_segment(segment_id)
        revisions = await self.repository.list_revisions(segment_id)
        succeeded = [r for r in revisions if r.status == RevisionStatus.SUCCEEDED]
        if segment.active_revision_id is None:
            return succeeded
        active = next((r for r in revisions if r.id == segment.active_revision_id), None)
        if active is None:
            # Dangling pointer: every succeeded revision is a candidate.
            return succeeded
        return [r for r in succeeded if r.created_at > active.created_at]

    async def reconcile_segment(self, segment_id: UUID) -> Segment:
        """Point an unlocked segment at its newest orphaned succeeded revision."""
        segment = await self.repository.get_segment(segment_id)
        if segment.locked:
            return segment
        orphans = await self.find_orphaned_revisions(segment_id)
        if not orphans:
            return segment
        newest = orphans[-1]
        logger.info(f"Reconciling segment {segment_id}: activating orphaned revision {newest.id}")
        return await self.repository.update_segment(segment_id, active_revision_id=newest.id)

    # ------------------------------------------------------------------
    # Keyframes
    # ------------------------------------------------------------------

    async def add_keyframe(
        self,
        revision_id: UUID,
        t_sec: float,
        asset_id: UUID,
        note: str | None = None,
    ) -> Keyframe:
        revision = await self.repository.get_revision(revision_id)
        segment = await self.repository.get_segment(revision.segment_id)
        if t_sec > segment.duration_sec:
            raise ValidationError(
                f"Keyframe at {t_sec}s is past the segment end ({segment.duration_sec}s)",
                location=ErrorLocation(field="t_sec"),
            )
        keyframe = Keyframe(
            segment_id=revision.segment_id,
            revision_id=revision_id,
            t_sec=t_sec,
            asset_id=asset_id,
            note=note,
        )
        return await self.repository.create_keyframe(keyframe)

    async def list_keyframes(self, revision_id: UUID) -> list[Keyframe]:
        await self.repository.get_revision(revision_id)
        return await self.repository.list_keyframes(revision_id)
