"""Tests for the revision lifecycle.

Features:
- State machine transitions
- Success/failure payload rules
- Activation and the lock guard
- Parent acyclicity, retry branching, deletion guards
- Reconciliation of orphaned successes
"""

from datetime import UTC, datetime, timedelta

import pytest

from studio.exceptions import (
    ActiveRevisionDeleteError,
    InvalidRevisionTransitionError,
    NoOutputProducedError,
    RevisionCycleError,
    SegmentLockedError,
    ValidationError,
)
from studio.schemas.timeline import Asset, Revision, RevisionStatus
from studio.services.revision_service import can_transition


async def _segment(container, locked: bool = False):
    project = await container.segments.create_project("Pilot")
    track = await container.segments.create_track(project.id, "V1")
    segment = await container.segments.create_segment(track.id, 0.0, 4.0)
    if locked:
        segment = await container.segments.set_locked(segment.id, True)
    return segment


async def _asset(container, segment):
    return await container.repository.create_asset(
        Asset(project_id=segment.project_id, kind="image", storage_path="generated/x.png", mime_type="image/png")
    )


async def _running(container, segment):
    revision = await container.revisions.create_revision(segment.id, "nano-fast", {"root_prompt": "A lighthouse"})
    await container.revisions.mark_queued(revision.id)
    return await container.revisions.mark_running(revision.id)


class TestTransitions:
    """The allowed-transition table."""

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            (RevisionStatus.DRAFT, RevisionStatus.QUEUED, True),
            (RevisionStatus.DRAFT, RevisionStatus.RUNNING, False),
            (RevisionStatus.QUEUED, RevisionStatus.RUNNING, True),
            (RevisionStatus.QUEUED, RevisionStatus.FAILED, True),
            (RevisionStatus.RUNNING, RevisionStatus.SUCCEEDED, True),
            (RevisionStatus.RUNNING, RevisionStatus.FAILED, True),
            (RevisionStatus.SUCCEEDED, RevisionStatus.QUEUED, False),
            (RevisionStatus.SUCCEEDED, RevisionStatus.FAILED, False),
            (RevisionStatus.FAILED, RevisionStatus.QUEUED, True),
            (RevisionStatus.FAILED, RevisionStatus.SUCCEEDED, False),
        ],
    )
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    @pytest.mark.asyncio
    async def test_draft_cannot_run(self, container):
        segment = await _segment(container)
        revision = await container.revisions.create_revision(segment.id, "nano-fast")
        with pytest.raises(InvalidRevisionTransitionError):
            await container.revisions.mark_running(revision.id)

    @pytest.mark.asyncio
    async def test_new_revision_is_draft_with_root_prompt(self, container):
        segment = await _segment(container)
        revision = await container.revisions.create_revision(segment.id, "nano-fast")
        assert revision.status == RevisionStatus.DRAFT
        assert revision.prompt_json == {"root_prompt": ""}

    @pytest.mark.asyncio
    async def test_prompt_editable_only_as_draft(self, container):
        segment = await _segment(container)
        revision = await container.revisions.create_revision(segment.id, "nano-fast")
        updated = await container.revisions.update_prompt(revision.id, {"root_prompt": "Dawn"})
        assert updated.prompt_json["root_prompt"] == "Dawn"

        await container.revisions.mark_queued(revision.id)
        with pytest.raises(InvalidRevisionTransitionError):
            await container.revisions.update_prompt(revision.id, {"root_prompt": "Dusk"})


class TestTerminalStates:
    """Succeeded needs an asset, failed needs a code."""

    @pytest.mark.asyncio
    async def test_succeeded_activates_segment(self, container):
        segment = await _segment(container)
        revision = await _running(container, segment)
        asset = await _asset(container, segment)

        outcome = await container.revisions.mark_succeeded(revision.id, asset.id, {"latency_ms": 12})

        assert outcome.outcome == "succeeded"
        assert outcome.activated
        assert outcome.revision.output_asset_id == asset.id
        assert outcome.revision.metrics_json == {"latency_ms": 12}
        stored = await container.repository.get_segment(segment.id)
        assert stored.active_revision_id == revision.id

    @pytest.mark.asyncio
    async def test_succeeded_requires_output_asset(self, container):
        segment = await _segment(container)
        revision = await _running(container, segment)
        with pytest.raises(ValidationError):
            await container.revisions.mark_succeeded(revision.id, None)

    @pytest.mark.asyncio
    async def test_locked_segment_is_not_activated(self, container):
        segment = await _segment(container, locked=True)
        revision = await _running(container, segment)
        asset = await _asset(container, segment)

        outcome = await container.revisions.mark_succeeded(revision.id, asset.id)

        assert outcome.outcome == "succeeded-but-not-activated"
        assert outcome.revision.status == RevisionStatus.SUCCEEDED
        stored = await container.repository.get_segment(segment.id)
        assert stored.active_revision_id is None

    @pytest.mark.asyncio
    async def test_failed_records_error_code(self, container):
        segment = await _segment(container)
        revision = await _running(container, segment)

        outcome = await container.revisions.mark_failed(revision.id, NoOutputProducedError())

        assert outcome.outcome == "failed"
        assert outcome.revision.error_json["code"] == "NO_OUTPUT_PRODUCED"
        assert outcome.revision.error_json["message"]
        stored = await container.repository.get_segment(segment.id)
        assert stored.active_revision_id is None

    @pytest.mark.asyncio
    async def test_failed_requires_code(self, container):
        segment = await _segment(container)
        revision = await _running(container, segment)
        with pytest.raises(ValidationError):
            await container.revisions.mark_failed(revision.id, {"message": "boom"})

    @pytest.mark.asyncio
    async def test_requeue_clears_error(self, container):
        segment = await _segment(container)
        revision = await _running(container, segment)
        await container.revisions.mark_failed(revision.id, {"code": "TIMEOUT"})

        requeued = await container.revisions.mark_queued(revision.id)

        assert requeued.status == RevisionStatus.QUEUED
        assert requeued.error_json is None


class TestActivation:
    """User-driven active pointer changes."""

    @pytest.mark.asyncio
    async def test_activate_only_succeeded(self, container):
        segment = await _segment(container)
        draft = await container.revisions.create_revision(segment.id, "nano-fast")
        with pytest.raises(ValidationError):
            await container.revisions.activate_revision(segment.id, draft.id)

    @pytest.mark.asyncio
    async def test_activate_rejects_foreign_revision(self, container):
        segment = await _segment(container)
        other = await container.segments.create_segment(segment.track_id, 5.0, 6.0)
        revision = await _running(container, other)
        await container.revisions.mark_succeeded(revision.id, (await _asset(container, other)).id)

        with pytest.raises(ValidationError):
            await container.revisions.activate_revision(segment.id, revision.id)

    @pytest.mark.asyncio
    async def test_locked_segment_refuses_activation(self, container):
        segment = await _segment(container)
        revision = await _running(container, segment)
        await container.revisions.mark_succeeded(revision.id, (await _asset(container, segment)).id)
        await container.segments.set_locked(segment.id, True)

        with pytest.raises(SegmentLockedError):
            await container.revisions.activate_revision(segment.id, revision.id)
        with pytest.raises(SegmentLockedError):
            await container.revisions.clear_active_revision(segment.id)

    @pytest.mark.asyncio
    async def test_clear_active_revision(self, container):
        segment = await _segment(container)
        revision = await _running(container, segment)
        await container.revisions.mark_succeeded(revision.id, (await _asset(container, segment)).id)

        cleared = await container.revisions.clear_active_revision(segment.id)
        assert cleared.active_revision_id is None


class TestLineage:
    """Parent links, retry and deletion."""

    @pytest.mark.asyncio
    async def test_parent_cycle_rejected(self, container):
        segment = await _segment(container)
        root = await container.revisions.create_revision(segment.id, "nano-fast")
        child = await container.revisions.create_revision(segment.id, "nano-fast", parent_revision_id=root.id)
        grandchild = await container.revisions.create_revision(segment.id, "nano-fast", parent_revision_id=child.id)

        with pytest.raises(RevisionCycleError):
            await container.revisions.set_parent(root.id, grandchild.id)
        with pytest.raises(RevisionCycleError):
            await container.revisions.set_parent(child.id, child.id)

    @pytest.mark.asyncio
    async def test_retry_creates_child_draft(self, container):
        segment = await _segment(container)
        revision = await _running(container, segment)
        await container.revisions.mark_failed(revision.id, {"code": "TIMEOUT"})

        child = await container.revisions.retry(revision.id)

        assert child.id != revision.id
        assert child.parent_revision_id == revision.id
        assert child.status == RevisionStatus.DRAFT
        assert child.prompt_json == revision.prompt_json
        failed = await container.repository.get_revision(revision.id)
        assert failed.status == RevisionStatus.FAILED

    @pytest.mark.asyncio
    async def test_retry_in_place(self, container):
        segment = await _segment(container)
        revision = await _running(container, segment)
        await container.revisions.mark_failed(revision.id, {"code": "TIMEOUT"})

        requeued = await container.revisions.retry(revision.id, in_place=True)
        assert requeued.id == revision.id
        assert requeued.status == RevisionStatus.QUEUED

    @pytest.mark.asyncio
    async def test_retry_only_failed(self, container):
        segment = await _segment(container)
        revision = await container.revisions.create_revision(segment.id, "nano-fast")
        with pytest.raises(InvalidRevisionTransitionError):
            await container.revisions.retry(revision.id)

    @pytest.mark.asyncio
    async def test_delete_active_refused(self, container):
        segment = await _segment(container)
        revision = await _running(container, segment)
        await container.revisions.mark_succeeded(revision.id, (await _asset(container, segment)).id)

        with pytest.raises(ActiveRevisionDeleteError):
            await container.revisions.delete_revision(revision.id)

    @pytest.mark.asyncio
    async def test_delete_reroots_children(self, container):
        segment = await _segment(container)
        parent = await container.revisions.create_revision(segment.id, "nano-fast")
        child = await container.revisions.create_revision(segment.id, "nano-fast", parent_revision_id=parent.id)

        await container.revisions.delete_revision(parent.id)

        assert (await container.repository.get_revision(child.id)).parent_revision_id is None

    @pytest.mark.asyncio
    async def test_delete_drops_keyframes(self, container):
        segment = await _segment(container)
        revision = await container.revisions.create_revision(segment.id, "nano-fast")
        kept = await container.revisions.create_revision(segment.id, "nano-fast")
        asset = await _asset(container, segment)
        await container.revisions.add_keyframe(revision.id, 1.0, asset.id)
        await container.revisions.add_keyframe(kept.id, 2.0, asset.id)

        await container.revisions.delete_revision(revision.id)

        assert await container.repository.list_keyframes(revision.id) == []
        assert [k.t_sec for k in await container.repository.list_keyframes(kept.id)] == [2.0]


class TestReconciliation:
    """Succeeded revisions the active pointer missed."""

    @pytest.mark.asyncio
    async def test_orphans_without_active_pointer(self, container):
        segment = await _segment(container, locked=True)
        revision = await _running(container, segment)
        await container.revisions.mark_succeeded(revision.id, (await _asset(container, segment)).id)

        orphans = await container.revisions.find_orphaned_revisions(segment.id)
        assert [r.id for r in orphans] == [revision.id]

        # Locked segments are left alone until unlocked
        assert (await container.revisions.reconcile_segment(segment.id)).active_revision_id is None
        await container.segments.set_locked(segment.id, False)
        assert (await container.revisions.reconcile_segment(segment.id)).active_revision_id == revision.id

    @pytest.mark.asyncio
    async def test_only_newer_than_active_are_orphans(self, container):
        segment = await _segment(container)
        asset = await _asset(container, segment)
        base = datetime.now(UTC)
        created = []
        for offset in (0, 1, 2):
            created.append(
                await container.repository.create_revision(
                    Revision(
                        segment_id=segment.id,
                        provider="nano-fast",
                        status=RevisionStatus.SUCCEEDED,
                        output_asset_id=asset.id,
                        created_at=base + timedelta(seconds=offset),
                    )
                )
            )
        _, active, newer = created
        await container.repository.update_segment(segment.id, active_revision_id=active.id)

        orphans = await container.revisions.find_orphaned_revisions(segment.id)
        assert [r.id for r in orphans] == [newer.id]

        reconciled = await container.revisions.reconcile_segment(segment.id)
        assert reconciled.active_revision_id == newer.id
        assert await container.revisions.find_orphaned_revisions(segment.id) == []


class TestKeyframes:
    @pytest.mark.asyncio
    async def test_keyframe_within_segment(self, container):
        segment = await _segment(container)
        revision = await container.revisions.create_revision(segment.id, "nano-fast")
        asset = await _asset(container, segment)

        await container.revisions.add_keyframe(revision.id, 3.0, asset.id, "end pose")
        await container.revisions.add_keyframe(revision.id, 0.0, asset.id)

        keyframes = await container.revisions.list_keyframes(revision.id)
        assert [k.t_sec for k in keyframes] == [0.0, 3.0]

    @pytest.mark.asyncio
    async def test_keyframe_past_end_rejected(self, container):
        segment = await _segment(container)
        revision = await container.revisions.create_revision(segment.id, "nano-fast")
        asset = await _asset(container, segment)
        with pytest.raises(ValidationError):
            await container.revisions.add_keyframe(revision.id, 4.5, asset.id)
