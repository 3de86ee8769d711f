from uuid import UUID

from fastapi import APIRouter, status

from studio.api.deps import Context, Services, envelope
from studio.schemas.envelope import EnvelopeResponse
from studio.schemas.timeline import (
    ActivateRevisionRequest,
    RevisionCreate,
    SegmentSplit,
    SegmentUpdate,
)

router = APIRouter()


@router.get("/{segment_id}", response_model=EnvelopeResponse)
async def get_segment(segment_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    return envelope(context, await services.repository.get_segment(segment_id))


@router.patch("/{segment_id}", response_model=EnvelopeResponse)
async def update_segment(
    segment_id: UUID, body: SegmentUpdate, services: Services, context: Context
) -> EnvelopeResponse:
    """Trim, relabel and lock/unlock. Unlocking applies first, locking last."""
    segments = services.segments
    segment = await services.repository.get_segment(segment_id)
    if body.locked is False:
        segment = await segments.set_locked(segment_id, False)
    if body.in_sec is not None or body.out_sec is not None:
        segment = await segments.trim(segment_id, body.in_sec, body.out_sec)
    if "label" in body.model_fields_set:
        segment = await segments.set_label(segment_id, body.label)
    if body.locked is True:
        segment = await segments.set_locked(segment_id, True)
    return envelope(context, segment)


@router.delete("/{segment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_segment(segment_id: UUID, services: Services) -> None:
    await services.segments.delete(segment_id)


@router.post("/{segment_id}/split", response_model=EnvelopeResponse)
async def split_segment(
    segment_id: UUID, body: SegmentSplit, services: Services, context: Context
) -> EnvelopeResponse:
    left, right = await services.segments.split(segment_id, body.at_sec)
    return envelope(context, [left, right])


@router.post("/{segment_id}/duplicate", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def duplicate_segment(segment_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    return envelope(context, await services.segments.duplicate(segment_id))


@router.post("/{segment_id}/activate", response_model=EnvelopeResponse)
async def activate_revision(
    segment_id: UUID, body: ActivateRevisionRequest, services: Services, context: Context
) -> EnvelopeResponse:
    if body.revision_id is None:
        segment = await services.revisions.clear_active_revision(segment_id)
    else:
        segment = await services.revisions.activate_revision(segment_id, body.revision_id)
    return envelope(context, segment)


@router.get("/{segment_id}/orphans", response_model=EnvelopeResponse)
async def list_orphaned_revisions(segment_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    """Succeeded revisions the active pointer never caught up with."""
    return envelope(context, await services.revisions.find_orphaned_revisions(segment_id))


@router.post("/{segment_id}/reconcile", response_model=EnvelopeResponse)
async def reconcile_segment(segment_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    return envelope(context, await services.revisions.reconcile_segment(segment_id))


@router.get("/{segment_id}/revisions", response_model=EnvelopeResponse)
async def list_revisions(segment_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    await services.repository.get_segment(segment_id)
    return envelope(context, await services.repository.list_revisions(segment_id))


@router.post("/{segment_id}/revisions", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def create_revision(
    segment_id: UUID, body: RevisionCreate, services: Services, context: Context
) -> EnvelopeResponse:
    services.providers.get(body.provider)
    revision = await services.revisions.create_revision(
        segment_id,
        body.provider,
        prompt_json=body.prompt_json,
        base_asset_id=body.base_asset_id,
        parent_revision_id=body.parent_revision_id,
    )
    return envelope(context, revision)
