from uuid import UUID

from fastapi import APIRouter, Query, status

from studio.api.deps import Context, Services, envelope
from studio.schemas.envelope import EnvelopeResponse
from studio.schemas.timeline import SegmentCreate, TrackItemResponse, TrackLayoutResponse
from studio.services.track_layout import (
    ClipItem,
    TrackItem,
    build_track_items,
    item_at_time,
    track_duration,
)

router = APIRouter()


def _item_response(item: TrackItem) -> TrackItemResponse:
    start_sec, duration_sec = item.range.to_seconds()
    response = TrackItemResponse(
        kind=item.kind,
        id=str(item.segment_id) if isinstance(item, ClipItem) else item.id,
        rate=item.range.rate,
        start_frame=item.range.start.value,
        duration_frames=item.range.duration.value,
        start_sec=start_sec,
        duration_sec=duration_sec,
    )
    if isinstance(item, ClipItem):
        response.source_start_frame = item.source_range.start.value
        response.label = item.label
        response.active_revision_id = item.active_revision_id
    return response


@router.post("/{track_id}/segments", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def create_segment(
    track_id: UUID, body: SegmentCreate, services: Services, context: Context
) -> EnvelopeResponse:
    segment = await services.segments.create_segment(
        track_id, body.in_sec, body.out_sec, label=body.label, source_in_sec=body.source_in_sec
    )
    return envelope(context, segment)


@router.get("/{track_id}/segments", response_model=EnvelopeResponse)
async def list_segments(track_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    await services.repository.get_track(track_id)
    return envelope(context, await services.repository.list_segments(track_id))


async def _layout(track_id: UUID, services: Services):
    track = await services.repository.get_track(track_id)
    project = await services.repository.get_project(track.project_id)
    segments = await services.repository.list_segments(track_id)
    return build_track_items(segments, project.fps), project.fps


@router.get("/{track_id}/items", response_model=EnvelopeResponse)
async def get_track_items(track_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    """Clips and gaps of one track, in timeline order."""
    items, rate = await _layout(track_id, services)
    return envelope(
        context,
        TrackLayoutResponse(
            track_id=track_id,
            rate=rate,
            duration_frames=track_duration(items, rate).value,
            items=[_item_response(item) for item in items],
        ),
    )


@router.get("/{track_id}/item-at", response_model=EnvelopeResponse)
async def get_item_at_time(
    track_id: UUID,
    services: Services,
    context: Context,
    t: float = Query(..., ge=0, description="Time in seconds on the presented track"),
) -> EnvelopeResponse:
    items, rate = await _layout(track_id, services)
    item = item_at_time(items, t, rate)
    return envelope(context, _item_response(item) if item is not None else None)
