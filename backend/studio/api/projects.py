from uuid import UUID

from fastapi import APIRouter, status

from studio.api.deps import Context, Services, envelope
from studio.schemas.envelope import EnvelopeResponse
from studio.schemas.timeline import ProjectCreate, TimelineDurationResponse, TrackCreate
from studio.services.track_layout import build_track_items, timeline_duration

router = APIRouter()


@router.post("", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def create_project(body: ProjectCreate, services: Services, context: Context) -> EnvelopeResponse:
    project = await services.segments.create_project(body.title, body.fps, body.aspect, body.user_id)
    return envelope(context, project)


@router.get("/{project_id}", response_model=EnvelopeResponse)
async def get_project(project_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    return envelope(context, await services.repository.get_project(project_id))


@router.post("/{project_id}/tracks", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def create_track(
    project_id: UUID, body: TrackCreate, services: Services, context: Context
) -> EnvelopeResponse:
    track = await services.segments.create_track(project_id, body.name, body.type, body.order)
    return envelope(context, track)


@router.get("/{project_id}/tracks", response_model=EnvelopeResponse)
async def list_tracks(project_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    await services.repository.get_project(project_id)
    return envelope(context, await services.repository.list_tracks(project_id))


@router.get("/{project_id}/duration", response_model=EnvelopeResponse)
async def get_timeline_duration(project_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    """Length of the longest track."""
    project = await services.repository.get_project(project_id)
    layouts = [
        build_track_items(await services.repository.list_segments(track.id), project.fps)
        for track in await services.repository.list_tracks(project_id)
    ]
    duration = timeline_duration(layouts, project.fps)
    return envelope(
        context,
        TimelineDurationResponse(
            project_id=project_id,
            rate=project.fps,
            duration_frames=duration.value,
            duration_sec=duration.to_seconds(),
        ),
    )
