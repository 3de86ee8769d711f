"""Stateless image generation: previews, retouches and shot-variant batches."""

from fastapi import APIRouter

from studio.api.deps import Context, Services, UserApiKey, envelope
from studio.schemas.envelope import EnvelopeResponse
from studio.schemas.generation import BatchRequest, PreviewRequest, RetouchRequest

router = APIRouter()


@router.post("/preview", response_model=EnvelopeResponse)
async def create_preview(
    body: PreviewRequest, services: Services, context: Context, user_key: UserApiKey
) -> EnvelopeResponse:
    result = await services.orchestrator.preview(body, user_key=user_key)
    return envelope(context, result)


@router.post("/retouch", response_model=EnvelopeResponse)
async def retouch_image(
    body: RetouchRequest, services: Services, context: Context, user_key: UserApiKey
) -> EnvelopeResponse:
    result = await services.orchestrator.retouch(body, user_key=user_key)
    return envelope(context, result)


@router.post("/shot-variants", response_model=EnvelopeResponse)
async def create_shot_variants(
    body: BatchRequest, services: Services, context: Context, user_key: UserApiKey
) -> EnvelopeResponse:
    """One entry per label, even when some labels fail."""
    result = await services.orchestrator.batch_variants(body, user_key=user_key)
    return envelope(context, result)
