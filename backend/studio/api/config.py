"""Config probe: tells the UI whether it must ask the user for an API key."""

from fastapi import APIRouter

from studio.api.deps import Context, Services, envelope
from studio.schemas.envelope import EnvelopeResponse
from studio.services.credentials import config_probe

router = APIRouter()


@router.get("", response_model=EnvelopeResponse)
async def get_config(services: Services, context: Context) -> EnvelopeResponse:
    settings = services.settings
    return envelope(context, config_probe(settings.gemini_api_key, min_length=settings.min_api_key_length))
