from typing import Annotated, Any

from fastapi import Depends, Header, Request
from fastapi.encoders import jsonable_encoder

from studio.middleware.request_context import RequestContext, build_meta, create_request_context
from studio.schemas.envelope import EnvelopeResponse
from studio.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_request_context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    if context is None:
        context = create_request_context(request)
        request.state.context = context
    return context


async def get_user_api_key(
    x_api_key: Annotated[str | None, Header(alias="x-api-key")] = None,
    x_gemini_api_key: Annotated[str | None, Header(alias="x-gemini-api-key")] = None,
) -> str | None:
    """User-supplied key. Only consulted when the server has no key of its own."""
    return x_api_key or x_gemini_api_key


Services = Annotated[ServiceContainer, Depends(get_container)]
Context = Annotated[RequestContext, Depends(get_request_context)]
UserApiKey = Annotated[str | None, Depends(get_user_api_key)]


def envelope(context: RequestContext, data: Any) -> EnvelopeResponse:
    return EnvelopeResponse(request_id=context.request_id, data=data, meta=build_meta(context))


def envelope_content(context: RequestContext, data: Any) -> dict[str, Any]:
    return jsonable_encoder(envelope(context, data).model_dump(exclude_none=True))
