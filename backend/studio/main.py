import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Sequence

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from studio.api import config, nano, projects, revisions, segments, storage, tracks
from studio.config import Settings, get_settings
from studio.constants.error_codes import get_error_spec
from studio.exceptions import StudioError
from studio.middleware.request_context import RequestContext, build_meta, create_request_context
from studio.models.database import init_db
from studio.schemas.envelope import EnvelopeResponse, ErrorInfo
from studio.services.container import ServiceContainer, build_container
from studio.utils.logging_setup import configure_logging, log_context

logger = logging.getLogger(__name__)


_HTTP_ERROR_CODES = {400: "VALIDATION_ERROR", 404: "NOT_FOUND", 422: "VALIDATION_ERROR"}


def _is_api_path(request: Request) -> bool:
    return request.url.path.startswith("/api")


def _describe_validation(errors: Sequence[Any]) -> str:
    if not errors:
        return "Request validation failed"
    first = errors[0]
    # Drop the "body"/"query" prefix so the message names the field itself.
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    detail = first.get("msg", "invalid value")
    return f"{field}: {detail}" if field else detail


def _context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    return context or create_request_context(request)


def _error_response(request: Request, status_code: int, error: ErrorInfo) -> JSONResponse:
    context = _context(request)
    envelope = EnvelopeResponse(request_id=context.request_id, error=error, meta=build_meta(context))
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(envelope.model_dump(exclude_none=True)),
        headers={"X-Request-ID": context.request_id},
    )


def _coded_error(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    entry = get_error_spec(code)
    error = ErrorInfo(
        code=code,
        message=message,
        retryable=entry.get("retryable", False),
        suggested_fix=entry.get("suggested_fix"),
    )
    return _error_response(request, status_code, error)


def create_app(settings: Settings | None = None, container: ServiceContainer | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        configure_logging(settings.log_level, settings.log_file)
        if getattr(app.state, "container", None) is None:
            app.state.container = build_container(settings)
        engine = app.state.container.engine
        if engine is not None:
            await init_db(engine)
        logger.info(f"{settings.app_name} {settings.app_version} started ({settings.provider_mode} providers)")
        yield
        # Shutdown
        if engine is not None:
            await engine.dispose()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.settings = settings
    app.state.container = container

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        context = create_request_context(request)
        request.state.context = context
        with log_context(request_id=context.request_id):
            response = await call_next(request)
        response.headers["X-Request-ID"] = context.request_id
        return response

    @app.exception_handler(StudioError)
    async def studio_exception_handler(request: Request, exc: StudioError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}")
        else:
            logger.info(f"{exc.code}: {exc.message}")
        return _error_response(request, exc.status_code, exc.to_error_info())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        if not _is_api_path(request):
            return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})
        return _coded_error(request, 422, "VALIDATION_ERROR", _describe_validation(exc.errors()))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        if not _is_api_path(request):
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
        code = _HTTP_ERROR_CODES.get(exc.status_code, "INTERNAL_ERROR")
        return _coded_error(request, exc.status_code, code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}")
        if not _is_api_path(request):
            return JSONResponse(status_code=500, content={"detail": "Internal server error"})
        return _coded_error(request, 500, "INTERNAL_ERROR", "Internal server error")

    # Routers
    app.include_router(config.router, prefix="/api/config", tags=["config"])
    app.include_router(nano.router, prefix="/api/nano", tags=["nano"])
    app.include_router(projects.router, prefix="/api/projects", tags=["projects"])
    app.include_router(tracks.router, prefix="/api/tracks", tags=["tracks"])
    app.include_router(segments.router, prefix="/api/segments", tags=["segments"])
    app.include_router(revisions.router, prefix="/api/revisions", tags=["revisions"])
    app.include_router(storage.router, prefix="/api/storage", tags=["storage"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version, "git_hash": settings.git_hash}

    @app.get("/api/version")
    async def get_version() -> dict[str, str]:
        """Return the backend version info."""
        return {"version": settings.app_version, "git_hash": settings.git_hash}

    return app


app = create_app()
