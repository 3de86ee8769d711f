import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter

from fastapi import Request

from studio.exceptions import ValidationError
from studio.schemas.envelope import ErrorLocation, ResponseMeta


@dataclass
class RequestContext:
    request_id: str
    start_time: float


def create_request_context(request: Request | None = None) -> RequestContext:
    """Reuse a caller-supplied X-Request-ID when present."""
    request_id = request.headers.get("X-Request-ID") if request is not None else None
    return RequestContext(request_id=request_id or str(uuid.uuid4()), start_time=perf_counter())


def build_meta(context: RequestContext, api_version: str = "1.0") -> ResponseMeta:
    processing_time_ms = int((perf_counter() - context.start_time) * 1000)
    return ResponseMeta(
        api_version=api_version,
        processing_time_ms=processing_time_ms,
        timestamp=datetime.now(timezone.utc),
    )


def read_idempotency_key(request: Request) -> str | None:
    """Optional Idempotency-Key header; must be a UUID when present."""
    key = request.headers.get("Idempotency-Key")
    if key is None:
        return None
    try:
        uuid.UUID(key)
    except ValueError:
        raise ValidationError(
            f"Idempotency-Key must be a valid UUID. Received: '{key}'",
            location=ErrorLocation(field="Idempotency-Key"),
        )
    return key
