"""Custom exceptions for the storyboard studio backend.

Every error carries a stable machine-readable code. The HTTP layer renders
them as envelope errors; the generation orchestrator records them on a
revision's ``error_json`` instead of letting them reach the user raw.
"""

from typing import Any

from studio.constants.error_codes import get_error_spec
from studio.schemas.envelope import ErrorInfo, ErrorLocation, SuggestedAction


class StudioError(Exception):
    """Base exception for all studio application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        location: ErrorLocation | None = None,
        suggested_fix: str | None = None,
        raw: Any = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.location = location
        self.suggested_fix = suggested_fix
        self.raw = raw
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return get_error_spec(self.code).get("retryable", False)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            suggested_actions.append(
                SuggestedAction(
                    action=spec["suggested_action"],
                    endpoint=spec.get("suggested_endpoint"),
                )
            )

        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
            suggested_actions=suggested_actions,
        )

    def to_error_json(self) -> dict[str, Any]:
        """Payload stored on a failed revision."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.raw is not None:
            payload["raw"] = self.raw
        return payload


# =============================================================================
# Credential Errors (401)
# =============================================================================


class CredentialError(StudioError):
    """Base class for credential resolution failures."""

    status_code = 401


class CredentialMissingError(CredentialError):
    code = "CREDENTIAL_MISSING"
    message = "No API key configured on the server and none supplied by the user"


class CredentialInvalidError(CredentialError):
    code = "CREDENTIAL_INVALID"
    message = "The API key is invalid"


class ServerCredentialInvalidError(CredentialError):
    """The server-managed key is malformed or was rejected. Only an operator can fix it."""

    code = "SERVER_CREDENTIAL_INVALID"
    status_code = 503
    message = "The server-managed API key is misconfigured"


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class ResourceNotFoundError(StudioError):
    """Base class for resource not found errors."""

    status_code = 404
    label = "Resource"

    def __init__(self, resource_id: Any = None):
        message = f"{self.label} not found: {resource_id}" if resource_id else self.message
        super().__init__(message)


class ProjectNotFoundError(ResourceNotFoundError):
    code = "PROJECT_NOT_FOUND"
    message = "Project not found"
    label = "Project"


class TrackNotFoundError(ResourceNotFoundError):
    code = "TRACK_NOT_FOUND"
    message = "Track not found"
    label = "Track"


class SegmentNotFoundError(ResourceNotFoundError):
    code = "SEGMENT_NOT_FOUND"
    message = "Segment not found"
    label = "Segment"


class RevisionNotFoundError(ResourceNotFoundError):
    code = "REVISION_NOT_FOUND"
    message = "Revision not found"
    label = "Revision"


class AssetNotFoundError(ResourceNotFoundError):
    code = "ASSET_NOT_FOUND"
    message = "Asset not found"
    label = "Asset"


class ProviderNotFoundError(ResourceNotFoundError):
    code = "PROVIDER_NOT_FOUND"
    message = "Generation provider not registered"
    label = "Generation provider"


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(StudioError):
    """Base class for validation errors."""

    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidTimeRangeError(ValidationError):
    code = "INVALID_TIME_RANGE"
    message = "Segment end must be after its start"

    def __init__(self, in_sec: float | None = None, out_sec: float | None = None):
        message = self.message
        if in_sec is not None and out_sec is not None:
            message = f"Invalid time range: in_sec={in_sec}, out_sec={out_sec}"
        super().__init__(message, location=ErrorLocation(field="out_sec"))


class RateMismatchError(ValidationError):
    """Two rational times with different rates were combined."""

    code = "RATE_MISMATCH"
    message = "Cannot combine times with different rates"

    def __init__(self, left_rate: float | None = None, right_rate: float | None = None):
        message = self.message
        if left_rate is not None and right_rate is not None:
            message = f"Cannot combine times with different rates: {left_rate} vs {right_rate}"
        super().__init__(message)


class InvalidTimelineOverlapError(ValidationError):
    code = "INVALID_TIMELINE_OVERLAP"
    message = "Segments overlap on the track"

    def __init__(self, segment_id: str | None = None, previous_id: str | None = None):
        message = self.message
        if segment_id and previous_id:
            message = f"Segment {segment_id} overlaps segment {previous_id}"
        location = ErrorLocation(segment_id=segment_id) if segment_id else None
        super().__init__(message, location=location)


class SegmentLockedError(ValidationError):
    code = "SEGMENT_LOCKED"
    message = "Segment is locked"

    def __init__(self, segment_id: str | None = None):
        message = f"Segment is locked: {segment_id}" if segment_id else self.message
        location = ErrorLocation(segment_id=segment_id) if segment_id else None
        super().__init__(message, location=location)


class InvalidRevisionTransitionError(ValidationError):
    code = "INVALID_REVISION_TRANSITION"
    status_code = 409
    message = "Revision cannot move to the requested state"

    def __init__(self, revision_id: str, current: str, target: str):
        super().__init__(
            f"Revision {revision_id} cannot move from {current} to {target}",
            location=ErrorLocation(revision_id=revision_id),
        )


class RevisionCycleError(ValidationError):
    code = "REVISION_CYCLE"
    message = "Parent revision would create a cycle"


class ActiveRevisionDeleteError(ValidationError):
    code = "ACTIVE_REVISION_DELETE"
    status_code = 409
    message = "Revision is the active revision of its segment"


class CapabilityNotSupportedError(ValidationError):
    code = "CAPABILITY_NOT_SUPPORTED"
    message = "Provider does not support this capability"

    def __init__(self, provider_id: str, capability: str):
        super().__init__(f"Provider {provider_id} does not support {capability}")


# =============================================================================
# Conflict Errors (409)
# =============================================================================


class ConflictError(StudioError):
    """Base class for conflict errors."""

    code = "CONFLICT"
    status_code = 409


class SegmentBusyError(ConflictError):
    code = "SEGMENT_BUSY"
    message = "A generation request is already in flight for this segment"

    def __init__(self, segment_id: str | None = None):
        message = f"Segment {segment_id} already has a generation in flight" if segment_id else self.message
        location = ErrorLocation(segment_id=segment_id) if segment_id else None
        super().__init__(message, location=location)


class IdempotencyConflictError(ConflictError):
    code = "IDEMPOTENCY_CONFLICT"
    message = "Idempotency key was already used for a different request"


# =============================================================================
# Generation Errors
# =============================================================================


class GenerationError(StudioError):
    """Base class for errors that terminate a generation attempt."""

    status_code = 502


class NoOutputProducedError(GenerationError):
    code = "NO_OUTPUT_PRODUCED"
    message = "Provider completed without producing any output"


class GenerationTimeoutError(GenerationError):
    code = "TIMEOUT"
    status_code = 504
    message = "Generation did not complete before the timeout"


class ProviderTransportError(GenerationError):
    """Network or 5xx level failure talking to a provider. Retryable."""

    code = "PROVIDER_TRANSPORT_ERROR"
    message = "Could not reach the generation provider"


class ProviderOperationError(GenerationError):
    """Provider reported an explicit failure. Carries the native payload in ``raw``."""

    code = "PROVIDER_OPERATION_ERROR"
    message = "Generation provider reported an error"


class GenerationCancelledError(GenerationError):
    code = "GENERATION_CANCELLED"
    status_code = 409
    message = "Generation was cancelled"


# =============================================================================
# Storage Errors
# =============================================================================


class StorageError(StudioError):
    code = "STORAGE_ERROR"
    status_code = 500


class NoStorageProviderAvailableError(StorageError):
    code = "NO_STORAGE_PROVIDER_AVAILABLE"
    status_code = 503
    message = "No storage provider is available"


class UploadFailedError(StorageError):
    code = "UPLOAD_FAILED"
    status_code = 502
    message = "Artifact upload failed"


# =============================================================================
# Server Errors
# =============================================================================


class InternalError(StudioError):
    code = "INTERNAL_ERROR"
    status_code = 500
