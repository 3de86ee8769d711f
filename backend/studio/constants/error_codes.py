"""Error codes dictionary.

This is the single source of truth for all error codes, their retryability,
and suggested recovery actions. Used by exception handlers to build
machine-readable error responses and by the orchestrator to fill a
revision's error payload.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Registry entry describing an error code."""

    retryable: bool
    suggested_action: str
    suggested_endpoint: str
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Credential errors (user codes prompt once; the server code never prompts)
    # ==========================================================================
    "CREDENTIAL_MISSING": {
        "retryable": False,
        "suggested_action": "prompt_for_api_key",
        "suggested_endpoint": "GET /api/config",
        "suggested_fix": "Send an API key in the x-api-key header",
    },
    "CREDENTIAL_INVALID": {
        "retryable": False,
        "suggested_action": "prompt_for_api_key",
        "suggested_endpoint": "GET /api/config",
        "suggested_fix": "The API key was rejected; supply a valid key",
    },
    "SERVER_CREDENTIAL_INVALID": {
        "retryable": False,
        "suggested_action": "contact_operator",
        "suggested_fix": "The server API key is misconfigured; a user key will not be used",
    },
    # ==========================================================================
    # Resource errors (retryable after refresh)
    # ==========================================================================
    "PROJECT_NOT_FOUND": {
        "retryable": True,
        "suggested_action": "refresh_ids",
    },
    "TRACK_NOT_FOUND": {
        "retryable": True,
        "suggested_action": "refresh_ids",
        "suggested_endpoint": "GET /api/projects/{project_id}/tracks",
    },
    "SEGMENT_NOT_FOUND": {
        "retryable": True,
        "suggested_action": "refresh_ids",
        "suggested_endpoint": "GET /api/tracks/{track_id}/segments",
    },
    "REVISION_NOT_FOUND": {
        "retryable": True,
        "suggested_action": "refresh_ids",
        "suggested_endpoint": "GET /api/segments/{segment_id}/revisions",
    },
    "ASSET_NOT_FOUND": {
        "retryable": True,
        "suggested_action": "refresh_ids",
    },
    "PROVIDER_NOT_FOUND": {
        "retryable": False,
    },
    # ==========================================================================
    # Validation errors (not retryable, fix input)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    "INVALID_TIME_RANGE": {
        "retryable": False,
        "suggested_fix": "out_sec must be greater than in_sec",
    },
    "RATE_MISMATCH": {
        "retryable": False,
    },
    "INVALID_TIMELINE_OVERLAP": {
        "retryable": False,
        "suggested_action": "trim_or_move_segment",
        "suggested_fix": "Trim or move one of the overlapping segments",
    },
    "SEGMENT_LOCKED": {
        "retryable": False,
        "suggested_action": "unlock_segment",
        "suggested_endpoint": "PATCH /api/segments/{segment_id}",
    },
    "INVALID_REVISION_TRANSITION": {
        "retryable": False,
    },
    "REVISION_CYCLE": {
        "retryable": False,
    },
    "ACTIVE_REVISION_DELETE": {
        "retryable": False,
        "suggested_action": "activate_other_revision",
        "suggested_endpoint": "POST /api/segments/{segment_id}/activate",
        "suggested_fix": "Activate another revision or clear the active pointer first",
    },
    "CAPABILITY_NOT_SUPPORTED": {
        "retryable": False,
    },
    # ==========================================================================
    # Conflict errors
    # ==========================================================================
    "SEGMENT_BUSY": {
        "retryable": True,
        "suggested_action": "wait_and_retry",
    },
    "IDEMPOTENCY_CONFLICT": {
        "retryable": False,
    },
    # ==========================================================================
    # Generation errors (surface on the revision)
    # ==========================================================================
    "NO_OUTPUT_PRODUCED": {
        "retryable": True,
        "suggested_action": "retry_revision",
        "suggested_endpoint": "POST /api/revisions/{revision_id}/retry",
    },
    "TIMEOUT": {
        "retryable": True,
        "suggested_action": "retry_revision",
        "suggested_endpoint": "POST /api/revisions/{revision_id}/retry",
    },
    "PROVIDER_TRANSPORT_ERROR": {
        "retryable": True,
        "suggested_action": "retry_revision",
    },
    "PROVIDER_OPERATION_ERROR": {
        "retryable": False,
        "suggested_action": "edit_prompt_and_branch",
        "suggested_fix": "Adjust the prompt and branch a new revision",
    },
    "GENERATION_CANCELLED": {
        "retryable": True,
        "suggested_action": "retry_revision",
    },
    # ==========================================================================
    # Storage errors
    # ==========================================================================
    "NO_STORAGE_PROVIDER_AVAILABLE": {
        "retryable": True,
        "suggested_action": "check_storage_configuration",
    },
    "UPLOAD_FAILED": {
        "retryable": True,
        "suggested_action": "retry_revision",
    },
    "STORAGE_ERROR": {
        "retryable": True,
    },
    # ==========================================================================
    # Server errors
    # ==========================================================================
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "retry_later",
    },
    "NOT_FOUND": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get the registry entry for an error code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested actions
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    spec = get_error_spec(code)
    return spec.get("retryable", False)
