from studio.schemas.generation import (
    BatchRequest,
    BatchResult,
    GenerationQueueItem,
    GenerationRequest,
    GenerationResult,
    VariantResult,
)
from studio.schemas.storage import UploadOptions, UploadResult
from studio.schemas.timeline import (
    Asset,
    Keyframe,
    Project,
    Revision,
    RevisionStatus,
    Segment,
    Track,
)

__all__ = [
    "Project",
    "Track",
    "Segment",
    "Revision",
    "RevisionStatus",
    "Asset",
    "Keyframe",
    "GenerationRequest",
    "GenerationResult",
    "BatchRequest",
    "BatchResult",
    "VariantResult",
    "GenerationQueueItem",
    "UploadOptions",
    "UploadResult",
]
