"""Persisted entity shapes and their request bodies.

The orchestrator and the layout builder only depend on these shapes, never on
how or where they are stored.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

FrameRate = Literal[24, 25, 30]
AspectRatio = Literal["16:9", "9:16", "1:1"]
TrackType = Literal["video", "audio"]
AssetKind = Literal["image", "video"]


def _now() -> datetime:
    return datetime.now(UTC)


class RevisionStatus(str, Enum):
    DRAFT = "draft"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Entity(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=_now)


class Project(Entity):
    user_id: str | None = None
    title: str
    fps: FrameRate = 25
    aspect: AspectRatio = "16:9"
    updated_at: datetime = Field(default_factory=_now)


class Track(Entity):
    project_id: UUID
    type: TrackType = "video"
    name: str
    order: int = 0
    locked: bool = False
    muted: bool = False
    visible: bool = True


class Segment(Entity):
    project_id: UUID
    track_id: UUID
    order: int = 0
    in_sec: float = Field(..., allow_inf_nan=False)
    out_sec: float = Field(..., allow_inf_nan=False)
    source_in_sec: float = Field(default=0.0, allow_inf_nan=False)
    active_revision_id: UUID | None = None
    label: str | None = None
    locked: bool = False
    updated_at: datetime = Field(default_factory=_now)

    @property
    def duration_sec(self) -> float:
        return self.out_sec - self.in_sec


class Revision(Entity):
    segment_id: UUID
    parent_revision_id: UUID | None = None
    provider: str
    status: RevisionStatus = RevisionStatus.DRAFT
    prompt_json: dict[str, Any] = Field(default_factory=lambda: {"root_prompt": ""})
    base_asset_id: UUID | None = None
    output_asset_id: UUID | None = None
    error_json: dict[str, Any] | None = None
    metrics_json: dict[str, Any] | None = None
    updated_at: datetime = Field(default_factory=_now)


class Asset(Entity):
    project_id: UUID | None = None
    kind: AssetKind
    storage_path: str
    storage_provider: str | None = None
    public_url: str | None = None
    mime_type: str
    width: int | None = None
    height: int | None = None
    duration_sec: float | None = None
    file_size_bytes: int | None = None


class Keyframe(Entity):
    segment_id: UUID
    revision_id: UUID
    t_sec: float = Field(..., ge=0, allow_inf_nan=False)
    asset_id: UUID
    note: str | None = None


# =============================================================================
# Request bodies
# =============================================================================


class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    fps: FrameRate = 25
    aspect: AspectRatio = "16:9"
    user_id: str | None = None


class TrackCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: TrackType = "video"
    order: int | None = None


class SegmentCreate(BaseModel):
    in_sec: float = Field(..., ge=0, allow_inf_nan=False)
    out_sec: float | None = Field(None, allow_inf_nan=False)  # Defaults to in_sec + 5
    label: str | None = None
    source_in_sec: float = Field(default=0.0, ge=0, allow_inf_nan=False)

    @model_validator(mode="after")
    def check_range(self) -> "SegmentCreate":
        if self.out_sec is not None and self.out_sec <= self.in_sec:
            raise ValueError(f"out_sec ({self.out_sec}) must be greater than in_sec ({self.in_sec})")
        return self


class SegmentUpdate(BaseModel):
    in_sec: float | None = Field(None, ge=0, allow_inf_nan=False)
    out_sec: float | None = Field(None, allow_inf_nan=False)
    label: str | None = None
    locked: bool | None = None


class SegmentSplit(BaseModel):
    at_sec: float = Field(..., allow_inf_nan=False)


class ActivateRevisionRequest(BaseModel):
    revision_id: UUID | None = None  # None clears the active pointer


class RevisionCreate(BaseModel):
    provider: str
    prompt_json: dict[str, Any] = Field(default_factory=lambda: {"root_prompt": ""})
    base_asset_id: UUID | None = None
    parent_revision_id: UUID | None = None


class RevisionRetry(BaseModel):
    in_place: bool = False


class KeyframeCreate(BaseModel):
    t_sec: float = Field(..., ge=0, allow_inf_nan=False)
    asset_id: UUID
    note: str | None = None


# =============================================================================
# Layout responses
# =============================================================================


class TrackItemResponse(BaseModel):
    kind: Literal["clip", "gap"]
    id: str  # segment id for clips, gap-{frame} for gaps
    rate: float
    start_frame: int
    duration_frames: int
    start_sec: float
    duration_sec: float
    source_start_frame: int | None = None
    label: str | None = None
    active_revision_id: UUID | None = None


class TrackLayoutResponse(BaseModel):
    track_id: UUID
    rate: float
    duration_frames: int
    items: list[TrackItemResponse]


class TimelineDurationResponse(BaseModel):
    project_id: UUID
    rate: float
    duration_frames: int
    duration_sec: float
