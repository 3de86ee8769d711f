from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from studio.schemas.timeline import Revision

GenerationTarget = Literal["root", "extension", "character"]
Quality = Literal["fast", "pro"]


class GenerationRequest(BaseModel):
    """One image generation: a text preview or an instruction-driven retouch."""

    base_image: str | None = None  # data URL or bare base64
    text_prompt: str | None = None
    instruction: str | None = None
    target: GenerationTarget = "root"
    quality: Quality | None = None
    provider: str | None = None  # Overrides the quality/target choice
    provider_options: dict[str, Any] = Field(default_factory=dict)


class PreviewRequest(GenerationRequest):
    @model_validator(mode="after")
    def require_prompt(self) -> "PreviewRequest":
        if not (self.text_prompt or "").strip():
            raise ValueError("text_prompt is required")
        return self


class RetouchRequest(GenerationRequest):
    @model_validator(mode="after")
    def require_image_and_instruction(self) -> "RetouchRequest":
        if not self.base_image:
            raise ValueError("base_image is required")
        if not (self.instruction or "").strip():
            raise ValueError("instruction is required")
        return self


class GenerationResult(BaseModel):
    request_id: str
    preview_artifact_ref: str
    generated_prompt_echo: str
    provider: str
    notes: dict[str, Any] = Field(default_factory=dict)


class BatchRequest(BaseModel):
    base_image: str
    shot_list: list[str] = Field(..., min_length=1)
    quality: Quality | None = None
    target: GenerationTarget = "extension"
    provider: str | None = None

    @field_validator("shot_list")
    @classmethod
    def labels_not_blank(cls, v: list[str]) -> list[str]:
        if any(not label.strip() for label in v):
            raise ValueError("shot_list labels must not be blank")
        return v


class VariantResult(BaseModel):
    label: str
    artifact_ref: str | None = None
    note: str | None = None
    error: dict[str, Any] | None = None  # {code, message} when this entry failed


class BatchResult(BaseModel):
    request_id: str
    variants: list[VariantResult]


class GenerationQueueItem(BaseModel):
    segment_id: UUID
    revision_id: UUID
    priority: int = 0


class GenerateRevisionRequest(BaseModel):
    priority: int = 0
    wait: bool = False  # Run inline instead of in the background


class RevisionOutcomeResponse(BaseModel):
    revision: Revision
    outcome: Literal["queued", "succeeded", "succeeded-but-not-activated", "failed"]
