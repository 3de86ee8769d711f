from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class UploadOptions(BaseModel):
    content_type: str = "video/mp4"
    cache_control: str = "3600"
    metadata: dict[str, str] = Field(default_factory=dict)


class UploadResult(BaseModel):
    public_url: str
    path: str
    size: int
    provider: str
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    provider_metadata: dict[str, Any] = Field(default_factory=dict)
