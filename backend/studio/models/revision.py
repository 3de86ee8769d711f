import uuid
from typing import Any

from sqlalchemy import ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studio.models.base import Base, TimestampMixin, UUIDMixin
from studio.schemas.timeline import RevisionStatus


class SegmentRevision(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "segment_revisions"

    segment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("segments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_revision_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("segment_revisions.id", ondelete="SET NULL"), nullable=True
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=RevisionStatus.DRAFT.value, nullable=False)
    prompt_json: Mapped[dict[str, Any]] = mapped_column(default=lambda: {"root_prompt": ""}, nullable=False)
    base_asset_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("assets.id", ondelete="SET NULL"), nullable=True
    )
    output_asset_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("assets.id", ondelete="SET NULL"), nullable=True
    )
    error_json: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    metrics_json: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)

    segment: Mapped["Segment"] = relationship("Segment", back_populates="revisions")  # noqa: F821

    def __repr__(self) -> str:
        return f"<SegmentRevision {self.id} {self.status}>"
