import uuid

from sqlalchemy import Boolean, CheckConstraint, Float, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studio.models.base import Base, TimestampMixin, UUIDMixin


class Segment(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "segments"
    __table_args__ = (CheckConstraint("out_sec > in_sec", name="ck_segments_range"),)

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    track_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tracks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    in_sec: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    out_sec: Mapped[float] = mapped_column(Float, default=5.0, nullable=False)
    source_in_sec: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    # No FK: segments and revisions would reference each other. The
    # revision service keeps the pointer inside the segment's own revisions.
    active_revision_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    track: Mapped["Track"] = relationship("Track", back_populates="segments")  # noqa: F821
    revisions: Mapped[list["SegmentRevision"]] = relationship(  # noqa: F821
        "SegmentRevision", back_populates="segment", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Segment {self.id} {self.in_sec}-{self.out_sec}>"
