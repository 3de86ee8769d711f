import uuid

from sqlalchemy import Float, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from studio.models.base import Base, TimestampMixin, UUIDMixin


class Keyframe(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "keyframes"

    segment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("segments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    revision_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("segment_revisions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    t_sec: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    asset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
