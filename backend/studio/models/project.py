from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studio.models.base import Base, TimestampMixin, UUIDMixin


class Project(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "projects"
    __table_args__ = (CheckConstraint("fps IN (24, 25, 30)", name="ck_projects_fps"),)

    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    fps: Mapped[int] = mapped_column(Integer, default=25, nullable=False)
    aspect: Mapped[str] = mapped_column(String(8), default="16:9", nullable=False)

    tracks: Mapped[list["Track"]] = relationship(  # noqa: F821
        "Track", back_populates="project", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Project {self.title}>"
