from studio.models.asset import Asset
from studio.models.base import Base
from studio.models.keyframe import Keyframe
from studio.models.project import Project
from studio.models.revision import SegmentRevision
from studio.models.segment import Segment
from studio.models.track import Track

__all__ = [
    "Base",
    "Project",
    "Track",
    "Segment",
    "SegmentRevision",
    "Asset",
    "Keyframe",
]
