"""Import all models for Alembic."""
from .base import TimestampMixin
from .enums import (
    AnalysisStatus,
    AnalysisErrorCode,
    AnalysisMode,
    ResolutionMethod,
    SearchMode,
)
from .gallery import Gallery
from .photo import Photo
from .photo_analysis import PhotoAnalysis
from .person_face import PersonFace
from .person_cluster import PersonCluster

__all__ = [
    "TimestampMixin",
    "AnalysisStatus",
    "AnalysisErrorCode",
    "AnalysisMode",
    "ResolutionMethod",
    "SearchMode",
    "Gallery",
    "Photo",
    "PhotoAnalysis",
    "PersonFace",
    "PersonCluster",
]
