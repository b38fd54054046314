"""
Services package initializer.

Re-exports the analysis, person-resolution and search services so callers
can import from `src.services` instead of deep module paths.
"""

from .analysis.orchestrator import AnalysisOrchestrator
from .face.clustering import PersonClusterEngine
from .face.resolver import PersonResolver
from .search.gallery_search import GallerySearch

__all__ = [
    "AnalysisOrchestrator",
    "PersonClusterEngine",
    "PersonResolver",
    "GallerySearch",
]
