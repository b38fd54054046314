"""
API schemas package.

Request/response models for gallery analysis, person clusters and search.
"""

from .analysis import (
    StartAnalysisRequest,
    StartAnalysisResponse,
    AnalysisStatusResponse,
    FailedAnalysisResponse,
    FailedAnalysisListResponse,
    AiSearchToggleRequest,
    AiSearchToggleResponse,
)
from .person import (
    PersonClusterUpdate,
    PersonClusterInDB,
    PersonClusterListResponse,
    FindPersonResponse,
)
from .search import SearchHitResponse, SearchResponse

__all__ = [
    "StartAnalysisRequest",
    "StartAnalysisResponse",
    "AnalysisStatusResponse",
    "FailedAnalysisResponse",
    "FailedAnalysisListResponse",
    "AiSearchToggleRequest",
    "AiSearchToggleResponse",
    "PersonClusterUpdate",
    "PersonClusterInDB",
    "PersonClusterListResponse",
    "FindPersonResponse",
    "SearchHitResponse",
    "SearchResponse",
]
