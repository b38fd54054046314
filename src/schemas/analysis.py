"""Analysis job schemas."""
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
from datetime import datetime

from src.models.enums import AnalysisErrorCode, AnalysisMode


class StartAnalysisRequest(BaseModel):
    """Request to start (or restart) a gallery analysis."""
    mode: AnalysisMode = Field(AnalysisMode.initial, description="initial, reanalyze or retryFailed")


class StartAnalysisResponse(BaseModel):
    """Outcome of scheduling a gallery analysis."""
    model_config = ConfigDict(from_attributes=True)

    gallery_id: str
    mode: AnalysisMode
    recovered: int = Field(0, description="Stalled jobs returned to PENDING")
    reset: int = Field(0, description="Records deleted (reanalyze) or failed jobs reset (retryFailed)")
    seeded: int = Field(0, description="New PENDING records created")
    pending: int = Field(0, description="Jobs waiting to run")
    reconciled: int = Field(0, description="Completed photos whose faces were re-clustered")


class AnalysisStatusResponse(BaseModel):
    """Aggregate analysis state of a gallery."""
    model_config = ConfigDict(from_attributes=True)

    gallery_id: str
    progress: int = Field(..., ge=0, le=100)
    ai_search_enabled: bool
    total_photos: int
    stats: Dict[str, int] = Field(default_factory=dict, description="Record count per status")
    is_stalled: bool
    last_activity: Optional[datetime] = None
    last_analysis_triggered_at: Optional[datetime] = None


class FailedAnalysisResponse(BaseModel):
    """A failed analysis job."""
    model_config = ConfigDict(from_attributes=True)

    photo_id: str
    error_message: Optional[str] = None
    error_code: Optional[AnalysisErrorCode] = None
    retryable: bool
    retry_count: int
    updated_at: Optional[datetime] = None


class FailedAnalysisListResponse(BaseModel):
    items: List[FailedAnalysisResponse]
    total: int


class AiSearchToggleRequest(BaseModel):
    enabled: bool


class AiSearchToggleResponse(BaseModel):
    gallery_id: str
    ai_search_enabled: bool
