"""
Gallery Analysis API
====================

Start analysis runs and poll their progress.

Runs execute in Celery workers; ``POST`` returns as soon as jobs are seeded
and clients observe completion through ``GET``.
"""

import logging

from fastapi import APIRouter, Depends, Path, status

from src.api.deps import get_orchestrator
from src.services.analysis.orchestrator import AnalysisOrchestrator
from src.schemas.analysis import (
    StartAnalysisRequest,
    StartAnalysisResponse,
    AnalysisStatusResponse,
    FailedAnalysisResponse,
    FailedAnalysisListResponse,
    AiSearchToggleRequest,
    AiSearchToggleResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/{gallery_id}/analysis",
    response_model=StartAnalysisResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_analysis(
    payload: StartAnalysisRequest,
    gallery_id: str = Path(..., description="Gallery ID"),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """
    Start analysis of a gallery.

    **Modes:**
    - `initial`: analyze photos that have no analysis yet
    - `reanalyze`: wipe analyses, clusters and the face collection, then analyze everything
    - `retryFailed`: requeue jobs that failed with a retryable error
    """
    result = orchestrator.start_analysis(gallery_id, payload.mode)
    return StartAnalysisResponse.model_validate(result)


@router.get("/{gallery_id}/analysis", response_model=AnalysisStatusResponse)
async def get_analysis_status(
    gallery_id: str = Path(..., description="Gallery ID"),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Progress, per-status counts and the stall flag of a gallery's analysis."""
    report = orchestrator.get_analysis_status(gallery_id)
    return AnalysisStatusResponse.model_validate(report)


@router.get("/{gallery_id}/analysis/failed", response_model=FailedAnalysisListResponse)
async def list_failed_analyses(
    gallery_id: str = Path(..., description="Gallery ID"),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Failed jobs of a gallery, newest first."""
    failed = orchestrator.list_failed_analyses(gallery_id)
    return FailedAnalysisListResponse(
        items=[FailedAnalysisResponse.model_validate(f) for f in failed],
        total=len(failed),
    )


@router.put("/{gallery_id}/analysis/ai-search", response_model=AiSearchToggleResponse)
async def toggle_ai_search(
    payload: AiSearchToggleRequest,
    gallery_id: str = Path(..., description="Gallery ID"),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Enable or disable search for a gallery."""
    gallery = orchestrator.toggle_ai_search(gallery_id, payload.enabled)
    return AiSearchToggleResponse(gallery_id=gallery.id, ai_search_enabled=gallery.ai_search_enabled)
