"""Dependencies for API endpoints."""
from fastapi import Depends
from sqlalchemy.orm import Session

from src.app.config import Settings
from src.app.dependencies import get_app_settings
from src.db.base import get_db
from src.repositories.analysis_repo import AnalysisRepository
from src.repositories.gallery_repo import GalleryRepository
from src.services.analysis.orchestrator import AnalysisOrchestrator
from src.services.clients import (
    get_face_index,
    get_gemini_client,
    get_object_storage,
    get_photo_describer,
)
from src.services.face.resolver import PersonResolver
from src.services.search.gallery_search import GallerySearch
from src.services.search.semantic import GeminiSemanticSearch
from src.tasks.workers.analysis_worker import dispatch_gallery_analysis


def get_gallery_repo(db: Session = Depends(get_db)) -> GalleryRepository:
    return GalleryRepository(db)


def get_orchestrator(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> AnalysisOrchestrator:
    """Orchestrator bound to the request session; background work goes through Celery."""
    return AnalysisOrchestrator(
        db,
        face_index=get_face_index(),
        describer=get_photo_describer(),
        storage=get_object_storage(),
        settings=settings,
        dispatch=dispatch_gallery_analysis,
    )


def get_person_resolver(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> PersonResolver:
    return PersonResolver(
        db,
        face_index=get_face_index(),
        similarity_threshold=settings.FACE_MATCH_THRESHOLD,
        max_results=settings.FACE_SEARCH_MAX_RESULTS,
    )


def get_gallery_search(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> GallerySearch:
    analysis_repo = AnalysisRepository(db)
    semantic = GeminiSemanticSearch(
        analysis_repo,
        get_gemini_client(),
        timeout=settings.SEARCH_RANK_TIMEOUT_SECONDS,
    )
    return GallerySearch(
        analysis_repo,
        semantic,
        instant_max_tokens=settings.INSTANT_SEARCH_MAX_TOKENS,
    )
