"""
Photo Analysis Celery Workers
=============================

Background execution of gallery analysis.

Tasks:
- tasks.analyze_gallery: recover stalled jobs and fan out one task per pending photo
- tasks.process_photo: run one photo's job and refresh gallery progress

Completion is observed by polling the analysis status endpoint; tasks never
call back into the request that started them.
"""

from typing import Any, Dict, Optional
import logging
import traceback

from celery import Task, group
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.tasks.celery_app import celery_app
from src.db.base import SessionLocal
from src.services.analysis.orchestrator import AnalysisOrchestrator
from src.services.clients import get_face_index, get_object_storage, get_photo_describer
from src.services.face.face_index import FaceIndex
from src.services.storage.s3 import ObjectStorage
from src.services.vision.describer import PhotoDescriber

logger = logging.getLogger(__name__)


# =============================================================================
# Base Task Class
# =============================================================================

class AnalysisTask(Task):
    """Base task owning the worker's collaborator clients."""

    # Only store failures are retried; collaborator failures are recorded on the job row
    autoretry_for = (SQLAlchemyError,)
    retry_kwargs = {'max_retries': 3}
    retry_backoff = True
    retry_backoff_max = 300
    retry_jitter = True

    _face_index: Optional[FaceIndex] = None
    _describer: Optional[PhotoDescriber] = None
    _storage: Optional[ObjectStorage] = None

    @property
    def face_index(self) -> FaceIndex:
        """Lazy-load face index."""
        if self._face_index is None:
            logger.info("Initializing face index in worker")
            self._face_index = get_face_index()
        return self._face_index

    @property
    def describer(self) -> PhotoDescriber:
        """Lazy-load photo describer."""
        if self._describer is None:
            self._describer = get_photo_describer()
        return self._describer

    @property
    def storage(self) -> ObjectStorage:
        """Lazy-load object storage."""
        if self._storage is None:
            self._storage = get_object_storage()
        return self._storage

    def get_db(self) -> Session:
        """Get database session."""
        return SessionLocal()

    def build_orchestrator(self, db: Session) -> AnalysisOrchestrator:
        return AnalysisOrchestrator(
            db,
            face_index=self.face_index,
            describer=self.describer,
            storage=self.storage,
        )

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure."""
        logger.error(
            f"Task {task_id} failed: {str(exc)}",
            extra={
                "task_id": task_id,
                "args": args,
                "traceback": traceback.format_exc()
            }
        )


# =============================================================================
# Gallery Fan-out
# =============================================================================

@celery_app.task(
    bind=True,
    base=AnalysisTask,
    name='tasks.analyze_gallery'
)
def analyze_gallery_task(self, gallery_id: str) -> Dict[str, Any]:
    """
    Recover stalled jobs and re-cluster orphaned faces, then submit every
    pending photo of a gallery.

    Args:
        gallery_id: Gallery id

    Returns:
        Scheduling summary
    """
    db = self.get_db()

    try:
        orchestrator = self.build_orchestrator(db)
        recovered = orchestrator.recover_stalled(gallery_id)
        reconciled = orchestrator.reconcile_clusters(gallery_id)
        photo_ids = orchestrator.pending_photo_ids(gallery_id)

        if photo_ids:
            group(
                process_photo_task.s(gallery_id, photo_id)
                for photo_id in photo_ids
            ).apply_async()
        progress = orchestrator.refresh_progress(gallery_id)

        logger.info(f"Gallery {gallery_id}: submitted {len(photo_ids)} photos ({recovered} recovered, {reconciled} reconciled)")
        return {
            'status': 'submitted',
            'gallery_id': gallery_id,
            'recovered': recovered,
            'reconciled': reconciled,
            'submitted': len(photo_ids),
            'progress': progress,
        }

    except Exception as e:
        logger.error(f"Gallery analysis scheduling failed for {gallery_id}: {str(e)}")
        raise

    finally:
        db.close()


# =============================================================================
# Single Photo
# =============================================================================

@celery_app.task(
    bind=True,
    base=AnalysisTask,
    name='tasks.process_photo'
)
def process_photo_task(self, gallery_id: str, photo_id: str) -> Dict[str, Any]:
    """
    Run one photo's analysis job and refresh the gallery's progress.

    A job already claimed by another worker is skipped.
    """
    db = self.get_db()

    try:
        orchestrator = self.build_orchestrator(db)
        status = orchestrator.process_one(photo_id)
        progress = orchestrator.refresh_progress(gallery_id)
        if progress == 100:
            # Last job of the run; sweep up faces an earlier clustering step dropped
            orchestrator.reconcile_clusters(gallery_id)

        return {
            'status': status.value if status else 'skipped',
            'gallery_id': gallery_id,
            'photo_id': photo_id,
            'progress': progress,
        }

    except Exception as e:
        logger.error(f"Photo analysis failed for {photo_id}: {str(e)}")
        raise

    finally:
        db.close()


def dispatch_gallery_analysis(gallery_id: str) -> None:
    """Submit a gallery for background analysis."""
    analyze_gallery_task.delay(gallery_id)
