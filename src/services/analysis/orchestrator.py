"""
Analysis Orchestrator
=====================

Drives a gallery's photos through the analysis job state machine:

    PENDING -> PROCESSING -> COMPLETED | FAILED
    FAILED -> PENDING          (retryFailed, retryable codes only)
    PROCESSING -> PENDING      (stall recovery)

Work is claimed by compare-and-set on the job row, so any number of workers
may call ``process_one`` for the same photo and at most one will run it.
Collaborator failures are classified into ``AnalysisErrorCode`` and stored
on the row; store failures propagate.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.app.config import Settings, get_settings
from src.models.enums import (
    AnalysisErrorCode,
    AnalysisMode,
    AnalysisStatus,
    RETRYABLE_ERROR_CODES,
)
from src.models.gallery import Gallery
from src.models.person_cluster import PersonCluster
from src.repositories.analysis_repo import AnalysisRepository
from src.repositories.cluster_repo import PersonClusterRepository
from src.repositories.face_repo import FaceRepository
from src.repositories.gallery_repo import GalleryRepository
from src.services.analysis.errors import AnalysisError, to_analysis_error
from src.services.analysis.fusion import fuse_faces
from src.services.face.clustering import PersonClusterEngine
from src.services.face.cropping import crop_face, decode_image
from src.services.face.face_index import (
    DetectedFace,
    FaceIndex,
    IndexedFace,
    collection_id_for_gallery,
)
from src.services.storage.s3 import ObjectStorage
from src.services.vision.describer import PhotoDescriber

logger = logging.getLogger(__name__)


@dataclass
class StartAnalysisResult:
    gallery_id: str
    mode: AnalysisMode
    recovered: int = 0
    reset: int = 0
    seeded: int = 0
    pending: int = 0
    reconciled: int = 0


@dataclass
class AnalysisStatusReport:
    gallery_id: str
    progress: int
    ai_search_enabled: bool
    total_photos: int
    stats: Dict[str, int] = field(default_factory=dict)
    is_stalled: bool = False
    last_activity: Optional[datetime] = None
    last_analysis_triggered_at: Optional[datetime] = None


@dataclass
class FailedAnalysis:
    photo_id: str
    error_message: Optional[str]
    error_code: Optional[AnalysisErrorCode]
    retryable: bool
    retry_count: int
    updated_at: Optional[datetime]


class AnalysisOrchestrator:
    """
    Schedules, runs and reports on per-photo analysis jobs.

    Args:
        db: Database session
        face_index: Face detection / similarity index
        describer: Vision-model photo describer
        storage: Object storage holding original photos
        settings: Thresholds and windows (defaults to process settings)
        dispatch: Called with a gallery id when pending work should be run
        clock: Source of "now" (UTC, naive)
    """

    def __init__(
        self,
        db: Session,
        face_index: FaceIndex,
        describer: PhotoDescriber,
        storage: ObjectStorage,
        settings: Optional[Settings] = None,
        dispatch: Optional[Callable[[str], None]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.face_index = face_index
        self.describer = describer
        self.storage = storage
        self.settings = settings or get_settings()
        self.dispatch = dispatch
        self.clock = clock

        self.gallery_repo = GalleryRepository(db)
        self.analysis_repo = AnalysisRepository(db)
        self.face_repo = FaceRepository(db)
        self.cluster_repo = PersonClusterRepository(db)
        self.cluster_engine = PersonClusterEngine(
            db,
            face_index,
            similarity_threshold=self.settings.FACE_MATCH_THRESHOLD,
            max_results=self.settings.FACE_SEARCH_MAX_RESULTS,
        )

    @property
    def stale_window(self) -> timedelta:
        return timedelta(seconds=self.settings.ANALYSIS_STALE_AFTER_SECONDS)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start_analysis(self, gallery_id: str, mode=AnalysisMode.initial) -> StartAnalysisResult:
        """
        Validate, recover, reset, reconcile and seed; then hand pending work to ``dispatch``.

        Raises:
            GalleryNotFoundError: Unknown gallery
            ValueError: Unknown mode
        """
        mode = AnalysisMode(mode)
        gallery = self.gallery_repo.get_or_raise(gallery_id)
        result = StartAnalysisResult(gallery_id=gallery_id, mode=mode)

        result.recovered = self.recover_stalled(gallery_id)

        if mode == AnalysisMode.reanalyze:
            result.reset = self._wipe_gallery(gallery)
        elif mode == AnalysisMode.retry_failed:
            result.reset = self.analysis_repo.bulk_transition(
                gallery_id,
                AnalysisStatus.FAILED,
                AnalysisStatus.PENDING,
                self.clock(),
                error_prefixes=[code.prefix for code in sorted(RETRYABLE_ERROR_CODES)],
                clear_error=True,
                reset_retry_count=True,
            )

        if mode != AnalysisMode.reanalyze:
            result.reconciled = self.reconcile_clusters(gallery_id)

        if mode != AnalysisMode.retry_failed:
            result.seeded = self.analysis_repo.seed_pending(
                gallery_id,
                self.gallery_repo.list_unanalyzed_photo_ids(gallery_id),
                self.clock(),
            )

        self.gallery_repo.set_analysis_state(
            gallery_id,
            progress=self.compute_progress(gallery_id),
            triggered_at=self.clock(),
        )

        result.pending = len(self.analysis_repo.list_pending_photo_ids(gallery_id))
        logger.info(
            f"Analysis started for gallery {gallery_id} ({mode.value}): "
            f"recovered={result.recovered} reset={result.reset} seeded={result.seeded} "
            f"reconciled={result.reconciled} pending={result.pending}"
        )

        if result.pending and self.dispatch is not None:
            self.dispatch(gallery_id)
        return result

    def _wipe_gallery(self, gallery: Gallery) -> int:
        """Drop the face collection, analyses, faces and clusters of a gallery."""
        collection_id = gallery.face_collection_id or collection_id_for_gallery(gallery.id)
        self.face_index.delete_collection(collection_id)

        deleted = self.analysis_repo.delete_for_gallery(gallery.id)
        clusters = self.cluster_repo.delete_for_gallery(gallery.id)
        self.db.commit()

        self.gallery_repo.set_analysis_state(
            gallery.id,
            progress=0,
            ai_search_enabled=False,
            clear_face_collection=True,
        )
        logger.info(f"Reset gallery {gallery.id}: {deleted} analyses and {clusters} clusters removed")
        return deleted

    def recover_stalled(self, gallery_id: str) -> int:
        """Return PROCESSING rows idle longer than the staleness window to PENDING."""
        now = self.clock()
        recovered = self.analysis_repo.bulk_transition(
            gallery_id,
            AnalysisStatus.PROCESSING,
            AnalysisStatus.PENDING,
            now,
            updated_before=now - self.stale_window,
        )
        if recovered:
            logger.warning(f"Recovered {recovered} stalled analyses in gallery {gallery_id}")
        return recovered

    def pending_photo_ids(self, gallery_id: str) -> List[str]:
        return self.analysis_repo.list_pending_photo_ids(gallery_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def process_one(self, photo_id: str) -> Optional[AnalysisStatus]:
        """
        Run one analysis job.

        Returns:
            COMPLETED or FAILED, or None when the job was not claimed (not
            PENDING, or another worker won) or was reclaimed mid-run.

        Raises:
            SQLAlchemyError: store failures are never classified
        """
        if not self.analysis_repo.claim(photo_id, self.clock()):
            logger.debug(f"Analysis of photo {photo_id} not claimed")
            return None

        collection_id: Optional[str] = None
        indexed: Dict[int, IndexedFace] = {}
        try:
            photo = self.gallery_repo.get_photo(photo_id)
            if photo is None:
                raise AnalysisError(f"Photo {photo_id} not found", AnalysisErrorCode.IMAGE_ERROR)

            image_bytes = self.storage.download_file(photo.s3_key)
            image = decode_image(image_bytes)

            detected = self.face_index.detect_faces(image_bytes, min_confidence=self.settings.FACE_MIN_CONFIDENCE)
            self.analysis_repo.touch(photo_id, self.clock())

            description = self.describer.describe(image_bytes, photo.content_type)
            self.analysis_repo.touch(photo_id, self.clock())

            if detected:
                collection_id = self.ensure_collection(photo.gallery_id)
                indexed = self._index_faces(collection_id, image, photo_id, detected)

            faces = fuse_faces(detected, indexed, description.people)
        except SQLAlchemyError:
            raise
        except Exception as e:
            error = to_analysis_error(e)
            self._discard_indexed(collection_id, indexed)
            if self.analysis_repo.mark_failed(photo_id, error.to_message(), self.clock()):
                logger.warning(f"Analysis of photo {photo_id} failed: {error.to_message()}")
                return AnalysisStatus.FAILED
            logger.warning(f"Analysis of photo {photo_id} failed after it was reclaimed: {error}")
            return None

        analysis = self.analysis_repo.mark_completed(
            photo_id,
            description=description.description,
            search_tags=description.search_tags,
            analysis_data=description.analysis_data,
            faces=faces,
            now=self.clock(),
        )
        if analysis is None:
            logger.warning(f"Analysis of photo {photo_id} was reclaimed before completion; result dropped")
            self._discard_indexed(collection_id, indexed)
            return None

        logger.info(f"Analysis of photo {photo_id} completed with {analysis.face_count} faces")

        if collection_id and indexed:
            try:
                self.cluster_engine.incorporate_faces(photo_id, collection_id)
            except SQLAlchemyError:
                # The row is already COMPLETED; reconcile_clusters picks these faces up
                self.db.rollback()
                logger.error(f"Clustering faces of photo {photo_id} failed", exc_info=True)
                raise
        return AnalysisStatus.COMPLETED

    def reconcile_clusters(self, gallery_id: str) -> int:
        """
        Cluster indexed faces that completed photos left unassigned.

        Covers a clustering step that crashed or failed after its job was
        marked COMPLETED, and face searches that failed at the time.

        Returns:
            Number of photos revisited
        """
        gallery = self.gallery_repo.get_or_raise(gallery_id)
        if not gallery.face_collection_id:
            return 0

        photo_ids = self.face_repo.photo_ids_with_unclustered_faces(gallery_id)
        for photo_id in photo_ids:
            self.cluster_engine.incorporate_faces(photo_id, gallery.face_collection_id)

        if photo_ids:
            logger.info(f"Reconciled person clusters for {len(photo_ids)} photos in gallery {gallery_id}")
        return len(photo_ids)

    def ensure_collection(self, gallery_id: str) -> str:
        """The gallery's face collection id, creating the collection on first use."""
        gallery = self.gallery_repo.get_or_raise(gallery_id)
        if gallery.face_collection_id:
            return gallery.face_collection_id

        collection_id = collection_id_for_gallery(gallery_id)
        self.face_index.create_collection(collection_id)
        self.gallery_repo.set_analysis_state(gallery_id, face_collection_id=collection_id)
        return collection_id

    def _index_faces(self, collection_id: str, image, photo_id: str, detected: List[DetectedFace]) -> Dict[int, IndexedFace]:
        indexed: Dict[int, IndexedFace] = {}
        for i, face in enumerate(detected):
            crop = crop_face(
                image,
                face.bounding_box,
                padding=self.settings.FACE_CROP_PADDING,
                min_pixels=self.settings.FACE_MIN_CROP_PIXELS,
            )
            if crop is None:
                continue

            try:
                result = self.face_index.index_face(collection_id, crop, f"{photo_id}_face_{i}")
            except AnalysisError as e:
                logger.warning(f"Failed to index face {i} of photo {photo_id}: {e}")
                continue

            if result is not None:
                indexed[i] = result
        return indexed

    def _discard_indexed(self, collection_id: Optional[str], indexed: Dict[int, IndexedFace]) -> None:
        if not collection_id or not indexed:
            return
        try:
            self.face_index.delete_faces(collection_id, [face.face_id for face in indexed.values()])
        except AnalysisError as e:
            logger.warning(f"Could not remove {len(indexed)} orphaned faces from {collection_id}: {e}")

    # ------------------------------------------------------------------
    # Progress and status
    # ------------------------------------------------------------------

    def compute_progress(self, gallery_id: str) -> int:
        total = self.gallery_repo.photo_count(gallery_id)
        if total == 0:
            return 0

        counts = self.analysis_repo.count_by_status(gallery_id)
        outstanding = counts[AnalysisStatus.PENDING] + counts[AnalysisStatus.PROCESSING]
        if outstanding == 0:
            return 100

        done = counts[AnalysisStatus.COMPLETED] + counts[AnalysisStatus.FAILED]
        return min(int(100 * done / total + 0.5), 99)

    def is_stalled(self, gallery_id: str) -> bool:
        counts = self.analysis_repo.count_by_status(gallery_id)
        if counts[AnalysisStatus.PROCESSING] == 0:
            return False
        last_activity = self.analysis_repo.last_activity(gallery_id)
        return last_activity is not None and last_activity < self.clock() - self.stale_window

    def refresh_progress(self, gallery_id: str) -> int:
        """Persist current progress; a finished, non-empty gallery becomes searchable."""
        progress = self.compute_progress(gallery_id)
        enable_search = True if progress == 100 and self.gallery_repo.photo_count(gallery_id) else None
        self.gallery_repo.set_analysis_state(gallery_id, progress=progress, ai_search_enabled=enable_search)
        return progress

    def get_analysis_status(self, gallery_id: str) -> AnalysisStatusReport:
        gallery = self.gallery_repo.get_or_raise(gallery_id)
        counts = self.analysis_repo.count_by_status(gallery_id)
        return AnalysisStatusReport(
            gallery_id=gallery_id,
            progress=self.compute_progress(gallery_id),
            ai_search_enabled=bool(gallery.ai_search_enabled),
            total_photos=self.gallery_repo.photo_count(gallery_id),
            stats={status.value: count for status, count in counts.items()},
            is_stalled=self.is_stalled(gallery_id),
            last_activity=self.analysis_repo.last_activity(gallery_id),
            last_analysis_triggered_at=gallery.last_analysis_triggered_at,
        )

    def list_failed_analyses(self, gallery_id: str) -> List[FailedAnalysis]:
        self.gallery_repo.get_or_raise(gallery_id)
        failed = []
        for analysis in self.analysis_repo.list_by_status(gallery_id, AnalysisStatus.FAILED):
            code = analysis.error_code
            failed.append(FailedAnalysis(
                photo_id=analysis.photo_id,
                error_message=analysis.error_message,
                error_code=code,
                retryable=bool(code and code.retryable),
                retry_count=analysis.retry_count,
                updated_at=analysis.updated_at,
            ))
        return failed

    def toggle_ai_search(self, gallery_id: str, enabled: bool) -> Gallery:
        gallery = self.gallery_repo.set_analysis_state(gallery_id, ai_search_enabled=bool(enabled))
        logger.info(f"AI search {'enabled' if enabled else 'disabled'} for gallery {gallery_id}")
        return gallery

    # ------------------------------------------------------------------
    # Lifecycle edges
    # ------------------------------------------------------------------

    def remove_photo_analysis(self, photo_id: str) -> bool:
        """Forget a photo: its indexed faces, its analysis, and its cluster memberships."""
        analysis = self.analysis_repo.get(photo_id)
        if analysis is None:
            return False

        gallery = self.gallery_repo.get(analysis.gallery_id)
        external_ids = self.face_repo.external_ids_for_photo(photo_id)
        cluster_ids = set(self.face_repo.cluster_ids_for_photo(photo_id))

        if gallery is not None and gallery.face_collection_id and external_ids:
            try:
                self.face_index.delete_faces(gallery.face_collection_id, external_ids)
            except AnalysisError as e:
                logger.warning(f"Could not remove indexed faces of photo {photo_id}: {e}")

        self.analysis_repo.delete_for_photo(photo_id)
        self.cluster_engine.resync_clusters(cluster_ids)
        logger.info(f"Removed analysis of photo {photo_id} ({len(cluster_ids)} clusters updated)")
        return True

    # ------------------------------------------------------------------
    # Person clusters
    # ------------------------------------------------------------------

    def rename_cluster(self, cluster_id: str, name: Optional[str]) -> PersonCluster:
        return self.cluster_repo.rename(cluster_id, name)

    def list_clusters(self, gallery_id: str) -> List[PersonCluster]:
        """Clusters of a gallery, most photographed first."""
        self.gallery_repo.get_or_raise(gallery_id)
        clusters = self.cluster_repo.list_by_gallery(gallery_id)
        return sorted(clusters, key=lambda c: -c.photo_count)
