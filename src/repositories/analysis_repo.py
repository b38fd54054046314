"""
Analysis Job Store
==================

Persisted state of the per-photo analysis jobs.

Every status change is a single-row compare-and-set: the UPDATE carries the
expected current status in its WHERE clause and the caller inspects the
affected row count. Ordering across rows is the orchestrator's concern.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from src.models.enums import AnalysisStatus
from src.models.photo import Photo
from src.models.photo_analysis import PhotoAnalysis
from src.models.person_face import PersonFace
from .base import BaseRepository

logger = logging.getLogger(__name__)


class AnalysisRepository(BaseRepository[PhotoAnalysis]):
    """Repository for photo analysis records."""

    def __init__(self, db: Session):
        super().__init__(PhotoAnalysis, db)

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def seed_pending(self, gallery_id: str, photo_ids: Iterable[str], now: datetime) -> int:
        """Create PENDING records for photos that have none. Returns rows created."""
        photo_ids = list(dict.fromkeys(photo_ids))
        if not photo_ids:
            return 0

        existing = {
            row[0]
            for row in self.db.query(PhotoAnalysis.photo_id)
            .filter(PhotoAnalysis.photo_id.in_(photo_ids))
            .all()
        }

        created = 0
        for photo_id in photo_ids:
            if photo_id in existing:
                continue
            self.db.add(PhotoAnalysis(
                photo_id=photo_id,
                gallery_id=gallery_id,
                status=AnalysisStatus.PENDING,
                search_tags=[],
                face_count=0,
                retry_count=0,
                updated_at=now,
            ))
            created += 1

        self.db.commit()
        return created

    # ------------------------------------------------------------------
    # Single-record transitions
    # ------------------------------------------------------------------

    def compare_and_set(
        self,
        photo_id: str,
        expected: AnalysisStatus,
        values: Dict[str, Any],
    ) -> bool:
        """Apply ``values`` only if the record is currently in ``expected``."""
        updated = (
            self.db.query(PhotoAnalysis)
            .filter(PhotoAnalysis.photo_id == photo_id, PhotoAnalysis.status == expected)
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        return updated == 1

    def claim(self, photo_id: str, now: datetime) -> bool:
        """PENDING -> PROCESSING. False when another worker got there first."""
        return self.compare_and_set(
            photo_id,
            AnalysisStatus.PENDING,
            {
                PhotoAnalysis.status: AnalysisStatus.PROCESSING,
                PhotoAnalysis.error_message: None,
                PhotoAnalysis.updated_at: now,
            },
        )

    def touch(self, photo_id: str, now: datetime) -> bool:
        """Heartbeat for a PROCESSING record so it is not reclaimed as stalled."""
        return self.compare_and_set(
            photo_id,
            AnalysisStatus.PROCESSING,
            {PhotoAnalysis.updated_at: now},
        )

    def mark_completed(
        self,
        photo_id: str,
        description: Optional[str],
        search_tags: Sequence[str],
        analysis_data: Optional[Dict[str, Any]],
        faces: Sequence[Dict[str, Any]],
        now: datetime,
    ) -> Optional[PhotoAnalysis]:
        """
        PROCESSING -> COMPLETED, replacing the photo's faces in the same transaction.

        Returns the refreshed record, or None if the record was no longer
        PROCESSING (reclaimed by stall recovery or reset by a re-analyze).
        """
        analysis = (
            self.db.query(PhotoAnalysis)
            .filter(PhotoAnalysis.photo_id == photo_id)
            .with_for_update()
            .first()
        )
        if analysis is None or analysis.status != AnalysisStatus.PROCESSING:
            self.db.rollback()
            return None

        self.db.query(PersonFace).filter(PersonFace.photo_id == photo_id).delete(synchronize_session=False)
        self.db.flush()
        self.db.expire(analysis, ['faces'])

        for position, face in enumerate(faces):
            self.db.add(PersonFace(
                photo_id=photo_id,
                gallery_id=analysis.gallery_id,
                position=position,
                face_id=face['face_id'],
                external_face_id=face.get('external_face_id'),
                bounding_box=face['bounding_box'],
                appearance=face.get('appearance') or '',
                role=face.get('role'),
                expression=face.get('expression'),
                age_range=face.get('age_range'),
            ))

        analysis.status = AnalysisStatus.COMPLETED
        analysis.description = description
        analysis.search_tags = list(search_tags)
        analysis.analysis_data = analysis_data
        analysis.face_count = len(faces)
        analysis.error_message = None
        analysis.analyzed_at = now
        analysis.updated_at = now

        self.db.commit()
        self.db.refresh(analysis)
        return analysis

    def mark_failed(self, photo_id: str, error_message: str, now: datetime) -> bool:
        """PROCESSING -> FAILED with a prefixed error message; bumps retry_count."""
        return self.compare_and_set(
            photo_id,
            AnalysisStatus.PROCESSING,
            {
                PhotoAnalysis.status: AnalysisStatus.FAILED,
                PhotoAnalysis.error_message: error_message,
                PhotoAnalysis.retry_count: PhotoAnalysis.retry_count + 1,
                PhotoAnalysis.updated_at: now,
            },
        )

    # ------------------------------------------------------------------
    # Bulk transitions
    # ------------------------------------------------------------------

    def bulk_transition(
        self,
        gallery_id: str,
        from_status: AnalysisStatus,
        to_status: AnalysisStatus,
        now: datetime,
        error_prefixes: Optional[Sequence[str]] = None,
        updated_before: Optional[datetime] = None,
        clear_error: bool = False,
        reset_retry_count: bool = False,
    ) -> int:
        """
        Move every matching record of a gallery from one status to another.

        Args:
            gallery_id: Gallery to scope the update to
            from_status: Current status to match
            to_status: Status to write
            now: Timestamp written to updated_at
            error_prefixes: Only rows whose error_message starts with one of these
            updated_before: Only rows whose updated_at is older than this
            clear_error: Null out error_message
            reset_retry_count: Reset retry_count to zero

        Returns:
            Number of rows transitioned
        """
        query = self.db.query(PhotoAnalysis).filter(
            PhotoAnalysis.gallery_id == gallery_id,
            PhotoAnalysis.status == from_status,
        )

        if error_prefixes is not None:
            if not error_prefixes:
                return 0
            query = query.filter(or_(*[
                PhotoAnalysis.error_message.startswith(prefix, autoescape=True)
                for prefix in error_prefixes
            ]))

        if updated_before is not None:
            query = query.filter(PhotoAnalysis.updated_at < updated_before)

        values: Dict[Any, Any] = {
            PhotoAnalysis.status: to_status,
            PhotoAnalysis.updated_at: now,
        }
        if clear_error:
            values[PhotoAnalysis.error_message] = None
        if reset_retry_count:
            values[PhotoAnalysis.retry_count] = 0

        updated = query.update(values, synchronize_session=False)
        self.db.commit()
        return updated

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def count_by_status(self, gallery_id: str) -> Dict[AnalysisStatus, int]:
        """Count of records per status; every status is present."""
        rows = (
            self.db.query(PhotoAnalysis.status, func.count(PhotoAnalysis.photo_id))
            .filter(PhotoAnalysis.gallery_id == gallery_id)
            .group_by(PhotoAnalysis.status)
            .all()
        )
        counts = {status: 0 for status in AnalysisStatus}
        for status, count in rows:
            counts[AnalysisStatus(status)] = count
        return counts

    def last_activity(self, gallery_id: str) -> Optional[datetime]:
        """Most recent updated_at across the gallery's records."""
        return (
            self.db.query(func.max(PhotoAnalysis.updated_at))
            .filter(PhotoAnalysis.gallery_id == gallery_id)
            .scalar()
        )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_by_status(self, gallery_id: str, status: AnalysisStatus) -> List[PhotoAnalysis]:
        return (
            self.db.query(PhotoAnalysis)
            .filter(PhotoAnalysis.gallery_id == gallery_id, PhotoAnalysis.status == status)
            .order_by(PhotoAnalysis.updated_at.desc())
            .all()
        )

    def list_pending_photo_ids(self, gallery_id: str) -> List[str]:
        rows = (
            self.db.query(PhotoAnalysis.photo_id)
            .filter(
                PhotoAnalysis.gallery_id == gallery_id,
                PhotoAnalysis.status == AnalysisStatus.PENDING,
            )
            .all()
        )
        return [row[0] for row in rows]

    def list_completed(self, gallery_id: str, with_faces_only: bool = False) -> List[PhotoAnalysis]:
        query = (
            self.db.query(PhotoAnalysis)
            .join(Photo, Photo.id == PhotoAnalysis.photo_id)
            .filter(
                PhotoAnalysis.gallery_id == gallery_id,
                PhotoAnalysis.status == AnalysisStatus.COMPLETED,
            )
        )
        if with_faces_only:
            query = query.filter(PhotoAnalysis.face_count > 0)
        return query.order_by(Photo.sort_order.asc(), Photo.created_at.asc()).all()

    def list_search_tags(self, gallery_id: str) -> List[Tuple[str, List[str]]]:
        """(photo_id, search_tags) of completed analyses in display order."""
        rows = (
            self.db.query(PhotoAnalysis.photo_id, PhotoAnalysis.search_tags)
            .join(Photo, Photo.id == PhotoAnalysis.photo_id)
            .filter(
                PhotoAnalysis.gallery_id == gallery_id,
                PhotoAnalysis.status == AnalysisStatus.COMPLETED,
            )
            .order_by(Photo.sort_order.asc(), Photo.created_at.asc())
            .all()
        )
        return [(photo_id, list(tags or [])) for photo_id, tags in rows]

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_for_gallery(self, gallery_id: str) -> int:
        """Delete every analysis (and its faces) of a gallery without committing."""
        self.db.query(PersonFace).filter(PersonFace.gallery_id == gallery_id).delete(synchronize_session=False)
        deleted = (
            self.db.query(PhotoAnalysis)
            .filter(PhotoAnalysis.gallery_id == gallery_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted

    def delete_for_photo(self, photo_id: str) -> bool:
        """Delete one analysis (and its faces) without committing."""
        self.db.query(PersonFace).filter(PersonFace.photo_id == photo_id).delete(synchronize_session=False)
        deleted = (
            self.db.query(PhotoAnalysis)
            .filter(PhotoAnalysis.photo_id == photo_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted == 1
