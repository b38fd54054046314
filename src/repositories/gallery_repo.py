"""Gallery and photo repository for the analysis pipeline."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from src.core.errors import GalleryNotFoundError
from src.models.gallery import Gallery
from src.models.photo import Photo
from src.models.photo_analysis import PhotoAnalysis
from .base import BaseRepository


class GalleryRepository(BaseRepository[Gallery]):
    """Reads photos of a gallery and owns the gallery's analysis fields."""

    def __init__(self, db: Session):
        super().__init__(Gallery, db)

    def get_or_raise(self, gallery_id: str) -> Gallery:
        gallery = self.get(gallery_id)
        if not gallery:
            raise GalleryNotFoundError(gallery_id)
        return gallery

    def get_photo(self, photo_id: str) -> Optional[Photo]:
        return self.db.get(Photo, photo_id)

    def photo_count(self, gallery_id: str) -> int:
        return self.db.query(Photo).filter(Photo.gallery_id == gallery_id).count()

    def list_unanalyzed_photo_ids(self, gallery_id: str) -> List[str]:
        """Photos of the gallery that have no analysis record yet."""
        rows = (
            self.db.query(Photo.id)
            .outerjoin(PhotoAnalysis, PhotoAnalysis.photo_id == Photo.id)
            .filter(Photo.gallery_id == gallery_id, PhotoAnalysis.photo_id.is_(None))
            .order_by(Photo.sort_order.asc(), Photo.created_at.asc())
            .all()
        )
        return [row[0] for row in rows]

    def set_analysis_state(
        self,
        gallery_id: str,
        progress: Optional[int] = None,
        ai_search_enabled: Optional[bool] = None,
        face_collection_id: Optional[str] = None,
        clear_face_collection: bool = False,
        triggered_at: Optional[datetime] = None,
    ) -> Gallery:
        """Update the analysis-owned columns of a gallery and commit."""
        gallery = self.get_or_raise(gallery_id)

        if progress is not None:
            gallery.analysis_progress = max(0, min(100, int(progress)))
        if ai_search_enabled is not None:
            gallery.ai_search_enabled = ai_search_enabled
        if clear_face_collection:
            gallery.face_collection_id = None
        elif face_collection_id is not None:
            gallery.face_collection_id = face_collection_id
        if triggered_at is not None:
            gallery.last_analysis_triggered_at = triggered_at

        self.db.commit()
        return gallery
