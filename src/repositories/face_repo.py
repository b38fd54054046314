"""Person face repository."""
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from src.models.enums import AnalysisStatus
from src.models.person_face import PersonFace
from src.models.photo import Photo
from src.models.photo_analysis import PhotoAnalysis
from .base import BaseRepository


class FaceRepository(BaseRepository[PersonFace]):
    """Face rows and the external-id reverse index."""

    def __init__(self, db: Session):
        super().__init__(PersonFace, db)

    def get_face(self, photo_id: str, face_id: str) -> Optional[PersonFace]:
        return (
            self.db.query(PersonFace)
            .filter(PersonFace.photo_id == photo_id, PersonFace.face_id == face_id)
            .first()
        )

    def list_for_photo(self, photo_id: str) -> List[PersonFace]:
        return (
            self.db.query(PersonFace)
            .filter(PersonFace.photo_id == photo_id)
            .order_by(PersonFace.position.asc())
            .all()
        )

    def map_external_ids(self, gallery_id: str, external_face_ids: Iterable[str]) -> Dict[str, PersonFace]:
        """Reverse index lookup: external face id -> face row, scoped to a gallery."""
        external_face_ids = [fid for fid in external_face_ids if fid]
        if not external_face_ids:
            return {}

        faces = (
            self.db.query(PersonFace)
            .filter(
                PersonFace.gallery_id == gallery_id,
                PersonFace.external_face_id.in_(external_face_ids),
            )
            .all()
        )
        return {face.external_face_id: face for face in faces}

    def cluster_ids_for_photo(self, photo_id: str) -> List[str]:
        rows = (
            self.db.query(PersonFace.person_cluster_id)
            .filter(PersonFace.photo_id == photo_id, PersonFace.person_cluster_id.isnot(None))
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    def photo_ids_with_role(self, gallery_id: str, role: str) -> List[str]:
        """Completed, face-bearing photos containing a face with exactly this role."""
        rows = (
            self.db.query(PersonFace.photo_id, Photo.sort_order, Photo.created_at)
            .join(PhotoAnalysis, PhotoAnalysis.photo_id == PersonFace.photo_id)
            .join(Photo, Photo.id == PersonFace.photo_id)
            .filter(
                PersonFace.gallery_id == gallery_id,
                PersonFace.role == role,
                PhotoAnalysis.status == AnalysisStatus.COMPLETED,
                PhotoAnalysis.face_count > 0,
            )
            .distinct()
            .order_by(Photo.sort_order.asc(), Photo.created_at.asc())
            .all()
        )
        return [row[0] for row in rows]

    def assign_cluster(self, face_ids: Iterable[str], cluster_id: str) -> int:
        """
        Point unassigned faces at a cluster (no commit).

        Faces already carrying a cluster are left alone, so two workers racing
        to claim the same face cannot overwrite each other.
        """
        face_ids = list(face_ids)
        if not face_ids:
            return 0
        return (
            self.db.query(PersonFace)
            .filter(PersonFace.id.in_(face_ids), PersonFace.person_cluster_id.is_(None))
            .update({PersonFace.person_cluster_id: cluster_id}, synchronize_session='fetch')
        )

    def external_ids_for_photo(self, photo_id: str) -> List[str]:
        rows = (
            self.db.query(PersonFace.external_face_id)
            .filter(PersonFace.photo_id == photo_id, PersonFace.external_face_id.isnot(None))
            .all()
        )
        return [row[0] for row in rows]

    def photo_ids_with_unclustered_faces(self, gallery_id: str) -> List[str]:
        """Completed photos holding indexed faces that no cluster has claimed."""
        rows = (
            self.db.query(PersonFace.photo_id)
            .join(PhotoAnalysis, PhotoAnalysis.photo_id == PersonFace.photo_id)
            .filter(
                PersonFace.gallery_id == gallery_id,
                PersonFace.external_face_id.isnot(None),
                PersonFace.person_cluster_id.is_(None),
                PhotoAnalysis.status == AnalysisStatus.COMPLETED,
            )
            .distinct()
            .order_by(PersonFace.photo_id.asc())
            .all()
        )
        return [row[0] for row in rows]
