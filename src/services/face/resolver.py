"""
Find-person resolution.

Given one face in a photo, return every photo of the same person, trying
cluster membership, then a live similarity search, then a role heuristic.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from src.core.errors import FaceNotFoundError
from src.models.enums import ResolutionMethod
from src.models.person_face import PersonFace
from src.repositories.cluster_repo import PersonClusterRepository
from src.repositories.face_repo import FaceRepository
from src.repositories.gallery_repo import GalleryRepository
from src.services.analysis.errors import AnalysisError
from src.services.face.face_index import DEFAULT_MAX_RESULTS, DEFAULT_SIMILARITY_THRESHOLD, FaceIndex

logger = logging.getLogger(__name__)


@dataclass
class PersonMatch:
    """Photos depicting one person and how they were found."""
    photo_ids: List[str]
    method: ResolutionMethod
    cluster_id: Optional[str] = None
    person_name: Optional[str] = None
    person_description: Optional[str] = None
    person_role: Optional[str] = None
    similarities: dict = field(default_factory=dict)


def _ordered_unique(photo_ids: List[str], first: str) -> List[str]:
    return list(dict.fromkeys([first] + [pid for pid in photo_ids if pid]))


class PersonResolver:
    """Resolves a face to the set of photos containing the same person."""

    def __init__(
        self,
        db: Session,
        face_index: Optional[FaceIndex],
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_results: int = DEFAULT_MAX_RESULTS,
    ):
        self.face_index = face_index
        self.similarity_threshold = similarity_threshold
        self.max_results = max_results
        self.gallery_repo = GalleryRepository(db)
        self.face_repo = FaceRepository(db)
        self.cluster_repo = PersonClusterRepository(db)

    def find_person(self, gallery_id: str, photo_id: str, face_id: str) -> PersonMatch:
        """
        Photos containing the person behind ``face_id`` in ``photo_id``.

        The query photo is always part of the result.

        Raises:
            GalleryNotFoundError: Unknown gallery
            FaceNotFoundError: No such face in that photo of the gallery
        """
        gallery = self.gallery_repo.get_or_raise(gallery_id)

        face = self.face_repo.get_face(photo_id, face_id)
        if face is None or face.gallery_id != gallery_id:
            raise FaceNotFoundError(f"{photo_id}/{face_id}")

        match = self._by_cluster(face)
        if match is None:
            match = self._by_similarity(face, gallery.face_collection_id)
        if match is None:
            match = self._by_role(face)

        logger.debug(
            f"find-person {photo_id}/{face_id} resolved by {match.method.value}: {len(match.photo_ids)} photos"
        )
        return match

    def _by_cluster(self, face: PersonFace) -> Optional[PersonMatch]:
        if not face.person_cluster_id:
            return None
        cluster = self.cluster_repo.get(face.person_cluster_id)
        if cluster is None or not cluster.photo_ids:
            return None

        return PersonMatch(
            photo_ids=_ordered_unique(list(cluster.photo_ids), face.photo_id),
            method=ResolutionMethod.cluster,
            cluster_id=cluster.id,
            person_name=cluster.name,
            person_description=cluster.description,
            person_role=cluster.role,
        )

    def _by_similarity(self, face: PersonFace, collection_id: Optional[str]) -> Optional[PersonMatch]:
        if not face.external_face_id or not collection_id or self.face_index is None:
            return None

        try:
            matches = self.face_index.search_faces_by_id(
                collection_id,
                face.external_face_id,
                similarity_threshold=self.similarity_threshold,
                max_results=self.max_results,
            )
        except AnalysisError as e:
            logger.warning(f"Live face search failed for {face.photo_id}/{face.face_id}: {e}")
            return None

        mapped = self.face_repo.map_external_ids(face.gallery_id, [m.face_id for m in matches])
        similarities = {}
        for m in sorted(matches, key=lambda m: m.similarity, reverse=True):
            matched = mapped.get(m.face_id)
            if matched is not None and matched.photo_id not in similarities:
                similarities[matched.photo_id] = m.similarity

        # A completed search is an answer even when nobody else matched
        return PersonMatch(
            photo_ids=_ordered_unique(list(similarities), face.photo_id),
            method=ResolutionMethod.rekognition,
            person_description=face.appearance or None,
            person_role=face.role,
            similarities=similarities,
        )

    def _by_role(self, face: PersonFace) -> PersonMatch:
        photo_ids = [face.photo_id]
        if face.role:
            photo_ids = _ordered_unique(
                self.face_repo.photo_ids_with_role(face.gallery_id, face.role),
                face.photo_id,
            )

        return PersonMatch(
            photo_ids=photo_ids,
            method=ResolutionMethod.role_fallback,
            person_description=face.appearance or None,
            person_role=face.role,
        )
