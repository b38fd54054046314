"""
Person Clustering
=================

Incremental, gallery-scoped person identities built from face-similarity
search.

Each newly indexed face either joins the best-matching existing cluster or
seeds a new one, pulling every matching but still unassigned face into it.
The retroactive pull is what makes the result independent of the order in
which photos finish analysis.
"""

from collections import defaultdict
from typing import Dict, List, Optional, Set
import logging

from sqlalchemy.orm import Session

from src.models.person_cluster import PersonCluster
from src.models.person_face import PersonFace
from src.repositories.cluster_repo import PersonClusterRepository
from src.repositories.face_repo import FaceRepository
from src.services.analysis.errors import AnalysisError
from src.services.face.face_index import (
    DEFAULT_MAX_RESULTS,
    DEFAULT_SIMILARITY_THRESHOLD,
    FaceIndex,
    FaceMatch,
)

logger = logging.getLogger(__name__)


class PersonClusterEngine:
    """
    Assigns faces to person clusters.

    Args:
        db: Database session
        face_index: Face-similarity index holding the gallery's collection
        similarity_threshold: Minimum similarity (0-100) for a match
        max_results: Cap on matches per search
    """

    def __init__(
        self,
        db: Session,
        face_index: FaceIndex,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_results: int = DEFAULT_MAX_RESULTS,
    ):
        self.db = db
        self.face_index = face_index
        self.similarity_threshold = similarity_threshold
        self.max_results = max_results
        self.face_repo = FaceRepository(db)
        self.cluster_repo = PersonClusterRepository(db)

    def incorporate_faces(self, photo_id: str, collection_id: str) -> List[str]:
        """
        Cluster every indexed, still unassigned face of a photo.

        Faces without an external id are identity-unknown and skipped. A
        face-index failure leaves that face unclustered.

        Returns:
            Ids of clusters that gained faces
        """
        touched: List[str] = []
        for face in self.face_repo.list_for_photo(photo_id):
            # May have been pulled in retroactively by an earlier face
            self.db.refresh(face, ['person_cluster_id'])
            if not face.external_face_id or face.person_cluster_id:
                continue

            try:
                matches = self.face_index.search_faces_by_id(
                    collection_id,
                    face.external_face_id,
                    similarity_threshold=self.similarity_threshold,
                    max_results=self.max_results,
                )
            except AnalysisError as e:
                logger.warning(f"Face search failed for {photo_id}/{face.face_id}, leaving unclustered: {e}")
                continue

            cluster_id = self._assign(face, matches)
            if cluster_id and cluster_id not in touched:
                touched.append(cluster_id)

        return touched

    def _assign(self, face: PersonFace, matches: List[FaceMatch]) -> Optional[str]:
        mapped = self.face_repo.map_external_ids(face.gallery_id, [m.face_id for m in matches])

        best_by_cluster: Dict[str, float] = defaultdict(float)
        unassigned: List[PersonFace] = []
        for match in matches:
            matched_face = mapped.get(match.face_id)
            if matched_face is None or matched_face.id == face.id:
                # Indexed by an attempt that never completed
                continue
            if matched_face.person_cluster_id:
                cid = matched_face.person_cluster_id
                best_by_cluster[cid] = max(best_by_cluster[cid], match.similarity)
            else:
                unassigned.append(matched_face)

        if best_by_cluster:
            return self._join(face, best_by_cluster, unassigned)
        return self._seed(face, unassigned)

    def _join(self, face: PersonFace, best_by_cluster: Dict[str, float], unassigned: List[PersonFace]) -> Optional[str]:
        clusters = self.cluster_repo.lock(best_by_cluster.keys())
        if not clusters:
            self.db.rollback()
            return None

        cluster = min(
            clusters,
            key=lambda c: (-best_by_cluster[c.id], c.created_at, c.id),
        )

        if not self.face_repo.assign_cluster([face.id], cluster.id):
            self.db.rollback()
            return None
        self.face_repo.assign_cluster([f.id for f in unassigned], cluster.id)
        self._fill_defaults(cluster, face)
        self.cluster_repo.sync_photo_ids(cluster)
        self.db.commit()

        logger.info(f"Face {face.photo_id}/{face.face_id} joined person cluster {cluster.id}")
        return cluster.id

    def _seed(self, face: PersonFace, unassigned: List[PersonFace]) -> Optional[str]:
        cluster = self.cluster_repo.create_seeded(face.gallery_id, face.role, face.appearance)

        if not self.face_repo.assign_cluster([face.id], cluster.id):
            # Another worker clustered this face first
            self.db.rollback()
            return None
        pulled = self.face_repo.assign_cluster([f.id for f in unassigned], cluster.id)
        self.cluster_repo.sync_photo_ids(cluster)
        self.db.commit()

        logger.info(
            f"Seeded person cluster {cluster.id} from {face.photo_id}/{face.face_id} "
            f"with {pulled} retroactive matches"
        )
        return cluster.id

    @staticmethod
    def _fill_defaults(cluster: PersonCluster, face: PersonFace) -> None:
        """Fill empty inferred fields from a joining face; ``name`` is never touched."""
        if not cluster.role and face.role:
            cluster.role = face.role
        if not cluster.description and face.appearance:
            cluster.description = face.appearance
        if not cluster.face_description and face.appearance:
            cluster.face_description = face.appearance

    def resync_clusters(self, cluster_ids: Set[str]) -> None:
        """Re-derive ``photo_ids`` of the given clusters and commit."""
        for cluster in self.cluster_repo.lock(cluster_ids):
            self.cluster_repo.sync_photo_ids(cluster)
        self.db.commit()
