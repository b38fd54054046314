"""Person cluster repository for database operations."""
from typing import Iterable, List, Optional
import logging

from sqlalchemy.orm import Session

from src.core.errors import ClusterNotFoundError
from src.models.person_cluster import PersonCluster
from src.models.person_face import PersonFace
from .base import BaseRepository

logger = logging.getLogger(__name__)


class PersonClusterRepository(BaseRepository[PersonCluster]):
    """Repository for person cluster operations."""

    def __init__(self, db: Session):
        super().__init__(PersonCluster, db)

    def get_or_raise(self, cluster_id: str) -> PersonCluster:
        cluster = self.get(cluster_id)
        if not cluster:
            raise ClusterNotFoundError(cluster_id)
        return cluster

    def lock(self, cluster_ids: Iterable[str]) -> List[PersonCluster]:
        """Row-lock clusters for a read-modify-write, in id order to avoid deadlocks."""
        cluster_ids = sorted(set(cid for cid in cluster_ids if cid))
        if not cluster_ids:
            return []
        return (
            self.db.query(PersonCluster)
            .filter(PersonCluster.id.in_(cluster_ids))
            .order_by(PersonCluster.id.asc())
            .with_for_update()
            .all()
        )

    def list_by_gallery(self, gallery_id: str) -> List[PersonCluster]:
        return (
            self.db.query(PersonCluster)
            .filter(PersonCluster.gallery_id == gallery_id)
            .order_by(PersonCluster.created_at.asc(), PersonCluster.id.asc())
            .all()
        )

    def create_seeded(
        self,
        gallery_id: str,
        role: Optional[str],
        appearance: Optional[str],
    ) -> PersonCluster:
        """Create a cluster seeded from a face's attributes (flush only)."""
        cluster = PersonCluster(
            gallery_id=gallery_id,
            name=None,
            role=role,
            description=appearance or None,
            face_description=appearance or None,
            photo_ids=[],
        )
        self.db.add(cluster)
        self.db.flush()
        return cluster

    def sync_photo_ids(self, cluster: PersonCluster) -> List[str]:
        """Re-derive ``photo_ids`` from face assignments (flush only)."""
        self.db.flush()
        rows = (
            self.db.query(PersonFace.photo_id)
            .filter(PersonFace.person_cluster_id == cluster.id)
            .distinct()
            .all()
        )
        cluster.photo_ids = sorted(row[0] for row in rows)
        self.db.flush()
        return cluster.photo_ids

    def rename(self, cluster_id: str, name: Optional[str]) -> PersonCluster:
        cluster = self.get_or_raise(cluster_id)
        name = (name or '').strip()
        cluster.name = name or None
        self.db.commit()
        self.db.refresh(cluster)
        logger.info(f"Renamed person cluster {cluster_id} to {cluster.name!r}")
        return cluster

    def delete_for_gallery(self, gallery_id: str) -> int:
        """Delete every cluster of a gallery without committing."""
        deleted = (
            self.db.query(PersonCluster)
            .filter(PersonCluster.gallery_id == gallery_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted
