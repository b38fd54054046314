"""Person cluster model."""
from sqlalchemy import Column, String, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship

from src.db.base import Base
from .base import TimestampMixin, generate_id


class PersonCluster(Base, TimestampMixin):
    """
    A gallery-scoped identity grouping faces of the same person.

    ``photo_ids`` is derived from ``person_faces.person_cluster_id`` and is
    rewritten in the same transaction as any assignment change.
    A non-empty ``name`` is user-owned and never written by clustering.
    """

    __tablename__ = 'person_clusters'

    id = Column(String(36), primary_key=True, default=generate_id, index=True)
    gallery_id = Column(String(36), ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False, index=True)

    name = Column(String(255), nullable=True)
    role = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    face_description = Column(Text, nullable=True)

    photo_ids = Column(JSON, nullable=False, default=list)

    # Relationships
    faces = relationship('PersonFace', back_populates='cluster')

    @property
    def photo_count(self) -> int:
        return len(self.photo_ids or [])

    def __repr__(self) -> str:
        return f'<PersonCluster(id={self.id}, name={self.name}, photos={self.photo_count})>'
