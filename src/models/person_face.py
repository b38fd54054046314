"""Person face model."""
from sqlalchemy import Column, String, Integer, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship

from src.db.base import Base
from .base import generate_id


class PersonFace(Base):
    """
    A face detected in an analyzed photo.

    This table is the source of truth for face -> cluster assignment and,
    through ``external_face_id``, the reverse index from the face-similarity
    collection back to (photo_id, face_id).
    """

    __tablename__ = 'person_faces'
    __table_args__ = (
        UniqueConstraint('photo_id', 'face_id', name='uq_person_faces_photo_face'),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    photo_id = Column(String(36), ForeignKey('photo_analyses.photo_id', ondelete='CASCADE'), nullable=False, index=True)
    gallery_id = Column(String(36), ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False, index=True)

    # Locally unique within the photo (face_1, face_2, ...)
    face_id = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    # Id inside the face-similarity collection; null when indexing failed
    external_face_id = Column(String(128), nullable=True, unique=True, index=True)

    # Normalized {x, y, width, height} in [0, 1]
    bounding_box = Column(JSON, nullable=False)

    # Described attributes
    appearance = Column(String(1000), nullable=False, default='')
    role = Column(String(100), nullable=True)
    expression = Column(String(100), nullable=True)
    age_range = Column(String(100), nullable=True)

    person_cluster_id = Column(String(36), ForeignKey('person_clusters.id', ondelete='SET NULL'), nullable=True, index=True)

    # Relationships
    analysis = relationship('PhotoAnalysis', back_populates='faces')
    cluster = relationship('PersonCluster', back_populates='faces')

    def __repr__(self) -> str:
        return f'<PersonFace(photo_id={self.photo_id}, face_id={self.face_id}, cluster={self.person_cluster_id})>'
