"""Photo analysis job model."""
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, Integer, ForeignKey, Enum as SQLEnum, Text, DateTime, JSON
from sqlalchemy.orm import relationship

from src.db.base import Base
from .enums import AnalysisStatus, AnalysisErrorCode


class PhotoAnalysis(Base):
    """
    One analysis record per photo.

    Invariants:
    - status COMPLETED implies analyzed_at is set
    - status FAILED implies error_message starts with a bracketed code
    - face_count == len(faces)
    """

    __tablename__ = 'photo_analyses'

    photo_id = Column(String(36), ForeignKey('photos.id', ondelete='CASCADE'), primary_key=True)
    gallery_id = Column(String(36), ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False, index=True)

    status = Column(SQLEnum(AnalysisStatus), nullable=False, default=AnalysisStatus.PENDING, index=True)

    # Model output
    description = Column(Text, nullable=True)
    search_tags = Column(JSON, nullable=False, default=list)
    analysis_data = Column(JSON, nullable=True)
    face_count = Column(Integer, nullable=False, default=0)

    # Failure bookkeeping
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)

    analyzed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    photo = relationship('Photo', back_populates='analysis')
    faces = relationship(
        'PersonFace',
        back_populates='analysis',
        order_by='PersonFace.position',
        cascade='all, delete-orphan',
    )

    @property
    def error_code(self) -> Optional[AnalysisErrorCode]:
        """Error code parsed from the bracketed message prefix, if any."""
        return AnalysisErrorCode.from_message(self.error_message)

    def __repr__(self) -> str:
        return f'<PhotoAnalysis(photo_id={self.photo_id}, status={self.status})>'
