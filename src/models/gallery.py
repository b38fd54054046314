"""Gallery model (analysis-owned fields only)."""
from sqlalchemy import Column, String, Integer, Boolean, DateTime
from sqlalchemy.orm import relationship

from src.db.base import Base
from .base import TimestampMixin, generate_id


class Gallery(Base, TimestampMixin):
    """
    Client gallery.

    The CRM layer owns the rest of the gallery record; the columns here are
    the analysis state this package reads and writes.
    """

    __tablename__ = 'galleries'

    id = Column(String(36), primary_key=True, default=generate_id, index=True)
    title = Column(String(255), nullable=False, default='Untitled gallery')

    # Analysis state
    analysis_progress = Column(Integer, nullable=False, default=0)
    ai_search_enabled = Column(Boolean, nullable=False, default=False)
    face_collection_id = Column(String(255), nullable=True)
    last_analysis_triggered_at = Column(DateTime, nullable=True)

    # Relationships
    photos = relationship('Photo', back_populates='gallery', cascade='all, delete-orphan')

    def __repr__(self) -> str:
        return f'<Gallery(id={self.id}, progress={self.analysis_progress})>'
