"""Shared test configuration: in-memory database and pipeline fixtures."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.app.config import Settings
from src.db.base import Base
from src.models import Gallery, Photo
from tests.fakes import FakeClock, FakeDescriber, FakeFaceIndex, FakeStorage, PipelineHarness

# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def db_session():
    """Create test database session."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autoflush=False)
    session = Session()
    yield session
    session.close()
    Base.metadata.drop_all(engine)
    engine.dispose()

@pytest.fixture
def make_gallery(db_session):
    """Factory: gallery with ``n_photos`` photos in display order."""
    def _make(n_photos: int = 0, **fields):
        gallery = Gallery(title=fields.pop("title", "Smith Wedding"), **fields)
        db_session.add(gallery)
        db_session.flush()

        photos = []
        for i in range(n_photos):
            photo = Photo(
                gallery_id=gallery.id,
                s3_key=f"galleries/{gallery.id}/photo_{i}.jpg",
                content_type="image/jpeg",
                sort_order=i,
            )
            db_session.add(photo)
            photos.append(photo)
        db_session.commit()
        return gallery, photos

    return _make

# =============================================================================
# Pipeline
# =============================================================================

@pytest.fixture
def test_settings():
    return Settings(
        ANALYSIS_STALE_AFTER_SECONDS=300,
        FACE_MIN_CONFIDENCE=70.0,
        FACE_MATCH_THRESHOLD=80.0,
        FACE_SEARCH_MAX_RESULTS=100,
        INSTANT_SEARCH_MAX_TOKENS=2,
    )

@pytest.fixture
def face_index():
    return FakeFaceIndex()

@pytest.fixture
def describer():
    return FakeDescriber()

@pytest.fixture
def storage():
    return FakeStorage()

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def pipeline(db_session, face_index, describer, storage, clock, test_settings):
    return PipelineHarness(db_session, face_index, describer, storage, clock, test_settings)

