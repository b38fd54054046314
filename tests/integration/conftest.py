"""
Integration test configuration

The app runs against the in-memory database with collaborator fakes in
place of Rekognition, S3, Gemini and Celery.
"""
import pytest
from fastapi.testclient import TestClient

from src.api.deps import get_gallery_search, get_orchestrator, get_person_resolver
from src.app.main import app
from src.db.base import get_db
from src.repositories.analysis_repo import AnalysisRepository
from src.services.face.resolver import PersonResolver
from src.services.search.gallery_search import GallerySearch
from tests.fakes import FakeSemanticSearch


@pytest.fixture
def semantic_search():
    return FakeSemanticSearch()


@pytest.fixture
def client(db_session, pipeline, semantic_search):
    """FastAPI test client with dependency overrides."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: pipeline.orchestrator
    app.dependency_overrides[get_person_resolver] = lambda: PersonResolver(db_session, pipeline.face_index)
    app.dependency_overrides[get_gallery_search] = lambda: GallerySearch(
        AnalysisRepository(db_session), semantic_search
    )

    test_client = TestClient(app)
    yield test_client

    app.dependency_overrides.clear()
