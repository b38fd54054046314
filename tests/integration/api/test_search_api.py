"""
Search API Tests
================

Instant tag search, semantic fallback and search gating.
"""

import pytest

from src.services.search.semantic import SearchHit, SemanticSearchError


API = "/api/v1/galleries"


@pytest.fixture
def searchable_gallery(make_gallery, pipeline):
    """P1 tagged beach/sunset, P2 tagged forest; analysis finished."""
    gallery, photos = make_gallery(2)
    pipeline.stage(photos[0], tags=["beach", "sunset"], description="Couple on the beach at sunset")
    pipeline.stage(photos[1], tags=["forest"], description="Walk through the forest")
    pipeline.analyze(gallery.id)
    pipeline.orchestrator.refresh_progress(gallery.id)
    return gallery, photos


def test_search_disabled(client, make_gallery):
    gallery, _ = make_gallery(1)

    response = client.get(f"{API}/{gallery.id}/search", params={"q": "beach"})

    assert response.status_code == 403


def test_search_unknown_gallery(client):
    assert client.get(f"{API}/missing/search", params={"q": "beach"}).status_code == 404


def test_instant_search(client, searchable_gallery, semantic_search):
    """Test a tag hit is answered without the semantic backend."""
    gallery, photos = searchable_gallery

    response = client.get(f"{API}/{gallery.id}/search", params={"q": "beach"})

    assert response.status_code == 200
    data = response.json()
    assert data["mode"] == "instant"
    assert data["photo_ids"] == [photos[0].id]
    assert data["total"] == 1
    assert data["hits"] is None
    assert semantic_search.calls == []


def test_semantic_search(client, searchable_gallery, semantic_search):
    gallery, photos = searchable_gallery
    semantic_search.hits = [SearchHit(photo_id=photos[1].id, score=0.82, reason="children playing")]

    response = client.get(f"{API}/{gallery.id}/search", params={"q": "bride hugging kids"})

    assert response.status_code == 200
    data = response.json()
    assert data["mode"] == "ai"
    assert data["query"] == "bride hugging kids"
    assert data["photo_ids"] == [photos[1].id]
    assert data["hits"] == [{"photo_id": photos[1].id, "score": 0.82, "reason": "children playing"}]


def test_semantic_backend_failure(client, searchable_gallery, semantic_search):
    gallery, _ = searchable_gallery
    semantic_search.error = SemanticSearchError("Gemini unreachable")

    response = client.get(f"{API}/{gallery.id}/search", params={"q": "first dance photos"})

    assert response.status_code == 502
    assert response.json()["detail"] == "Search backend unavailable"


def test_empty_query(client, searchable_gallery, semantic_search):
    gallery, _ = searchable_gallery

    data = client.get(f"{API}/{gallery.id}/search").json()

    assert data["mode"] == "instant"
    assert data["photo_ids"] == []
    assert semantic_search.calls == []
