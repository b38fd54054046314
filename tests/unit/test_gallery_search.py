from datetime import datetime

import pytest

from src.models import SearchMode
from src.repositories.analysis_repo import AnalysisRepository
from src.services.search.gallery_search import GallerySearch, tokenize
from src.services.search.semantic import SearchHit, SemanticSearchError
from tests.fakes import FakeSemanticSearch


NOW = datetime(2026, 1, 1, 12, 0, 0)


@pytest.fixture
def tagged_gallery(db_session, make_gallery):
    """P1 tagged beach/sunset, P2 tagged forest."""
    gallery, photos = make_gallery(2)
    repo = AnalysisRepository(db_session)
    repo.seed_pending(gallery.id, [p.id for p in photos], NOW)
    for photo, tags in zip(photos, [["beach", "sunset"], ["forest"]]):
        repo.claim(photo.id, NOW)
        repo.mark_completed(photo.id, "d", tags, None, [], NOW)
    return gallery, photos


def _search(db_session, semantic):
    return GallerySearch(AnalysisRepository(db_session), semantic, instant_max_tokens=2)


def test_tokenize():
    assert tokenize("  Bride  Hugging kids ") == ["bride", "hugging", "kids"]
    assert tokenize("") == []
    assert tokenize(None) == []


def test_short_query_matching_tag_is_instant(db_session, tagged_gallery):
    """Test a one-word tag hit never reaches the semantic backend."""
    gallery, photos = tagged_gallery
    semantic = FakeSemanticSearch()

    result = _search(db_session, semantic).search(gallery.id, "beach")

    assert result.mode == SearchMode.instant
    assert result.photo_ids == [photos[0].id]
    assert result.hits is None
    assert semantic.calls == []


def test_instant_match_is_substring_and_case_insensitive(db_session, tagged_gallery):
    gallery, photos = tagged_gallery

    result = _search(db_session, FakeSemanticSearch()).search(gallery.id, "SUN fore")

    assert result.mode == SearchMode.instant
    assert result.photo_ids == [photos[0].id, photos[1].id]


def test_long_query_goes_semantic(db_session, tagged_gallery):
    """Test a three-word query goes straight to the semantic backend."""
    gallery, photos = tagged_gallery
    semantic = FakeSemanticSearch([SearchHit(photo_id=photos[1].id, score=0.9, reason="kids")])

    result = _search(db_session, semantic).search(gallery.id, "bride hugging kids")

    assert result.mode == SearchMode.ai
    assert result.photo_ids == [photos[1].id]
    assert result.hits[0].score == 0.9
    assert semantic.calls == [(gallery.id, "bride hugging kids")]


def test_short_query_without_tag_match_falls_back(db_session, tagged_gallery):
    gallery, _ = tagged_gallery
    semantic = FakeSemanticSearch()

    result = _search(db_session, semantic).search(gallery.id, " first dance ")

    assert result.mode == SearchMode.ai
    assert result.photo_ids == []
    assert semantic.calls == [(gallery.id, "first dance")]


def test_blank_query_returns_nothing(db_session, tagged_gallery):
    gallery, _ = tagged_gallery
    semantic = FakeSemanticSearch()

    result = _search(db_session, semantic).search(gallery.id, "   ")

    assert result.mode == SearchMode.instant
    assert result.photo_ids == []
    assert semantic.calls == []


def test_semantic_failure_propagates(db_session, tagged_gallery):
    gallery, _ = tagged_gallery
    semantic = FakeSemanticSearch()
    semantic.error = SemanticSearchError("backend down")

    with pytest.raises(SemanticSearchError):
        _search(db_session, semantic).search(gallery.id, "bride hugging kids")


def test_pending_photos_are_not_searched(db_session, make_gallery):
    gallery, photos = make_gallery(1)
    repo = AnalysisRepository(db_session)
    repo.seed_pending(gallery.id, [photos[0].id], NOW)
    semantic = FakeSemanticSearch()

    result = _search(db_session, semantic).search(gallery.id, "beach")

    assert result.mode == SearchMode.ai
    assert semantic.calls == [(gallery.id, "beach")]
