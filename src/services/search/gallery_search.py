"""Hybrid gallery search: instant tag matching with semantic fallback."""
from dataclasses import dataclass, field
from typing import List, Optional
import logging

from src.models.enums import SearchMode
from src.repositories.analysis_repo import AnalysisRepository
from src.services.search.semantic import SearchHit, SemanticSearch

logger = logging.getLogger(__name__)


DEFAULT_INSTANT_MAX_TOKENS = 2


@dataclass
class GallerySearchResult:
    mode: SearchMode
    photo_ids: List[str] = field(default_factory=list)
    hits: Optional[List[SearchHit]] = None


def tokenize(query: str) -> List[str]:
    return (query or "").lower().split()


class GallerySearch:
    """
    Resolves a free-text query against a gallery's analyzed photos.

    Queries of up to ``instant_max_tokens`` tokens are first matched against
    stored tags (any token a substring of any tag). Longer queries, and short
    ones that match nothing, go to the semantic backend. Semantic transport
    failures propagate as ``SemanticSearchError``.
    """

    def __init__(
        self,
        analysis_repo: AnalysisRepository,
        semantic_search: SemanticSearch,
        instant_max_tokens: int = DEFAULT_INSTANT_MAX_TOKENS,
    ):
        self.analysis_repo = analysis_repo
        self.semantic_search = semantic_search
        self.instant_max_tokens = instant_max_tokens

    def instant_match(self, gallery_id: str, tokens: List[str]) -> List[str]:
        matches = []
        for photo_id, tags in self.analysis_repo.list_search_tags(gallery_id):
            lowered = [tag.lower() for tag in tags]
            if any(token in tag for token in tokens for tag in lowered):
                matches.append(photo_id)
        return matches

    def search(self, gallery_id: str, query: str) -> GallerySearchResult:
        tokens = tokenize(query)
        if not tokens:
            return GallerySearchResult(mode=SearchMode.instant)

        if len(tokens) <= self.instant_max_tokens:
            matches = self.instant_match(gallery_id, tokens)
            if matches:
                logger.debug(f"Instant search {query!r} in gallery {gallery_id}: {len(matches)} matches")
                return GallerySearchResult(mode=SearchMode.instant, photo_ids=matches)

        hits = self.semantic_search.search(gallery_id, query.strip())
        logger.info(f"Semantic search {query!r} in gallery {gallery_id}: {len(hits)} hits")
        return GallerySearchResult(
            mode=SearchMode.ai,
            photo_ids=[hit.photo_id for hit in hits],
            hits=hits,
        )
