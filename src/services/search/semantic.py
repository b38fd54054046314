"""
Semantic Search
===============

Natural-language search over a gallery's analyzed photos: keyword retrieval
over descriptions and tags, then LLM re-ranking of the candidates.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple
import json
import logging

from src.models.photo_analysis import PhotoAnalysis
from src.repositories.analysis_repo import AnalysisRepository
from src.services.analysis.errors import AnalysisError
from src.services.vision.gemini import GeminiClient, strip_code_fences
from src.services.vision.prompts import SEARCH_RANKING_PROMPT

logger = logging.getLogger(__name__)


MAX_CANDIDATES = 50
MAX_RESULTS = 30
MIN_RELEVANCE = 0.3
FALLBACK_SCORE_STEP = 0.02


class SemanticSearchError(Exception):
    """Semantic search backend could not be reached or failed."""

    def __init__(self, message: str, original: Optional[Exception] = None):
        super().__init__(message)
        self.original = original


@dataclass
class SearchHit:
    photo_id: str
    score: float
    reason: Optional[str] = None


class SemanticSearch(ABC):
    """Ranked natural-language search over a gallery."""

    @abstractmethod
    def search(self, gallery_id: str, query: str) -> List[SearchHit]:
        """
        Ranked hits, best first. An empty list means "no matches".

        Raises:
            SemanticSearchError: on transport failure
        """


def extract_keywords(query: str) -> List[str]:
    return [word for word in query.lower().split() if len(word) > 1]


def score_candidate(analysis: PhotoAnalysis, keywords: List[str]) -> int:
    """Description hit counts twice, tag hit once, per keyword."""
    description = (analysis.description or "").lower()
    tags = [tag.lower() for tag in analysis.search_tags or []]

    score = 0
    for keyword in keywords:
        if keyword in description:
            score += 2
        if any(keyword in tag for tag in tags):
            score += 1
    return score


def retrieve_candidates(
    analyses: List[PhotoAnalysis],
    query: str,
    limit: int = MAX_CANDIDATES,
) -> List[PhotoAnalysis]:
    """Top analyses by keyword score; ties keep their input order."""
    keywords = extract_keywords(query)
    if not keywords:
        return []

    scored: List[Tuple[int, int, PhotoAnalysis]] = []
    for order, analysis in enumerate(analyses):
        score = score_candidate(analysis, keywords)
        if score > 0:
            scored.append((score, order, analysis))

    scored.sort(key=lambda item: (-item[0], item[1]))
    return [analysis for _, _, analysis in scored[:limit]]


def fallback_ranking(candidates: List[PhotoAnalysis]) -> List[SearchHit]:
    return [
        SearchHit(photo_id=analysis.photo_id, score=round(1 - FALLBACK_SCORE_STEP * i, 4))
        for i, analysis in enumerate(candidates[:MAX_RESULTS])
    ]


def parse_ranking(raw_text: str, candidates: List[PhotoAnalysis]) -> List[SearchHit]:
    """
    Map a ranking response back onto candidate photos.

    Raises:
        ValueError: when the response is not a JSON array
    """
    payload = json.loads(strip_code_fences(raw_text))
    if not isinstance(payload, list):
        raise ValueError("Ranking response is not a JSON array")

    hits: List[SearchHit] = []
    seen = set()
    for item in payload:
        if not isinstance(item, dict):
            continue
        index = item.get("index")
        score = item.get("relevanceScore")
        if not isinstance(index, int) or not 0 <= index < len(candidates):
            continue
        if not isinstance(score, (int, float)) or score <= MIN_RELEVANCE:
            continue
        photo_id = candidates[index].photo_id
        if photo_id in seen:
            continue
        seen.add(photo_id)
        hits.append(SearchHit(photo_id=photo_id, score=float(score), reason=item.get("matchReason")))

    hits.sort(key=lambda hit: hit.score, reverse=True)
    return hits[:MAX_RESULTS]


def _format_candidates(candidates: List[PhotoAnalysis]) -> str:
    lines = []
    for i, analysis in enumerate(candidates):
        tags = ", ".join(analysis.search_tags or [])
        lines.append(f"[{i}] {analysis.description or ''} | Tags: {tags}")
    return "\n".join(lines)


class GeminiSemanticSearch(SemanticSearch):
    """Keyword retrieval plus Gemini re-ranking."""

    def __init__(self, analysis_repo: AnalysisRepository, client: GeminiClient, timeout: float = 30):
        self.analysis_repo = analysis_repo
        self.client = client
        self.timeout = timeout

    def search(self, gallery_id: str, query: str) -> List[SearchHit]:
        analyses = self.analysis_repo.list_completed(gallery_id)
        candidates = retrieve_candidates(analyses, query)
        if not candidates:
            logger.debug(f"No semantic candidates for gallery {gallery_id}")
            return []

        prompt = SEARCH_RANKING_PROMPT.format(query=query, candidates=_format_candidates(candidates))
        try:
            raw = self.client.generate([prompt], temperature=0.1, max_output_tokens=2048, timeout=self.timeout)
        except AnalysisError as e:
            logger.error(f"Semantic ranking failed for gallery {gallery_id}: {e}")
            raise SemanticSearchError(f"Semantic search failed: {e}", original=e)

        try:
            hits = parse_ranking(raw, candidates)
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(f"Unparseable ranking for gallery {gallery_id}, using retrieval order: {e}")
            return fallback_ranking(candidates)

        logger.info(f"Semantic search in gallery {gallery_id} returned {len(hits)} hits")
        return hits
