"""Gallery search API."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from src.api.deps import get_gallery_repo, get_gallery_search
from src.repositories.gallery_repo import GalleryRepository
from src.services.search.gallery_search import GallerySearch
from src.schemas.search import SearchHitResponse, SearchResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/{gallery_id}/search", response_model=SearchResponse)
async def search_gallery(
    gallery_id: str = Path(..., description="Gallery ID"),
    q: str = Query("", max_length=500, description="Free-text query"),
    gallery_repo: GalleryRepository = Depends(get_gallery_repo),
    gallery_search: GallerySearch = Depends(get_gallery_search),
):
    """
    Search a gallery's analyzed photos.

    Short queries are matched against photo tags (`mode=instant`); longer
    queries, or short ones with no tag match, use semantic ranking (`mode=ai`).
    """
    gallery = gallery_repo.get_or_raise(gallery_id)
    if not gallery.ai_search_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Search is not enabled for this gallery"
        )

    result = gallery_search.search(gallery_id, q)
    return SearchResponse(
        query=q,
        mode=result.mode,
        photo_ids=result.photo_ids,
        total=len(result.photo_ids),
        hits=[SearchHitResponse.model_validate(h) for h in result.hits] if result.hits is not None else None,
    )
