"""Gallery search schemas."""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from src.models.enums import SearchMode


class SearchHitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    photo_id: str
    score: float
    reason: Optional[str] = None


class SearchResponse(BaseModel):
    """Photos matching a gallery search."""
    query: str
    mode: SearchMode
    photo_ids: List[str] = Field(default_factory=list)
    total: int = 0
    hits: Optional[List[SearchHitResponse]] = Field(None, description="Ranked hits (ai mode only)")
