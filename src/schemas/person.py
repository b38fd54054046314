"""Person cluster and find-person schemas."""
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
from datetime import datetime

from src.models.enums import ResolutionMethod


class PersonClusterUpdate(BaseModel):
    """Rename a person cluster; blank or null clears the name."""
    name: Optional[str] = Field(None, max_length=255, description="Person's name")


class PersonClusterInDB(BaseModel):
    """Person cluster with derived photo list."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    gallery_id: str
    name: Optional[str] = None
    role: Optional[str] = None
    description: Optional[str] = None
    face_description: Optional[str] = None
    photo_ids: List[str] = Field(default_factory=list)
    photo_count: int = Field(0, description="Number of unique photos")
    created_at: datetime
    updated_at: datetime


class PersonClusterListResponse(BaseModel):
    items: List[PersonClusterInDB]
    total: int


class FindPersonResponse(BaseModel):
    """Photos containing the same person as the queried face."""
    model_config = ConfigDict(from_attributes=True)

    photo_ids: List[str]
    method: ResolutionMethod
    cluster_id: Optional[str] = None
    person_name: Optional[str] = None
    person_description: Optional[str] = None
    person_role: Optional[str] = None
    similarities: Dict[str, float] = Field(default_factory=dict, description="Photo id -> best similarity (live search only)")
