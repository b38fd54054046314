"""
Person Clusters API
===================

Find-person lookups, the gallery's people list and cluster renaming.
"""

import logging

from fastapi import APIRouter, Depends, Path, Query

from src.api.deps import get_orchestrator, get_person_resolver
from src.services.analysis.orchestrator import AnalysisOrchestrator
from src.services.face.resolver import PersonResolver
from src.schemas.person import (
    FindPersonResponse,
    PersonClusterInDB,
    PersonClusterListResponse,
    PersonClusterUpdate,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/galleries/{gallery_id}/find-person", response_model=FindPersonResponse)
async def find_person(
    gallery_id: str = Path(..., description="Gallery ID"),
    photo_id: str = Query(..., description="Photo containing the face"),
    face_id: str = Query(..., description="Face id within the photo"),
    resolver: PersonResolver = Depends(get_person_resolver),
):
    """
    All photos of the person behind a face.

    `method` tells how the result was obtained: `cluster`, `rekognition`
    (live similarity search) or `role_fallback` (heuristic).
    """
    match = resolver.find_person(gallery_id, photo_id, face_id)
    return FindPersonResponse.model_validate(match)


@router.get("/galleries/{gallery_id}/person-clusters", response_model=PersonClusterListResponse)
async def list_person_clusters(
    gallery_id: str = Path(..., description="Gallery ID"),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """People identified in a gallery, most photographed first."""
    clusters = orchestrator.list_clusters(gallery_id)
    return PersonClusterListResponse(
        items=[PersonClusterInDB.model_validate(c) for c in clusters],
        total=len(clusters),
    )


@router.patch("/person-clusters/{cluster_id}", response_model=PersonClusterInDB)
async def rename_person_cluster(
    payload: PersonClusterUpdate,
    cluster_id: str = Path(..., description="Person cluster ID"),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Name a person. The name is never overwritten by automatic clustering."""
    cluster = orchestrator.rename_cluster(cluster_id, payload.name)
    return PersonClusterInDB.model_validate(cluster)
