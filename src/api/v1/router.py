from fastapi import APIRouter
from src.api.v1.endpoints import analysis, persons, search


api_router = APIRouter()

api_router.include_router(analysis.router, prefix="/galleries", tags=["analysis"])
api_router.include_router(search.router, prefix="/galleries", tags=["search"])
api_router.include_router(persons.router, tags=["persons"])
