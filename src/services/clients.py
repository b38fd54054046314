"""
Process-wide collaborator clients.

Built once per process on first use and passed explicitly into the
orchestrator, resolver and search services.
"""
from functools import lru_cache

from src.app.config import settings
from src.services.face.face_index import FaceIndex, RekognitionFaceIndex
from src.services.storage.s3 import ObjectStorage, S3Service
from src.services.vision.describer import GeminiPhotoDescriber, PhotoDescriber
from src.services.vision.gemini import GeminiClient


@lru_cache()
def get_face_index() -> FaceIndex:
    return RekognitionFaceIndex.from_settings(settings)


@lru_cache()
def get_object_storage() -> ObjectStorage:
    return S3Service()


@lru_cache()
def get_gemini_client() -> GeminiClient:
    return GeminiClient(settings.GEMINI_API_KEY, model_name=settings.GEMINI_MODEL)


@lru_cache()
def get_photo_describer() -> PhotoDescriber:
    return GeminiPhotoDescriber(get_gemini_client(), timeout=settings.DESCRIBE_TIMEOUT_SECONDS)
