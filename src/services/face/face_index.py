"""
Face Index
==========

Face detection and similarity search over a per-gallery face collection.

``FaceIndex`` is the vendor-neutral contract used by the analysis pipeline;
``RekognitionFaceIndex`` binds it to AWS Rekognition through boto3.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence
import logging

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError, BotoCoreError

from src.services.analysis.errors import AnalysisError, classify_exception

logger = logging.getLogger(__name__)


DEFAULT_MIN_CONFIDENCE = 70.0
DEFAULT_SIMILARITY_THRESHOLD = 80.0
DEFAULT_MAX_RESULTS = 100

# IndexFaces rejects crops it cannot use; that is "no indexable face", not a failure
UNINDEXABLE_IMAGE_ERRORS = frozenset({
    "InvalidParameterException",
    "InvalidImageFormatException",
    "ImageTooLargeException",
})


class FaceIndexError(AnalysisError):
    """Face index call failed."""


@dataclass
class BoundingBox:
    """Bounding box in image-relative coordinates, all values in [0, 1]."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        return cls(
            x=float(data.get('x', 0.0)),
            y=float(data.get('y', 0.0)),
            width=float(data.get('width', 0.0)),
            height=float(data.get('height', 0.0)),
        )

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @property
    def center(self):
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)

    def iou(self, other: "BoundingBox") -> float:
        """Intersection over union with another box."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.width, other.x + other.width)
        bottom = min(self.y + self.height, other.y + other.height)
        if right <= left or bottom <= top:
            return 0.0
        intersection = (right - left) * (bottom - top)
        union = self.area + other.area - intersection
        return intersection / union if union > 0 else 0.0


@dataclass
class DetectedFace:
    """Face detection result."""
    bounding_box: BoundingBox
    confidence: float
    age_range: Optional[Dict[str, int]] = None  # {"low": .., "high": ..}
    emotions: List[Dict[str, Any]] = field(default_factory=list)
    landmarks: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class IndexedFace:
    """A face stored in a collection."""
    face_id: str
    bounding_box: BoundingBox
    confidence: float


@dataclass
class FaceMatch:
    """A similarity search hit; similarity is 0-100."""
    face_id: str
    similarity: float


class FaceIndex(ABC):
    """Vendor-neutral face detection and similarity search."""

    @abstractmethod
    def detect_faces(self, image_bytes: bytes, min_confidence: float = DEFAULT_MIN_CONFIDENCE) -> List[DetectedFace]:
        """Faces at or above ``min_confidence``. No side effects."""

    @abstractmethod
    def create_collection(self, collection_id: str) -> None:
        """Create a collection; creating an existing one is a no-op."""

    @abstractmethod
    def delete_collection(self, collection_id: str) -> None:
        """Delete a collection; deleting a missing one is a no-op."""

    @abstractmethod
    def index_face(self, collection_id: str, image_bytes: bytes, external_ref: str) -> Optional[IndexedFace]:
        """Index at most one face from a crop; None if the crop has no indexable face."""

    @abstractmethod
    def search_faces_by_id(
        self,
        collection_id: str,
        face_id: str,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> List[FaceMatch]:
        """Matches at or above the threshold, excluding the query face."""

    @abstractmethod
    def delete_faces(self, collection_id: str, face_ids: Sequence[str]) -> None:
        """Remove faces from a collection; empty input is a no-op."""


def collection_id_for_gallery(gallery_id: str) -> str:
    return f"gallery-{gallery_id}"


def _normalize_bounding_box(box: Optional[Dict[str, Any]]) -> BoundingBox:
    box = box or {}
    return BoundingBox(
        x=float(box.get('Left') or 0.0),
        y=float(box.get('Top') or 0.0),
        width=float(box.get('Width') or 0.0),
        height=float(box.get('Height') or 0.0),
    )


def _map_face_detail(detail: Dict[str, Any]) -> DetectedFace:
    age = detail.get('AgeRange') or {}
    age_range = None
    if age.get('Low') is not None and age.get('High') is not None:
        age_range = {'low': int(age['Low']), 'high': int(age['High'])}

    return DetectedFace(
        bounding_box=_normalize_bounding_box(detail.get('BoundingBox')),
        confidence=float(detail.get('Confidence') or 0.0),
        age_range=age_range,
        emotions=[
            {'type': e.get('Type', 'UNKNOWN'), 'confidence': float(e.get('Confidence') or 0.0)}
            for e in detail.get('Emotions') or []
        ],
        landmarks=[
            {'type': lm.get('Type', 'UNKNOWN'), 'x': float(lm.get('X') or 0.0), 'y': float(lm.get('Y') or 0.0)}
            for lm in detail.get('Landmarks') or []
        ],
    )


def _error_code(exc: ClientError) -> str:
    return exc.response.get('Error', {}).get('Code', '')


class RekognitionFaceIndex(FaceIndex):
    """AWS Rekognition implementation of ``FaceIndex``."""

    def __init__(self, client=None, region_name: Optional[str] = None, **client_kwargs):
        """
        Initialize Rekognition face index.

        Args:
            client: Pre-built boto3 Rekognition client (tests, shared sessions)
            region_name: AWS region, used when building a client
            client_kwargs: Extra keyword arguments for ``boto3.client``
        """
        if client is None:
            client = boto3.client('rekognition', region_name=region_name, **client_kwargs)
        self.client = client

    @classmethod
    def from_settings(cls, settings) -> "RekognitionFaceIndex":
        return cls(
            region_name=settings.REKOGNITION_REGION or settings.S3_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            config=Config(
                connect_timeout=settings.AWS_CONNECT_TIMEOUT_SECONDS,
                read_timeout=settings.AWS_READ_TIMEOUT_SECONDS,
                retries={'max_attempts': settings.AWS_MAX_ATTEMPTS, 'mode': 'standard'},
            ),
        )

    def _wrap(self, operation: str, exc: Exception) -> FaceIndexError:
        code = classify_exception(exc)
        logger.warning(f"Rekognition {operation} failed ({code.value}): {exc}")
        return FaceIndexError(f"Face index {operation} failed: {exc}", code, original=exc)

    def detect_faces(self, image_bytes: bytes, min_confidence: float = DEFAULT_MIN_CONFIDENCE) -> List[DetectedFace]:
        try:
            response = self.client.detect_faces(
                Image={'Bytes': image_bytes},
                Attributes=['ALL'],
            )
        except (ClientError, BotoCoreError) as e:
            raise self._wrap('detect_faces', e)

        details = response.get('FaceDetails') or []
        return [
            _map_face_detail(detail)
            for detail in details
            if float(detail.get('Confidence') or 0.0) >= min_confidence
        ]

    def create_collection(self, collection_id: str) -> None:
        try:
            self.client.create_collection(CollectionId=collection_id)
            logger.info(f"Created face collection {collection_id}")
        except ClientError as e:
            if _error_code(e) == 'ResourceAlreadyExistsException':
                return
            raise self._wrap('create_collection', e)
        except BotoCoreError as e:
            raise self._wrap('create_collection', e)

    def delete_collection(self, collection_id: str) -> None:
        try:
            self.client.delete_collection(CollectionId=collection_id)
            logger.info(f"Deleted face collection {collection_id}")
        except ClientError as e:
            if _error_code(e) == 'ResourceNotFoundException':
                return
            raise self._wrap('delete_collection', e)
        except BotoCoreError as e:
            raise self._wrap('delete_collection', e)

    def index_face(self, collection_id: str, image_bytes: bytes, external_ref: str) -> Optional[IndexedFace]:
        try:
            response = self.client.index_faces(
                CollectionId=collection_id,
                Image={'Bytes': image_bytes},
                ExternalImageId=external_ref,
                MaxFaces=1,
                DetectionAttributes=['DEFAULT'],
            )
        except ClientError as e:
            if _error_code(e) in UNINDEXABLE_IMAGE_ERRORS:
                logger.debug(f"No indexable face for {external_ref}: {e}")
                return None
            raise self._wrap('index_face', e)
        except BotoCoreError as e:
            raise self._wrap('index_face', e)

        records = response.get('FaceRecords') or []
        if not records:
            return None

        face = records[0].get('Face') or {}
        if not face.get('FaceId') or not face.get('BoundingBox'):
            return None

        return IndexedFace(
            face_id=face['FaceId'],
            bounding_box=_normalize_bounding_box(face['BoundingBox']),
            confidence=float(face.get('Confidence') or 0.0),
        )

    def search_faces_by_id(
        self,
        collection_id: str,
        face_id: str,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> List[FaceMatch]:
        try:
            response = self.client.search_faces(
                CollectionId=collection_id,
                FaceId=face_id,
                FaceMatchThreshold=similarity_threshold,
                MaxFaces=max_results,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._wrap('search_faces', e)

        matches = []
        for match in response.get('FaceMatches') or []:
            matched_id = (match.get('Face') or {}).get('FaceId')
            if not matched_id or matched_id == face_id:
                continue
            similarity = float(match.get('Similarity') or 0.0)
            if similarity < similarity_threshold:
                continue
            matches.append(FaceMatch(face_id=matched_id, similarity=similarity))
        return matches

    def delete_faces(self, collection_id: str, face_ids: Sequence[str]) -> None:
        face_ids = [fid for fid in face_ids if fid]
        if not face_ids:
            return
        try:
            self.client.delete_faces(CollectionId=collection_id, FaceIds=face_ids)
        except ClientError as e:
            if _error_code(e) == 'ResourceNotFoundException':
                return
            raise self._wrap('delete_faces', e)
        except BotoCoreError as e:
            raise self._wrap('delete_faces', e)


__all__ = [
    'FaceIndex',
    'RekognitionFaceIndex',
    'FaceIndexError',
    'BoundingBox',
    'DetectedFace',
    'IndexedFace',
    'FaceMatch',
    'collection_id_for_gallery',
    'DEFAULT_MIN_CONFIDENCE',
    'DEFAULT_SIMILARITY_THRESHOLD',
    'DEFAULT_MAX_RESULTS',
]
