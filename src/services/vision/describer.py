"""
Photo Describer
===============

Natural-language description, search tags and per-person attributes for a
photo, produced by a vision model.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
import json
import logging

from src.models.enums import AnalysisErrorCode
from src.services.analysis.errors import AnalysisError
from src.services.face.face_index import BoundingBox
from src.services.vision.gemini import GeminiClient, strip_code_fences
from src.services.vision.prompts import PHOTO_ANALYSIS_PROMPT

logger = logging.getLogger(__name__)


class PhotoDescriptionError(AnalysisError):
    """Description could not be produced or interpreted."""


@dataclass
class DescribedPerson:
    """A person as described by the vision model."""
    appearance: str = ""
    role: Optional[str] = None
    expression: Optional[str] = None
    age_range: Optional[str] = None
    bounding_box: Optional[BoundingBox] = None


@dataclass
class PhotoDescription:
    """Output of ``PhotoDescriber.describe``."""
    description: Optional[str]
    search_tags: List[str] = field(default_factory=list)
    people: List[DescribedPerson] = field(default_factory=list)
    analysis_data: Dict[str, Any] = field(default_factory=dict)


class PhotoDescriber(ABC):
    """Describes a photo."""

    @abstractmethod
    def describe(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> PhotoDescription:
        """Raise ``AnalysisError`` subclasses on failure."""


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == "null":
        return None
    return text


def _strings(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    return [str(v) for v in values if v is not None]


def extract_search_tags(payload: Dict[str, Any]) -> List[str]:
    """Flatten a structured analysis payload into lower-cased, de-duplicated tags."""
    candidates: List[str] = []
    candidates.extend(_strings(payload.get("tags")))
    candidates.extend(_strings(payload.get("activities")))
    candidates.extend(_strings(payload.get("objects")))
    for key in ("scene", "mood", "composition"):
        value = payload.get(key)
        if isinstance(value, str):
            candidates.append(value)

    people = payload.get("people")
    if isinstance(people, list):
        for person in people:
            if not isinstance(person, dict):
                continue
            for key in ("role", "expression", "ageRange"):
                value = _clean(person.get(key))
                if value:
                    candidates.append(value)

    return _dedupe(tag.lower().strip() for tag in candidates)


def _dedupe(tags: Iterable[str]) -> List[str]:
    return [tag for tag in dict.fromkeys(tags) if tag]


def _parse_person(data: Dict[str, Any]) -> DescribedPerson:
    position = data.get("position")
    box = None
    if isinstance(position, dict):
        try:
            box = BoundingBox.from_dict(position)
        except (TypeError, ValueError):
            box = None
        if box is not None and (box.width <= 0 or box.height <= 0):
            box = None

    return DescribedPerson(
        appearance=_clean(data.get("appearance")) or "",
        role=_clean(data.get("role")),
        expression=_clean(data.get("expression")),
        age_range=_clean(data.get("ageRange")),
        bounding_box=box,
    )


def parse_photo_description(raw_text: str) -> PhotoDescription:
    """
    Parse a model response into a ``PhotoDescription``.

    Raises:
        PhotoDescriptionError: PARSE_ERROR when the text is not the expected JSON object
    """
    json_str = strip_code_fences(raw_text)
    try:
        payload = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise PhotoDescriptionError(
            f"Failed to parse model response as JSON: {json_str[:200]}",
            AnalysisErrorCode.PARSE_ERROR,
            original=e,
        )

    if not isinstance(payload, dict):
        raise PhotoDescriptionError(
            f"Expected a JSON object, got {type(payload).__name__}",
            AnalysisErrorCode.PARSE_ERROR,
        )

    people = payload.get("people") or []
    if not isinstance(people, list):
        raise PhotoDescriptionError("'people' must be a list", AnalysisErrorCode.PARSE_ERROR)

    return PhotoDescription(
        description=_clean(payload.get("description")),
        search_tags=extract_search_tags(payload),
        people=[_parse_person(p) for p in people if isinstance(p, dict)],
        analysis_data=payload,
    )


class GeminiPhotoDescriber(PhotoDescriber):
    """Gemini vision implementation of ``PhotoDescriber``."""

    def __init__(self, client: GeminiClient, timeout: float = 60, prompt: str = PHOTO_ANALYSIS_PROMPT):
        self.client = client
        self.timeout = timeout
        self.prompt = prompt

    def describe(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> PhotoDescription:
        if not mime_type or not mime_type.startswith("image/"):
            mime_type = "image/jpeg"

        raw = self.client.generate(
            [{"mime_type": mime_type, "data": image_bytes}, self.prompt],
            temperature=0.2,
            timeout=self.timeout,
        )
        description = parse_photo_description(raw)
        logger.debug(
            f"Described photo: {len(description.people)} people, {len(description.search_tags)} tags"
        )
        return description
