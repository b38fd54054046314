"""Merge detector faces with the people described by the vision model."""
import math
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from src.services.face.face_index import BoundingBox, DetectedFace, IndexedFace
from src.services.vision.describer import DescribedPerson


MAX_CENTER_DISTANCE = 0.25


def _center_distance(a: BoundingBox, b: BoundingBox) -> float:
    (ax, ay), (bx, by) = a.center, b.center
    return math.hypot(ax - bx, ay - by)


def _format_age_range(age_range: Optional[Dict[str, int]]) -> Optional[str]:
    if not age_range:
        return None
    return f"{age_range['low']}-{age_range['high']}"


def pair_people_to_faces(
    detected: Sequence[DetectedFace],
    people: Sequence[DescribedPerson],
    max_center_distance: float = MAX_CENTER_DISTANCE,
) -> Dict[int, int]:
    """
    Greedy one-to-one pairing, detected index -> person index.

    Highest-IoU pairs are taken first; people left over are then matched to
    the nearest remaining face centre within ``max_center_distance``.
    """
    candidates: List[Tuple[float, int, int]] = []
    for d_idx, face in enumerate(detected):
        for p_idx, person in enumerate(people):
            if person.bounding_box is None:
                continue
            iou = face.bounding_box.iou(person.bounding_box)
            if iou > 0:
                candidates.append((iou, d_idx, p_idx))

    pairs: Dict[int, int] = {}
    used_people: Set[int] = set()
    for _, d_idx, p_idx in sorted(candidates, key=lambda c: (-c[0], c[1], c[2])):
        if d_idx in pairs or p_idx in used_people:
            continue
        pairs[d_idx] = p_idx
        used_people.add(p_idx)

    near: List[Tuple[float, int, int]] = []
    for d_idx, face in enumerate(detected):
        if d_idx in pairs:
            continue
        for p_idx, person in enumerate(people):
            if p_idx in used_people or person.bounding_box is None:
                continue
            distance = _center_distance(face.bounding_box, person.bounding_box)
            if distance <= max_center_distance:
                near.append((distance, d_idx, p_idx))

    for _, d_idx, p_idx in sorted(near):
        if d_idx in pairs or p_idx in used_people:
            continue
        pairs[d_idx] = p_idx
        used_people.add(p_idx)

    return pairs


def fuse_faces(
    detected: Sequence[DetectedFace],
    indexed: Dict[int, IndexedFace],
    people: Sequence[DescribedPerson],
) -> List[Dict[str, Any]]:
    """
    Face rows for a completed analysis.

    Detected faces come first, in detection order, carrying the external id
    of their indexed crop. Described people with no detected face follow
    without an external id. Face ids are ``face_1`` .. ``face_n``.
    """
    pairs = pair_people_to_faces(detected, people)
    faces: List[Dict[str, Any]] = []

    for d_idx, face in enumerate(detected):
        person = people[pairs[d_idx]] if d_idx in pairs else None
        indexed_face = indexed.get(d_idx)
        detector_age = _format_age_range(face.age_range)
        faces.append({
            'bounding_box': face.bounding_box.to_dict(),
            'external_face_id': indexed_face.face_id if indexed_face else None,
            'appearance': person.appearance if person else '',
            'role': person.role if person else None,
            'expression': person.expression if person else None,
            'age_range': (person.age_range if person else None) or detector_age,
        })

    paired_people = set(pairs.values())
    for p_idx, person in enumerate(people):
        if p_idx in paired_people:
            continue
        box = person.bounding_box or BoundingBox(0.0, 0.0, 0.0, 0.0)
        faces.append({
            'bounding_box': box.to_dict(),
            'external_face_id': None,
            'appearance': person.appearance,
            'role': person.role,
            'expression': person.expression,
            'age_range': person.age_range,
        })

    for position, face in enumerate(faces, start=1):
        face['face_id'] = f"face_{position}"
    return faces
