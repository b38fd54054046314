from src.services.analysis.fusion import fuse_faces, pair_people_to_faces
from src.services.face.face_index import BoundingBox, DetectedFace, IndexedFace
from src.services.vision.describer import DescribedPerson


LEFT = BoundingBox(0.1, 0.1, 0.2, 0.2)
RIGHT = BoundingBox(0.6, 0.1, 0.2, 0.2)


def _detected(box, age_range=None):
    return DetectedFace(bounding_box=box, confidence=99.0, age_range=age_range)


def test_pairs_by_overlap():
    detected = [_detected(LEFT), _detected(RIGHT)]
    people = [
        DescribedPerson(role="groom", bounding_box=BoundingBox(0.62, 0.12, 0.2, 0.2)),
        DescribedPerson(role="bride", bounding_box=BoundingBox(0.12, 0.1, 0.2, 0.2)),
    ]

    assert pair_people_to_faces(detected, people) == {0: 1, 1: 0}


def test_pairs_by_nearest_center_without_overlap():
    detected = [_detected(LEFT)]
    people = [
        DescribedPerson(role="far", bounding_box=BoundingBox(0.8, 0.8, 0.1, 0.1)),
        DescribedPerson(role="near", bounding_box=BoundingBox(0.32, 0.1, 0.05, 0.05)),
    ]

    assert pair_people_to_faces(detected, people) == {0: 1}


def test_people_without_position_are_not_paired():
    assert pair_people_to_faces([_detected(LEFT)], [DescribedPerson(role="guest")]) == {}


def test_fuse_faces_orders_detected_first():
    """Test detected faces lead, unmatched people follow, ids are sequential."""
    detected = [_detected(LEFT, {"low": 30, "high": 40}), _detected(RIGHT)]
    indexed = {1: IndexedFace(face_id="ext-r", bounding_box=RIGHT, confidence=99.0)}
    people = [
        DescribedPerson(appearance="child", role="flower girl"),
        DescribedPerson(appearance="veil", role="bride", age_range="adult", bounding_box=LEFT),
    ]

    faces = fuse_faces(detected, indexed, people)

    assert [f["face_id"] for f in faces] == ["face_1", "face_2", "face_3"]
    assert faces[0]["role"] == "bride"
    assert faces[0]["age_range"] == "adult"
    assert faces[0]["external_face_id"] is None
    assert faces[1]["role"] is None
    assert faces[1]["appearance"] == ""
    assert faces[1]["external_face_id"] == "ext-r"
    assert faces[2]["role"] == "flower girl"
    assert faces[2]["bounding_box"] == {"x": 0.0, "y": 0.0, "width": 0.0, "height": 0.0}


def test_fuse_faces_uses_detector_age_when_undescribed():
    faces = fuse_faces([_detected(LEFT, {"low": 30, "high": 40})], {}, [])

    assert faces[0]["age_range"] == "30-40"
    assert faces[0]["bounding_box"] == LEFT.to_dict()


def test_fuse_faces_empty():
    assert fuse_faces([], {}, []) == []
