import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from src.core.errors import GalleryNotFoundError
from src.models import AnalysisErrorCode, AnalysisMode, AnalysisStatus, PersonCluster, PersonFace
from src.services.face.face_index import FaceIndexError
from src.services.vision.describer import DescribedPerson
from src.services.vision.gemini import GeminiError
from tests.fakes import FACE_BOX, SECOND_FACE_BOX


def _status(pipeline, photo):
    return pipeline.orchestrator.analysis_repo.get(photo.id).status


# =============================================================================
# Scheduling
# =============================================================================

def test_start_analysis_seeds_and_dispatches(pipeline, make_gallery):
    """Test a first run seeds every photo and hands the gallery to the worker."""
    gallery, photos = make_gallery(3)

    result = pipeline.orchestrator.start_analysis(gallery.id)

    assert result.mode == AnalysisMode.initial
    assert result.seeded == 3
    assert result.pending == 3
    assert pipeline.dispatched == [gallery.id]
    assert gallery.last_analysis_triggered_at == pipeline.clock()
    assert set(pipeline.orchestrator.pending_photo_ids(gallery.id)) == {p.id for p in photos}


def test_start_analysis_is_idempotent(pipeline, make_gallery):
    gallery, _ = make_gallery(2)

    pipeline.orchestrator.start_analysis(gallery.id)
    result = pipeline.orchestrator.start_analysis(gallery.id)

    assert result.seeded == 0
    assert result.pending == 2


def test_start_analysis_empty_gallery(pipeline, make_gallery):
    """Test nothing is dispatched when there is no work."""
    gallery, _ = make_gallery(0)

    result = pipeline.orchestrator.start_analysis(gallery.id)

    assert result.pending == 0
    assert pipeline.dispatched == []
    assert pipeline.orchestrator.compute_progress(gallery.id) == 0


def test_start_analysis_unknown_gallery(pipeline):
    with pytest.raises(GalleryNotFoundError):
        pipeline.orchestrator.start_analysis("missing")


def test_start_analysis_unknown_mode(pipeline, make_gallery):
    gallery, _ = make_gallery(1)

    with pytest.raises(ValueError):
        pipeline.orchestrator.start_analysis(gallery.id, "everything")


# =============================================================================
# Execution
# =============================================================================

def test_process_one_completes_photo(pipeline, make_gallery):
    """Test a photo with one face is described, indexed and stored."""
    gallery, photos = make_gallery(1)
    pipeline.stage(
        photos[0],
        faces=[FACE_BOX],
        people=[DescribedPerson(appearance="white gown", role="bride", bounding_box=FACE_BOX)],
        tags=["bride", "wedding"],
        description="Bride in the garden",
    )

    pipeline.analyze(gallery.id)

    analysis = pipeline.orchestrator.analysis_repo.get(photos[0].id)
    assert analysis.status == AnalysisStatus.COMPLETED
    assert analysis.description == "Bride in the garden"
    assert analysis.search_tags == ["bride", "wedding"]
    assert analysis.face_count == 1

    face = analysis.faces[0]
    assert face.face_id == "face_1"
    assert face.role == "bride"
    assert face.age_range == "25-35"
    assert face.external_face_id == f"ext-{photos[0].id}_face_0"
    assert pipeline.db.get(type(gallery), gallery.id).face_collection_id == f"gallery-{gallery.id}"


def test_process_one_without_faces_skips_collection(pipeline, make_gallery):
    gallery, photos = make_gallery(1)
    pipeline.stage(photos[0], tags=["cake"])

    pipeline.analyze(gallery.id)

    assert _status(pipeline, photos[0]) == AnalysisStatus.COMPLETED
    assert pipeline.face_index.collections == set()


def test_process_one_keeps_described_people_without_detection(pipeline, make_gallery):
    """Test people the detector missed are stored without an external id."""
    gallery, photos = make_gallery(1)
    pipeline.stage(
        photos[0],
        people=[DescribedPerson(appearance="child in blue", role="flower girl")],
    )

    pipeline.analyze(gallery.id)

    faces = pipeline.db.query(PersonFace).all()
    assert len(faces) == 1
    assert faces[0].external_face_id is None
    assert faces[0].person_cluster_id is None
    assert faces[0].bounding_box == {"x": 0.0, "y": 0.0, "width": 0.0, "height": 0.0}


def test_process_one_not_claimed_twice(pipeline, make_gallery):
    """Test a finished job cannot be run again."""
    gallery, photos = make_gallery(1)
    pipeline.stage(photos[0])
    pipeline.analyze(gallery.id)

    assert pipeline.orchestrator.process_one(photos[0].id) is None
    assert pipeline.describer.calls == 1


def test_missing_image_is_image_error(pipeline, make_gallery):
    gallery, photos = make_gallery(1)
    pipeline.orchestrator.start_analysis(gallery.id)

    assert pipeline.orchestrator.process_one(photos[0].id) == AnalysisStatus.FAILED

    analysis = pipeline.orchestrator.analysis_repo.get(photos[0].id)
    assert analysis.error_message.startswith("[IMAGE_ERROR]")
    assert analysis.error_code == AnalysisErrorCode.IMAGE_ERROR
    assert analysis.retry_count == 1


def test_undecodable_image_is_image_error(pipeline, make_gallery):
    gallery, photos = make_gallery(1)
    pipeline.storage.objects[photos[0].s3_key] = b"not an image"

    pipeline.analyze(gallery.id)

    assert pipeline.orchestrator.analysis_repo.get(photos[0].id).error_message.startswith("[IMAGE_ERROR]")


@pytest.mark.parametrize("error, code", [
    (GeminiError("Request timed out after 60s", AnalysisErrorCode.TIMEOUT), AnalysisErrorCode.TIMEOUT),
    (GeminiError("Gemini API rate limit exceeded", AnalysisErrorCode.RATE_LIMIT), AnalysisErrorCode.RATE_LIMIT),
    (TimeoutError("read timed out"), AnalysisErrorCode.TIMEOUT),
    (RuntimeError("boom"), AnalysisErrorCode.API_ERROR),
])
def test_describer_failures_are_classified(pipeline, make_gallery, error, code):
    gallery, photos = make_gallery(1)
    pipeline.stage(photos[0])
    pipeline.describer.error = error

    pipeline.analyze(gallery.id)

    analysis = pipeline.orchestrator.analysis_repo.get(photos[0].id)
    assert analysis.status == AnalysisStatus.FAILED
    assert analysis.error_code == code


def test_store_errors_propagate(pipeline, make_gallery, monkeypatch):
    """Test database failures are not recorded as analysis failures."""
    gallery, photos = make_gallery(1)
    pipeline.stage(photos[0])
    pipeline.orchestrator.start_analysis(gallery.id)

    def broken_touch(photo_id, now):
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(pipeline.orchestrator.analysis_repo, "touch", broken_touch)

    with pytest.raises(SQLAlchemyError):
        pipeline.orchestrator.process_one(photos[0].id)


def test_failure_after_indexing_discards_faces(pipeline, make_gallery, monkeypatch):
    """Test faces indexed by a failed attempt are removed from the collection."""
    gallery, photos = make_gallery(1)
    pipeline.stage(photos[0], faces=[FACE_BOX, SECOND_FACE_BOX])

    def broken_fuse(*args, **kwargs):
        raise ValueError("bad merge")

    monkeypatch.setattr("src.services.analysis.orchestrator.fuse_faces", broken_fuse)

    pipeline.analyze(gallery.id)

    assert _status(pipeline, photos[0]) == AnalysisStatus.FAILED
    assert sorted(pipeline.face_index.deleted_faces) == [
        f"ext-{photos[0].id}_face_0",
        f"ext-{photos[0].id}_face_1",
    ]
    assert pipeline.face_index.indexed == {}


def test_reclaimed_job_drops_result(pipeline, make_gallery, monkeypatch):
    """Test a job reset while running does not overwrite the new state."""
    gallery, photos = make_gallery(1)
    pipeline.stage(photos[0], faces=[FACE_BOX])
    pipeline.orchestrator.start_analysis(gallery.id)
    original_describe = pipeline.describer.describe

    def describe_then_reclaim(image_bytes, mime_type="image/jpeg"):
        pipeline.clock.advance(minutes=10)
        pipeline.orchestrator.recover_stalled(gallery.id)
        return original_describe(image_bytes, mime_type)

    monkeypatch.setattr(pipeline.describer, "describe", describe_then_reclaim)

    assert pipeline.orchestrator.process_one(photos[0].id) is None
    assert _status(pipeline, photos[0]) == AnalysisStatus.PENDING
    assert pipeline.face_index.deleted_faces == [f"ext-{photos[0].id}_face_0"]
    assert pipeline.db.query(PersonFace).count() == 0


def test_index_failure_leaves_face_unindexed(pipeline, make_gallery):
    """Test an indexing error does not fail the photo."""
    gallery, photos = make_gallery(1)
    pipeline.stage(photos[0], faces=[FACE_BOX])
    pipeline.face_index.index_error = FaceIndexError("index down", AnalysisErrorCode.API_ERROR)

    pipeline.analyze(gallery.id)

    assert _status(pipeline, photos[0]) == AnalysisStatus.COMPLETED
    face = pipeline.db.query(PersonFace).one()
    assert face.external_face_id is None
    assert face.person_cluster_id is None


def test_clustering_failure_after_completion_is_reconciled(pipeline, make_gallery, monkeypatch):
    """Test faces left unclustered by a crashed clustering step join on the next run."""
    gallery, photos = make_gallery(2)
    for photo in photos:
        pipeline.stage(photo, faces=[FACE_BOX], identities=["alice"])
    orchestrator = pipeline.orchestrator
    orchestrator.start_analysis(gallery.id)
    orchestrator.process_one(photos[0].id)

    def deadlocked(photo_id, collection_id):
        raise OperationalError("UPDATE person_faces", {}, Exception("deadlock detected"))

    monkeypatch.setattr(orchestrator.cluster_engine, "incorporate_faces", deadlocked)
    with pytest.raises(OperationalError):
        orchestrator.process_one(photos[1].id)
    monkeypatch.undo()

    assert _status(pipeline, photos[1]) == AnalysisStatus.COMPLETED
    assert orchestrator.process_one(photos[1].id) is None
    assert orchestrator.face_repo.photo_ids_with_unclustered_faces(gallery.id) == [photos[1].id]

    result = orchestrator.start_analysis(gallery.id)

    assert result.reconciled == 1
    assert result.pending == 0
    clusters = orchestrator.list_clusters(gallery.id)
    assert len(clusters) == 1
    assert set(clusters[0].photo_ids) == {photos[0].id, photos[1].id}
    assert orchestrator.face_repo.photo_ids_with_unclustered_faces(gallery.id) == []


def test_reconcile_retries_failed_face_search(pipeline, make_gallery):
    gallery, photos = make_gallery(2)
    for photo in photos:
        pipeline.stage(photo, faces=[FACE_BOX], identities=["alice"])
    pipeline.face_index.search_error = FaceIndexError("throttled", AnalysisErrorCode.RATE_LIMIT)
    pipeline.analyze(gallery.id)
    assert pipeline.db.query(PersonCluster).count() == 0

    pipeline.face_index.search_error = None

    assert pipeline.orchestrator.reconcile_clusters(gallery.id) == 2
    cluster = pipeline.db.query(PersonCluster).one()
    assert set(cluster.photo_ids) == {photos[0].id, photos[1].id}
    assert pipeline.orchestrator.reconcile_clusters(gallery.id) == 0


def test_reconcile_without_collection(pipeline, make_gallery):
    gallery, photos = make_gallery(1)
    pipeline.stage(photos[0], people=[DescribedPerson(appearance="guest")])
    pipeline.analyze(gallery.id)

    assert pipeline.orchestrator.reconcile_clusters(gallery.id) == 0
    assert pipeline.face_index.search_calls == []


# =============================================================================
# Progress, stalls and retries
# =============================================================================

def test_progress_rules(pipeline, make_gallery):
    """Test progress rounds, caps at 99 while outstanding, and hits 100 when done."""
    gallery, photos = make_gallery(3)
    for photo in photos:
        pipeline.stage(photo)
    orchestrator = pipeline.orchestrator
    orchestrator.start_analysis(gallery.id)

    seen = [orchestrator.compute_progress(gallery.id)]
    for photo in photos:
        orchestrator.process_one(photo.id)
        seen.append(orchestrator.compute_progress(gallery.id))

    assert seen == [0, 33, 67, 100]
    assert seen == sorted(seen)


def test_progress_caps_at_99_with_outstanding_work(pipeline, make_gallery):
    gallery, photos = make_gallery(200)
    orchestrator = pipeline.orchestrator
    orchestrator.start_analysis(gallery.id)

    for photo in photos[:199]:
        orchestrator.process_one(photo.id)

    assert orchestrator.compute_progress(gallery.id) == 99


def test_refresh_progress_enables_search(pipeline, make_gallery):
    gallery, photos = make_gallery(2)
    for photo in photos:
        pipeline.stage(photo)

    pipeline.analyze(gallery.id)

    assert pipeline.orchestrator.refresh_progress(gallery.id) == 100
    assert gallery.analysis_progress == 100
    assert gallery.ai_search_enabled is True


def test_refresh_progress_keeps_search_off_while_running(pipeline, make_gallery):
    gallery, photos = make_gallery(2)
    pipeline.stage(photos[0])
    pipeline.orchestrator.start_analysis(gallery.id)
    pipeline.orchestrator.process_one(photos[0].id)

    assert pipeline.orchestrator.refresh_progress(gallery.id) == 50
    assert gallery.ai_search_enabled is False


def test_stall_detection_and_recovery(pipeline, make_gallery):
    """Test a stuck job is detected and returned to the queue exactly once."""
    gallery, photos = make_gallery(2)
    orchestrator = pipeline.orchestrator
    orchestrator.start_analysis(gallery.id)
    orchestrator.analysis_repo.claim(photos[0].id, pipeline.clock())

    assert orchestrator.is_stalled(gallery.id) is False

    pipeline.clock.advance(seconds=301)
    assert orchestrator.is_stalled(gallery.id) is True
    assert orchestrator.recover_stalled(gallery.id) == 1
    assert orchestrator.recover_stalled(gallery.id) == 0
    assert orchestrator.is_stalled(gallery.id) is False
    assert _status(pipeline, photos[0]) == AnalysisStatus.PENDING


def test_start_analysis_recovers_stalled_jobs(pipeline, make_gallery):
    gallery, photos = make_gallery(1)
    orchestrator = pipeline.orchestrator
    orchestrator.start_analysis(gallery.id)
    orchestrator.analysis_repo.claim(photos[0].id, pipeline.clock())
    pipeline.clock.advance(minutes=6)

    result = orchestrator.start_analysis(gallery.id)

    assert result.recovered == 1
    assert result.pending == 1


def test_retry_failed_only_resets_retryable(pipeline, make_gallery):
    """Test retryFailed leaves image errors alone and reruns transport errors."""
    gallery, photos = make_gallery(2)
    pipeline.stage(photos[1])
    pipeline.describer.error = TimeoutError("timed out")
    pipeline.analyze(gallery.id)

    assert pipeline.orchestrator.analysis_repo.get(photos[0].id).error_code == AnalysisErrorCode.IMAGE_ERROR
    assert pipeline.orchestrator.analysis_repo.get(photos[1].id).error_code == AnalysisErrorCode.TIMEOUT

    pipeline.describer.error = None
    result = pipeline.analyze(gallery.id, AnalysisMode.retry_failed)

    assert result.reset == 1
    assert result.seeded == 0
    assert _status(pipeline, photos[0]) == AnalysisStatus.FAILED
    assert _status(pipeline, photos[1]) == AnalysisStatus.COMPLETED
    assert pipeline.orchestrator.analysis_repo.get(photos[1].id).retry_count == 0


def test_reanalyze_wipes_gallery(pipeline, make_gallery):
    """Test reanalyze drops faces, clusters and the collection before reseeding."""
    gallery, photos = make_gallery(2)
    for photo in photos:
        pipeline.stage(photo, faces=[FACE_BOX], identities=["bride"])
    pipeline.analyze(gallery.id)
    pipeline.orchestrator.refresh_progress(gallery.id)
    collection_id = gallery.face_collection_id
    assert pipeline.db.query(PersonCluster).count() == 1

    result = pipeline.orchestrator.start_analysis(gallery.id, AnalysisMode.reanalyze)

    assert result.reset == 2
    assert result.seeded == 2
    assert pipeline.face_index.deleted_collections == [collection_id]
    assert pipeline.db.query(PersonCluster).count() == 0
    assert pipeline.db.query(PersonFace).count() == 0
    assert gallery.analysis_progress == 0
    assert gallery.ai_search_enabled is False
    assert gallery.face_collection_id is None


# =============================================================================
# Status and lifecycle
# =============================================================================

def test_get_analysis_status(pipeline, make_gallery):
    gallery, photos = make_gallery(2)
    pipeline.stage(photos[0])
    pipeline.analyze(gallery.id)

    report = pipeline.orchestrator.get_analysis_status(gallery.id)

    assert report.total_photos == 2
    assert report.progress == 100
    assert report.stats == {"PENDING": 0, "PROCESSING": 0, "COMPLETED": 1, "FAILED": 1}
    assert report.is_stalled is False
    assert report.last_activity == pipeline.clock()


def test_list_failed_analyses(pipeline, make_gallery):
    gallery, photos = make_gallery(2)
    pipeline.stage(photos[1])
    pipeline.analyze(gallery.id)

    failed = pipeline.orchestrator.list_failed_analyses(gallery.id)

    assert [f.photo_id for f in failed] == [photos[0].id]
    assert failed[0].error_code == AnalysisErrorCode.IMAGE_ERROR
    assert failed[0].retryable is False


def test_toggle_ai_search(pipeline, make_gallery):
    gallery, _ = make_gallery(1)

    assert pipeline.orchestrator.toggle_ai_search(gallery.id, True).ai_search_enabled is True
    assert pipeline.orchestrator.toggle_ai_search(gallery.id, False).ai_search_enabled is False


def test_remove_photo_analysis_updates_clusters(pipeline, make_gallery):
    """Test removing a photo forgets its faces but keeps the person cluster."""
    gallery, photos = make_gallery(2)
    for photo in photos:
        pipeline.stage(photo, faces=[FACE_BOX], identities=["bride"])
    pipeline.analyze(gallery.id)
    cluster = pipeline.db.query(PersonCluster).one()
    assert set(cluster.photo_ids) == {photos[0].id, photos[1].id}

    assert pipeline.orchestrator.remove_photo_analysis(photos[0].id) is True

    pipeline.db.refresh(cluster)
    assert cluster.photo_ids == [photos[1].id]
    assert f"ext-{photos[0].id}_face_0" in pipeline.face_index.deleted_faces
    assert pipeline.orchestrator.analysis_repo.get(photos[0].id) is None
    assert pipeline.orchestrator.remove_photo_analysis(photos[0].id) is False


def test_list_clusters_most_photographed_first(pipeline, make_gallery):
    gallery, photos = make_gallery(3)
    pipeline.stage(photos[0], faces=[FACE_BOX], identities=["groom"])
    pipeline.stage(photos[1], faces=[FACE_BOX], identities=["bride"])
    pipeline.stage(photos[2], faces=[FACE_BOX], identities=["bride"])
    pipeline.analyze(gallery.id)

    clusters = pipeline.orchestrator.list_clusters(gallery.id)

    assert [c.photo_count for c in clusters] == [2, 1]
