from datetime import datetime, timedelta, timezone
from io import BytesIO
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import httpx
import pytest
from PIL import Image

from app.core.errors import InvalidTransitionError, PhotoNotFoundError, ValidationError
from app.jobs.queue import ProcessingQueue
from app.jobs.workers import ProcessingWorker, requeue_stalled_photos
from app.models.photo import ProcessingStatus
from app.services.analysis import AnalysisClient
from app.services.metadata import analyze_quality
from app.services.thumbnail import generate_thumbnail
from app.services.processing import (
    ProcessingStateMachine,
    can_transition,
    progress_for,
    sources_for,
)


def _worker(catalog, storage, worker_id="worker-a", batch_size=10, lease_seconds=60):
    return ProcessingWorker(
        catalog,
        storage,
        ProcessingQueue(None),
        analysis=AnalysisClient(None),
        worker_id=worker_id,
        batch_size=batch_size,
        lease_seconds=lease_seconds,
        poll_seconds=0.01,
    )


def _past():
    return datetime.now(timezone.utc) - timedelta(minutes=5)


def test_transition_table():
    assert can_transition(ProcessingStatus.UPLOADED, ProcessingStatus.PROCESSING)
    assert can_transition(ProcessingStatus.PROCESSING, ProcessingStatus.COMPLETED)
    assert can_transition(ProcessingStatus.PROCESSING, ProcessingStatus.FAILED)
    assert can_transition(ProcessingStatus.FAILED, ProcessingStatus.PROCESSING)
    assert not can_transition(ProcessingStatus.COMPLETED, ProcessingStatus.PROCESSING)
    assert not can_transition(ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)
    assert not can_transition(ProcessingStatus.PROCESSING, ProcessingStatus.UPLOADED)
    assert sources_for(ProcessingStatus.UPLOADED) == []
    assert set(sources_for(ProcessingStatus.PROCESSING)) == {ProcessingStatus.UPLOADED, ProcessingStatus.FAILED}


def test_progress_hint():
    assert progress_for("uploaded") == 10.0
    assert progress_for(ProcessingStatus.PROCESSING) == 50.0
    assert progress_for("completed") == 100.0
    assert progress_for("failed") == 0.0
    assert progress_for("archived") == 0.0


@pytest.mark.asyncio
async def test_start_processing_moves_record_and_wakes_worker(catalog, make_photo, owner_id):
    queue = MagicMock(spec=ProcessingQueue)
    state_machine = ProcessingStateMachine(catalog, queue)
    photo = await make_photo(owner_id)

    await state_machine.start_processing(photo.id)

    stored = await catalog.get_by_id(photo.id)
    assert stored.processing_status == ProcessingStatus.PROCESSING.value
    queue.push.assert_called_once_with(str(photo.id))


@pytest.mark.asyncio
async def test_completed_record_cannot_move_backwards(catalog, make_photo, set_fields, owner_id):
    state_machine = ProcessingStateMachine(catalog)
    photo = await make_photo(owner_id)
    await set_fields(photo.id, processing_status=ProcessingStatus.COMPLETED.value)

    with pytest.raises(InvalidTransitionError):
        await state_machine.start_processing(photo.id)
    with pytest.raises(InvalidTransitionError):
        await state_machine.transition(photo.id, ProcessingStatus.UPLOADED)

    stored = await catalog.get_by_id(photo.id)
    assert stored.processing_status == ProcessingStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_transition_of_unknown_record(catalog):
    with pytest.raises(PhotoNotFoundError):
        await ProcessingStateMachine(catalog).start_processing(uuid4())


@pytest.mark.asyncio
async def test_retry_requeues_failed_record(catalog, make_photo, set_fields, owner_id):
    queue = MagicMock(spec=ProcessingQueue)
    state_machine = ProcessingStateMachine(catalog, queue)
    photo = await make_photo(owner_id)
    await set_fields(
        photo.id,
        processing_status=ProcessingStatus.FAILED.value,
        processing_errors=["Original file is missing from storage."],
    )

    retried = await state_machine.retry(photo.id, owner_id)

    assert retried.processing_status == ProcessingStatus.PROCESSING.value
    assert retried.lease_owner is None
    assert retried.processing_errors == ["Original file is missing from storage."]
    queue.push.assert_called_once_with(str(photo.id))


@pytest.mark.asyncio
async def test_retry_only_applies_to_failed_records(catalog, make_photo, set_fields, owner_id):
    state_machine = ProcessingStateMachine(catalog)
    photo = await make_photo(owner_id)
    await set_fields(photo.id, processing_status=ProcessingStatus.COMPLETED.value)

    with pytest.raises(InvalidTransitionError):
        await state_machine.retry(photo.id, owner_id)
    with pytest.raises(PhotoNotFoundError):
        await state_machine.retry(photo.id, uuid4())


@pytest.mark.asyncio
async def test_worker_completes_ingested_photo(catalog, storage, owner_id, ingested_photo):
    photo = await ingested_photo(width=1200, height=900)

    processed = await _worker(catalog, storage).run_once()

    assert processed == 1
    done = await catalog.get_by_id(photo.id)
    assert done.processing_status == ProcessingStatus.COMPLETED.value
    assert done.processed_at is not None
    assert done.thumbnail_generated is True
    assert done.lease_owner is None
    assert done.lease_expires_at is None
    assert done.processing_attempts == 1
    assert set(done.storage_paths) == {"original", "thumbnail", "preview"}
    assert done.storage_paths["thumbnail"] == f"photos/{owner_id}/{photo.id}/thumbnail.jpg"
    assert done.ai_analysis["dominant_colors"][0].startswith("#")
    assert done.ai_analysis["scene_types"] == []
    assert done.quality_score == done.ai_analysis["quality_score"]

    thumbnail = await storage.fetch(done.storage_paths["thumbnail"], "photos")
    with Image.open(BytesIO(thumbnail)) as image:
        assert image.size == (300, 225)
    preview = await storage.fetch(done.storage_paths["preview"], "photos")
    with Image.open(BytesIO(preview)) as image:
        assert image.size == (800, 600)


@pytest.mark.asyncio
async def test_one_failure_does_not_block_the_batch(catalog, storage, make_photo, owner_id, ingested_photo):
    missing = await make_photo(owner_id, uploaded_at=_past())
    good = await ingested_photo(width=400, height=300)

    processed = await _worker(catalog, storage).run_once()

    assert processed == 2
    failed = await catalog.get_by_id(missing.id)
    assert failed.processing_status == ProcessingStatus.FAILED.value
    assert failed.processing_errors == ["Original file is missing from storage."]
    assert failed.processed_at is None
    done = await catalog.get_by_id(good.id)
    assert done.processing_status == ProcessingStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_claims_oldest_records_first(catalog, make_photo, owner_id):
    now = datetime.now(timezone.utc)
    newest = await make_photo(owner_id, uploaded_at=now)
    oldest = await make_photo(owner_id, uploaded_at=now - timedelta(hours=2))
    middle = await make_photo(owner_id, uploaded_at=now - timedelta(hours=1))

    first = await catalog.claim_for_processing("worker-a", 1, 60)
    second = await catalog.claim_for_processing("worker-a", 1, 60)
    third = await catalog.claim_for_processing("worker-a", 1, 60)

    assert [photo.id for photo in first + second + third] == [oldest.id, middle.id, newest.id]


@pytest.mark.asyncio
async def test_expired_lease_is_reclaimed_and_stale_worker_loses(catalog, make_photo, set_fields, owner_id):
    photo = await make_photo(owner_id)

    claimed = await catalog.claim_for_processing("worker-a", 10, 60)
    assert [item.id for item in claimed] == [photo.id]
    assert await catalog.claim_for_processing("worker-b", 10, 60) == []

    await set_fields(photo.id, lease_expires_at=_past())
    reclaimed = await catalog.claim_for_processing("worker-b", 10, 60)

    assert [item.id for item in reclaimed] == [photo.id]
    assert reclaimed[0].processing_attempts == 2
    assert reclaimed[0].lease_owner == "worker-b"
    assert await catalog.complete_processing(photo.id, "worker-a", {}, None) is False
    assert await catalog.fail_processing(photo.id, "worker-a", "late") is False
    assert await catalog.complete_processing(photo.id, "worker-b", {}, None) is True

    done = await catalog.get_by_id(photo.id)
    assert done.processing_status == ProcessingStatus.COMPLETED.value
    assert done.processing_errors == []


@pytest.mark.asyncio
async def test_deleted_records_are_not_claimed(catalog, make_photo, owner_id):
    await make_photo(owner_id, is_deleted=True)

    assert await catalog.claim_for_processing("worker-a", 10, 60) == []


@pytest.mark.asyncio
async def test_status_report_defaults_to_processing(catalog, make_photo, set_fields, owner_id):
    state_machine = ProcessingStateMachine(catalog)
    working = await make_photo(owner_id, filename="working.jpg")
    await state_machine.start_processing(working.id)
    failed = await make_photo(owner_id, filename="failed.jpg")
    await set_fields(failed.id, processing_status=ProcessingStatus.FAILED.value, processing_errors=["boom"])
    await make_photo(uuid4(), filename="foreign.jpg")

    report = await state_machine.status_report(owner_id)

    assert [entry.filename for entry in report] == ["working.jpg"]
    assert report[0].progress == 50.0
    assert report[0].completed_steps == ["upload", "metadata"]

    failures = await state_machine.status_report(owner_id, status="FAILED")
    assert [entry.errors for entry in failures] == [["boom"]]

    with pytest.raises(ValidationError):
        await state_machine.status_report(owner_id, status="archived")


@pytest.mark.asyncio
async def test_requeue_stalled_photos(catalog, make_photo, set_fields, owner_id):
    stalled = await make_photo(owner_id)
    await set_fields(
        stalled.id,
        processing_status=ProcessingStatus.PROCESSING.value,
        lease_owner="worker-dead",
        lease_expires_at=_past(),
    )
    active = await make_photo(owner_id)
    await set_fields(
        active.id,
        processing_status=ProcessingStatus.PROCESSING.value,
        lease_owner="worker-live",
        lease_expires_at=datetime.now(timezone.utc) + timedelta(minutes=5),
    )
    queue = MagicMock(spec=ProcessingQueue)

    count = await requeue_stalled_photos(catalog, queue)

    assert count == 1
    queue.push.assert_called_once_with(str(stalled.id))


@pytest.mark.asyncio
async def test_sweep_ignores_freshly_started_records(catalog, make_photo, set_fields, owner_id):
    fresh = await make_photo(owner_id)
    await ProcessingStateMachine(catalog).start_processing(fresh.id)
    idle = await make_photo(owner_id)
    await set_fields(
        idle.id,
        processing_status=ProcessingStatus.PROCESSING.value,
        updated_at=datetime.now(timezone.utc) - timedelta(hours=1),
    )

    stalled = await catalog.find_stalled(unclaimed_minutes=10)

    assert [photo.id for photo in stalled] == [idle.id]


@pytest.mark.asyncio
async def test_default_workers_hold_distinct_leases(catalog, storage, make_photo, set_fields, owner_id):
    first = ProcessingWorker(catalog, storage, ProcessingQueue(None), analysis=AnalysisClient(None))
    second = ProcessingWorker(catalog, storage, ProcessingQueue(None), analysis=AnalysisClient(None))
    assert first.worker_id != second.worker_id
    assert first.worker_id.startswith("photo-worker-")

    photo = await make_photo(owner_id)
    await catalog.claim_for_processing(first.worker_id, 10, 60)
    await set_fields(photo.id, lease_expires_at=_past())
    await catalog.claim_for_processing(second.worker_id, 10, 60)

    assert await catalog.fail_processing(photo.id, first.worker_id, "late") is False
    assert await catalog.renew_lease(photo.id, first.worker_id, 60) is False
    current = await catalog.get_by_id(photo.id)
    assert current.processing_status == ProcessingStatus.PROCESSING.value
    assert current.lease_owner == second.worker_id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, message",
    [
        (SyntaxError("broken PNG chunk"), "Image could not be processed: SyntaxError"),
        (RuntimeError("boom"), "Unexpected processing error: RuntimeError"),
    ],
)
async def test_unexpected_render_errors_fail_only_that_record(catalog, storage, owner_id, ingested_photo, error, message):
    broken = await ingested_photo(filename="broken.jpg", width=200, height=150)
    healthy = await ingested_photo(filename="healthy.jpg", width=400, height=300)

    def _thumbnail(data):
        with Image.open(BytesIO(data)) as image:
            if image.size == (200, 150):
                raise error
        return generate_thumbnail(data)

    with patch("app.jobs.workers.generate_thumbnail", side_effect=_thumbnail):
        processed = await _worker(catalog, storage).run_once()

    assert processed == 2
    failed = await catalog.get_by_id(broken.id)
    assert failed.processing_status == ProcessingStatus.FAILED.value
    assert failed.processing_errors == [message]
    assert (await catalog.get_by_id(healthy.id)).processing_status == ProcessingStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_queue_push_runs_off_the_event_loop(catalog, make_photo, owner_id):
    queue = MagicMock(spec=ProcessingQueue)
    photo = await make_photo(owner_id)

    with patch("app.services.processing.asyncio.to_thread", new=AsyncMock()) as to_thread:
        await ProcessingStateMachine(catalog, queue).start_processing(photo.id)

    to_thread.assert_awaited_once_with(queue.push, str(photo.id))
    queue.push.assert_not_called()


@pytest.mark.asyncio
async def test_analysis_uses_remote_scene_types(image_bytes):
    def handler(request):
        assert request.url.path == "/analyze"
        return httpx.Response(200, json={"scene_types": ["beach"], "face_count": 2})

    client = AnalysisClient("http://analysis.local/", transport=httpx.MockTransport(handler))
    result = await client.analyze(image_bytes(200, 100), analyze_quality(4000, 3000))

    assert result["scene_types"] == ["beach"]
    assert result["face_count"] == 2
    assert result["quality_score"] == 10.0
    assert result["enhancement_recommended"] is False


@pytest.mark.asyncio
async def test_analysis_falls_back_when_service_errors(image_bytes):
    client = AnalysisClient(
        "http://analysis.local", transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )
    result = await client.analyze(image_bytes(200, 100), analyze_quality(1000, 1000))

    assert result["scene_types"] == []
    assert result["face_count"] == 0
    assert result["quality_score"] == 2.0
    assert result["enhancement_recommended"] is True
    assert result["suggestions"]
