"""Unit tests for EncodingWorker job processing (no worker threads)."""
import pytest
from unittest.mock import MagicMock
from venc.config.models import WorkerConfig
from venc.domain.models import EncodingStatus, JobStatus, WorkerState
from venc.pipeline.worker import EncodingWorker


def _submit(job_queue, records, video_id, locator=None):
    records.create(video_id)
    return job_queue.submit(video_id, locator or f"{video_id}.mp4")


def test_process_job_success_marks_record_ready(worker, job_queue, records, encoder):
    job_id = _submit(job_queue, records, "v1")
    job = job_queue.claim_next()

    worker.process_job(job)

    assert job_queue.get_job(job_id).status == JobStatus.COMPLETED
    record = records.get("v1")
    assert record.encoding_status == EncodingStatus.READY
    assert record.hls_manifest_url == "http://cdn.test/v1/manifest.m3u8"
    assert record.mp4_url == "http://cdn.test/v1/fallback.mp4"
    assert record.thumbnail_url == "http://cdn.test/v1/thumbnail.jpg"
    assert record.degraded_quality is False
    assert record.encoding_completed_at is not None
    assert encoder.calls == [("v1", "v1.mp4")]

def test_process_job_failure_requeues(worker, job_queue, records, encoder, failure_result):
    encoder.results = [failure_result("ffmpeg exited with code 1")]
    job_id = _submit(job_queue, records, "v1")

    worker.process_job(job_queue.claim_next())

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.QUEUED
    assert job.last_error == "ffmpeg exited with code 1"
    assert records.get("v1").encoding_status == EncodingStatus.PENDING

def test_terminal_failure_is_mirrored_to_record(worker, job_queue, records, encoder, failure_result):
    encoder.results = [failure_result("bad") for _ in range(3)]
    job_id = _submit(job_queue, records, "v2")

    for _ in range(3):
        worker.process_job(job_queue.claim_next())

    assert job_queue.get_job(job_id).status == JobStatus.FAILED
    record = records.get("v2")
    assert record.encoding_status == EncodingStatus.FAILED
    assert record.encoding_error == "bad"
    assert record.encoding_completed_at is not None

def test_availability_checked_before_every_job(worker, job_queue, records, encoder):
    _submit(job_queue, records, "v1")
    _submit(job_queue, records, "v2")

    worker.drain()

    assert encoder.availability_checks == 2

def test_unavailable_encoder_uses_fallback(worker, job_queue, records, encoder, raw_upload, storage_config):
    encoder.available = False
    locator = raw_upload("v3.mp4", b"untranscoded bytes")
    job_id = _submit(job_queue, records, "v3", locator)

    worker.process_job(job_queue.claim_next())

    assert encoder.calls == []
    assert job_queue.get_job(job_id).status == JobStatus.COMPLETED
    record = records.get("v3")
    assert record.encoding_status == EncodingStatus.READY
    assert record.degraded_quality is True
    assert record.mp4_url == "http://cdn.test/v3/video.mp4"
    assert record.hls_manifest_url is None
    served = storage_config.serving_dir / "v3" / "video.mp4"
    assert served.read_bytes() == b"untranscoded bytes"

def test_fallback_failure_is_a_job_failure(worker, job_queue, records, encoder):
    encoder.available = False
    job_id = _submit(job_queue, records, "v3", "missing.mp4")

    worker.process_job(job_queue.claim_next())

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.QUEUED
    assert "Raw object not found" in job.last_error

def test_encoder_exception_does_not_escape(worker, job_queue, records, encoder):
    encoder.encode = MagicMock(side_effect=RuntimeError("segfault"))
    job_id = _submit(job_queue, records, "v1")

    worker.process_job(job_queue.claim_next())

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.QUEUED
    assert job.last_error == "segfault"
    assert worker.in_flight_count == 0

def test_availability_check_error_falls_back(worker, job_queue, records, encoder, raw_upload, caplog):
    encoder.is_available = MagicMock(side_effect=OSError("fork failed"))
    locator = raw_upload("v1.mp4", b"raw bytes")
    job_id = _submit(job_queue, records, "v1", locator)

    worker.process_job(job_queue.claim_next())

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.attempts == 1
    assert job.last_error is None
    assert encoder.calls == []
    record = records.get("v1")
    assert record.encoding_status == EncodingStatus.READY
    assert record.degraded_quality is True
    assert record.mp4_url == "http://cdn.test/v1/video.mp4"
    assert "ENCODER_PROBE_ERROR" in caplog.text
    assert "JOB_ATTEMPT_FAILED" not in caplog.text

def test_missing_record_fails_the_job(worker, job_queue, records):
    job_id = job_queue.submit("ghost", "ghost.mp4")

    worker.process_job(job_queue.claim_next())

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.QUEUED
    assert "Video record not found" in job.last_error

def test_permanent_failure_retried_by_default(worker, job_queue, records, encoder, failure_result):
    encoder.results = [failure_result("No video stream", permanent=True)]
    job_id = _submit(job_queue, records, "v1")

    worker.process_job(job_queue.claim_next())

    assert job_queue.get_job(job_id).status == JobStatus.QUEUED

def test_permanent_failure_honored_when_enabled(job_queue, records, encoder, fallback, event_bus, failure_result):
    worker = EncodingWorker(
        queue=job_queue,
        encoder=encoder,
        fallback=fallback,
        records=records,
        event_bus=event_bus,
        config=WorkerConfig(honor_permanent_failures=True),
    )
    encoder.results = [failure_result("No video stream", permanent=True)]
    job_id = _submit(job_queue, records, "v1")

    worker.process_job(job_queue.claim_next())

    assert job_queue.get_job(job_id).status == JobStatus.FAILED
    assert job_queue.get_job(job_id).attempts == 1
    assert records.get("v1").encoding_status == EncodingStatus.FAILED

def test_drain_processes_all_jobs_in_order(worker, job_queue, records, encoder):
    for vid in ("v1", "v2", "v3"):
        _submit(job_queue, records, vid)

    processed = worker.drain()

    assert processed == 3
    assert [call[0] for call in encoder.calls] == ["v1", "v2", "v3"]
    assert job_queue.stats().completed == 3

def test_drain_retries_until_success(worker, job_queue, records, encoder, failure_result):
    encoder.results = [failure_result("first"), failure_result("second")]
    job_id = _submit(job_queue, records, "v1")

    worker.drain()

    job = job_queue.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.attempts == 3
    assert records.get("v1").encoding_status == EncodingStatus.READY

def test_record_write_failure_on_terminal_is_logged(worker, job_queue, records, encoder, failure_result, caplog):
    encoder.results = [failure_result("bad")]
    records.mark_failed = MagicMock(side_effect=RuntimeError("db down"))
    job_queue.config.max_attempts = 1
    job_id = _submit(job_queue, records, "v1")

    worker.process_job(job_queue.claim_next())

    assert job_queue.get_job(job_id).status == JobStatus.FAILED
    assert "RECORD_UPDATE_FAILED" in caplog.text

def test_log_stats_writes_queue_counts(worker, job_queue, caplog):
    job_queue.submit("v1", "v1.mp4")

    with caplog.at_level("INFO"):
        worker.log_stats()

    assert "QUEUE_STATS: queued=1 in_progress=0 completed=0 failed=0 total=1" in caplog.text

def test_initial_state_is_stopped(worker):
    assert worker.state == WorkerState.STOPPED
    assert worker.in_flight_count == 0

def test_stop_when_not_running_is_noop(worker):
    assert worker.stop() is True
    assert worker.state == WorkerState.STOPPED
