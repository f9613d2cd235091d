"""Background worker draining the encoding job queue.

Lifecycle: STOPPED → STARTING → RUNNING → STOPPING → STOPPED.

One scheduling thread processes jobs strictly one at a time. It is woken by
a poll timer and, as an extra out-of-band tick, by the queue's JobAdded
event; the timer alone is enough to make progress if a notification is
missed. A second housekeeping thread logs queue stats and purges expired
jobs on their own intervals so they keep running during long encodes.

Job failures never escape process_job(): they are recorded on the queue and
mirrored into the video record, and the loop carries on.
"""

import logging
import threading
import time
from typing import Dict, Optional
from venc.config.models import WorkerConfig
from venc.domain.events import JobAdded
from venc.domain.models import EncodingJob, JobStatus, WorkerState
from venc.infrastructure.event_bus import EventBus
from venc.infrastructure.fallback import FallbackAdapter
from venc.infrastructure.ffmpeg import FFmpegEncoder
from venc.infrastructure.video_records import VideoRecordStore
from venc.pipeline.job_queue import EncodingJobQueue


class EncodingWorker:
    """Drains EncodingJobQueue through the ffmpeg encoder or the fallback copy.

    Args:
        queue: Job queue shared with the upload ingest.
        encoder: Encoder adapter; availability is re-checked before every job.
        fallback: Adapter used while the encoder is unavailable.
        records: Video record store receiving READY/FAILED outcomes.
        event_bus: Bus on which the queue publishes JobAdded.
        config: Timer intervals and shutdown bounds.
    """

    def __init__(
        self,
        queue: EncodingJobQueue,
        encoder: FFmpegEncoder,
        fallback: FallbackAdapter,
        records: VideoRecordStore,
        event_bus: EventBus,
        config: Optional[WorkerConfig] = None,
    ):
        self.queue = queue
        self.encoder = encoder
        self.fallback = fallback
        self.records = records
        self.event_bus = event_bus
        self.config = config or WorkerConfig()
        self.logger = logging.getLogger(__name__)

        self._state = WorkerState.STOPPED
        self._state_lock = threading.Lock()
        # Serializes "check stopping + claim + register in flight" against stop()
        self._claim_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._in_flight: Dict[str, EncodingJob] = {}
        self._in_flight_lock = threading.Lock()
        self._scheduler_thread: Optional[threading.Thread] = None
        self._housekeeping_thread: Optional[threading.Thread] = None

    @property
    def state(self) -> WorkerState:
        with self._state_lock:
            return self._state

    @property
    def in_flight_count(self) -> int:
        with self._in_flight_lock:
            return len(self._in_flight)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Starts the worker threads. Returns False if it was not STOPPED."""
        with self._state_lock:
            if self._state != WorkerState.STOPPED:
                self.logger.warning(f"WORKER_START_IGNORED: state={self._state.value}")
                return False
            self._state = WorkerState.STARTING

        available = self._encoder_available()
        if not available:
            self.logger.error("WORKER_START: ffmpeg not available - jobs will use fallback mode until it is")

        stop_event = threading.Event()
        self._stop_event = stop_event
        self._wake.clear()
        self.event_bus.subscribe(JobAdded, self._on_job_added)

        self._scheduler_thread = threading.Thread(
            target=self._run_scheduler, args=(stop_event,), name="venc-worker", daemon=True
        )
        self._housekeeping_thread = threading.Thread(
            target=self._run_housekeeping, args=(stop_event,), name="venc-housekeeping", daemon=True
        )
        self._scheduler_thread.start()
        self._housekeeping_thread.start()

        with self._state_lock:
            self._state = WorkerState.RUNNING
        self.logger.info(
            f"WORKER_STARTED: ffmpeg_available={available} poll={self.config.poll_interval_s:g}s "
            f"stats={self.config.stats_interval_s:g}s cleanup={self.config.cleanup_interval_s:g}s"
        )
        # Pick up anything queued before we subscribed
        self._wake.set()
        return True

    def stop(self, timeout_s: Optional[float] = None) -> bool:
        """Stops claiming jobs and waits (bounded) for in-flight work.

        Returns True if nothing was left in flight. On timeout a single
        warning is logged and the running encode is left alone; its ffmpeg
        process is not killed.
        """
        with self._state_lock:
            if self._state != WorkerState.RUNNING:
                return self._state == WorkerState.STOPPED
            self._state = WorkerState.STOPPING

        with self._claim_lock:
            self._stop_event.set()
        self.event_bus.unsubscribe(JobAdded, self._on_job_added)
        self._wake.set()

        timeout = self.config.shutdown_timeout_s if timeout_s is None else timeout_s
        deadline = time.monotonic() + timeout
        pending = self.in_flight_count
        while pending > 0:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            self.logger.info(f"WORKER_STOPPING: waiting for pending_jobs={pending}")
            time.sleep(min(self.config.shutdown_poll_interval_s, remaining))
            pending = self.in_flight_count

        if pending > 0:
            self.logger.warning(f"WORKER_STOP_TIMEOUT: shutdown with pending_jobs={pending} still processing")
        else:
            for thread in (self._scheduler_thread, self._housekeeping_thread):
                if thread is not None and thread is not threading.current_thread():
                    thread.join(timeout=self.config.shutdown_poll_interval_s)

        with self._state_lock:
            self._state = WorkerState.STOPPED
        self.logger.info("WORKER_STOPPED")
        return pending == 0

    def _on_job_added(self, event: JobAdded) -> None:
        self._wake.set()

    def _encoder_available(self) -> bool:
        """A probe that raises counts as unavailable."""
        try:
            return bool(self.encoder.is_available())
        except Exception as e:
            self.logger.error(f"ENCODER_PROBE_ERROR: {e!r}")
            return False

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _run_scheduler(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self._wake.wait(timeout=self.config.poll_interval_s)
            self._wake.clear()
            if stop_event.is_set():
                break
            try:
                self._drain(stop_event)
            except Exception as e:
                # Keep the loop alive whatever happens inside a drain pass
                self.logger.error(f"WORKER_LOOP_ERROR: {e}")

    def _run_housekeeping(self, stop_event: threading.Event) -> None:
        now = time.monotonic()
        next_stats = now + self.config.stats_interval_s
        next_cleanup = now + self.config.cleanup_interval_s
        while True:
            timeout = max(0.0, min(next_stats, next_cleanup) - time.monotonic())
            if stop_event.wait(timeout):
                break
            now = time.monotonic()
            if now >= next_stats:
                self.log_stats()
                next_stats = now + self.config.stats_interval_s
            if now >= next_cleanup:
                try:
                    self.queue.cleanup()
                except Exception as e:
                    self.logger.error(f"QUEUE_CLEANUP_ERROR: {e}")
                next_cleanup = now + self.config.cleanup_interval_s

    def log_stats(self) -> None:
        try:
            stats = self.queue.stats()
        except Exception as e:
            self.logger.error(f"QUEUE_STATS_ERROR: {e}")
            return
        self.logger.info(
            f"QUEUE_STATS: queued={stats.queued} in_progress={stats.in_progress} "
            f"completed={stats.completed} failed={stats.failed} total={stats.total} "
            f"worker_in_flight={self.in_flight_count}"
        )

    def drain(self) -> int:
        """Processes queued jobs one at a time until none is claimable.

        Returns the number of jobs processed.
        """
        return self._drain(self._stop_event)

    def _drain(self, stop_event: threading.Event) -> int:
        processed = 0
        while True:
            with self._claim_lock:
                if stop_event.is_set():
                    break
                job = self.queue.claim_next()
                if job is None:
                    break
                self._track(job)
            self.process_job(job)
            processed += 1
            # Keep going under bursty load instead of waiting for the next tick
            if not self.queue.has_available_jobs():
                break
        return processed

    def _track(self, job: EncodingJob) -> None:
        with self._in_flight_lock:
            self._in_flight[job.id] = job

    def _untrack(self, job: EncodingJob) -> None:
        with self._in_flight_lock:
            self._in_flight.pop(job.id, None)

    # ------------------------------------------------------------------
    # Job processing
    # ------------------------------------------------------------------

    def process_job(self, job: EncodingJob) -> None:
        """Runs one claimed job to a resolution on the queue. Never raises."""
        self._track(job)
        start_time = time.monotonic()
        self.logger.info(
            f"JOB_START: job_id={job.id} video_id={job.video_id} "
            f"attempt={job.attempts}/{job.max_attempts}"
        )
        try:
            if self._encoder_available():
                self._process_encoded(job, start_time)
            else:
                self._process_fallback(job, start_time)
        except Exception as e:
            self.logger.error(f"JOB_EXCEPTION: job_id={job.id} video_id={job.video_id} error={e!r}")
            self._resolve_failure(job, str(e) or type(e).__name__, True, start_time)
        finally:
            self._untrack(job)

    def _process_encoded(self, job: EncodingJob, start_time: float) -> None:
        result = self.encoder.encode(job.video_id, job.input_locator)
        if not result.success:
            allow_retry = not (result.permanent and self.config.honor_permanent_failures)
            self._resolve_failure(job, result.error or "Encoding failed", allow_retry, start_time)
            return

        outputs = result.outputs
        self.records.mark_ready(
            job.video_id,
            hls_manifest_url=outputs.adaptive_manifest_url,
            mp4_url=outputs.progressive_url,
            thumbnail_url=outputs.thumbnail_url,
            degraded_quality=False,
        )
        self.queue.complete(job.id)
        duration = time.monotonic() - start_time
        self.logger.info(
            f"JOB_DONE: job_id={job.id} video_id={job.video_id} attempt={job.attempts} "
            f"mode=ffmpeg duration={duration:.2f}s manifest={outputs.adaptive_manifest_url}"
        )

    def _process_fallback(self, job: EncodingJob, start_time: float) -> None:
        self.logger.info(f"FALLBACK_MODE: job_id={job.id} video_id={job.video_id} (ffmpeg not available)")
        result = self.fallback.copy_raw_to_serving(job.video_id, job.input_locator)
        self.records.mark_ready(job.video_id, mp4_url=result.url, degraded_quality=True)
        self.queue.complete(job.id)
        duration = time.monotonic() - start_time
        self.logger.info(
            f"JOB_DONE: job_id={job.id} video_id={job.video_id} attempt={job.attempts} "
            f"mode=fallback duration={duration:.2f}s url={result.url}"
        )

    def _resolve_failure(self, job: EncodingJob, message: str, allow_retry: bool, start_time: float) -> None:
        duration = time.monotonic() - start_time
        self.logger.error(
            f"JOB_ATTEMPT_FAILED: job_id={job.id} video_id={job.video_id} attempt={job.attempts} "
            f"duration={duration:.2f}s error={message}"
        )
        resolved = self.queue.fail(job.id, message, allow_retry=allow_retry)
        if resolved is None or resolved.status != JobStatus.FAILED:
            return
        try:
            self.records.mark_failed(job.video_id, message)
        except Exception as e:
            self.logger.error(f"RECORD_UPDATE_FAILED: video_id={job.video_id} error={e}")
