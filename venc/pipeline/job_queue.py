"""In-process queue of video encoding jobs.

The job table is the only shared mutable state of the encoding subsystem;
every read and write goes through the methods below, which hold one lock.
Callers always receive copies, never the stored records. Events are
published after the lock is released so subscribers may call back into the
queue.

Jobs live in memory only: a process restart loses them. Running several
worker processes against one logical queue would need a durable, lease-based
claim table instead.
"""

import logging
import threading
import uuid
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, Optional
from venc.config.models import QueueConfig
from venc.domain.events import Event, JobAdded, JobCompleted, JobFailed, JobRetrying
from venc.domain.models import ACTIVE_STATUSES, TERMINAL_STATUSES, EncodingJob, JobStatus, QueueStats
from venc.infrastructure.event_bus import EventBus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EncodingJobQueue:
    """FIFO job queue with per-video exclusivity and bounded retries.

    Args:
        event_bus: Bus receiving JobAdded/JobCompleted/JobRetrying/JobFailed.
        config: Retry budget and retention window.
        clock: Source of "now"; injectable for tests.
    """

    def __init__(
        self,
        event_bus: EventBus,
        config: Optional[QueueConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.event_bus = event_bus
        self.config = config or QueueConfig()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._jobs: Dict[str, EncodingJob] = {}
        self._pending: Deque[str] = deque()
        self._in_progress_videos: Dict[str, str] = {}  # video_id -> job_id

    def new_job(self, video_id: str, input_locator: str) -> EncodingJob:
        """Builds a QUEUED job for the given upload (not yet enqueued)."""
        now = self.clock()
        return EncodingJob(
            id=f"job-{video_id}-{uuid.uuid4().hex[:12]}",
            video_id=video_id,
            input_locator=input_locator,
            max_attempts=self.config.max_attempts,
            created_at=now,
            updated_at=now,
        )

    def _active_job_for_video(self, video_id: str) -> Optional[EncodingJob]:
        for job in self._jobs.values():
            if job.video_id == video_id and job.status in ACTIVE_STATUSES:
                return job
        return None

    def enqueue(self, job: EncodingJob) -> bool:
        """Adds a QUEUED job. Returns False (and changes nothing) when the
        video already has a QUEUED or IN_PROGRESS job or the id is taken."""
        with self._lock:
            existing = self._active_job_for_video(job.video_id)
            if existing is not None:
                self.logger.info(
                    f"ENQUEUE_DUPLICATE: video_id={job.video_id} existing_job={existing.id} "
                    f"status={existing.status.value}"
                )
                return False
            if job.id in self._jobs:
                self.logger.warning(f"ENQUEUE_DUPLICATE_ID: job_id={job.id}")
                return False

            stored = job.model_copy()
            stored.status = JobStatus.QUEUED
            self._jobs[stored.id] = stored
            self._pending.append(stored.id)
            queue_length = len(self._pending)
            snapshot = stored.model_copy()

        self.logger.info(f"JOB_QUEUED: job_id={snapshot.id} video_id={snapshot.video_id} queue_length={queue_length}")
        self._publish(JobAdded(job=snapshot))
        return True

    def submit(self, video_id: str, input_locator: str) -> Optional[str]:
        """Creates and enqueues a job for an accepted upload. Returns the job
        id, or None when the video already has active work."""
        job = self.new_job(video_id, input_locator)
        return job.id if self.enqueue(job) else None

    def _next_eligible_index(self) -> Optional[int]:
        for index, job_id in enumerate(self._pending):
            job = self._jobs.get(job_id)
            if job is not None and job.video_id not in self._in_progress_videos:
                return index
        return None

    def claim_next(self) -> Optional[EncodingJob]:
        """Moves the oldest eligible QUEUED job to IN_PROGRESS and returns a copy."""
        with self._lock:
            index = self._next_eligible_index()
            if index is None:
                return None
            job_id = self._pending[index]
            del self._pending[index]

            job = self._jobs[job_id]
            now = self.clock()
            job.status = JobStatus.IN_PROGRESS
            job.attempts += 1
            job.started_at = now
            job.updated_at = now
            self._in_progress_videos[job.video_id] = job.id
            snapshot = job.model_copy()

        self.logger.info(
            f"JOB_CLAIMED: job_id={snapshot.id} video_id={snapshot.video_id} "
            f"attempt={snapshot.attempts}/{snapshot.max_attempts}"
        )
        return snapshot

    def _take_in_progress(self, job_id: str, operation: str) -> Optional[EncodingJob]:
        """Returns the stored job if it is IN_PROGRESS; logs and returns None otherwise.
        Caller holds the lock."""
        job = self._jobs.get(job_id)
        if job is None:
            self.logger.warning(f"QUEUE_INCONSISTENCY: {operation} on unknown job_id={job_id}")
            return None
        if job.status != JobStatus.IN_PROGRESS:
            self.logger.warning(
                f"QUEUE_INCONSISTENCY: {operation} on job_id={job_id} with status={job.status.value}"
            )
            return None
        self._in_progress_videos.pop(job.video_id, None)
        return job

    def complete(self, job_id: str) -> Optional[EncodingJob]:
        """Marks an IN_PROGRESS job COMPLETED. Unknown or already resolved ids are a no-op."""
        with self._lock:
            job = self._take_in_progress(job_id, "complete")
            if job is None:
                return None
            job.status = JobStatus.COMPLETED
            job.updated_at = self.clock()
            snapshot = job.model_copy()

        self.logger.info(f"JOB_COMPLETED: job_id={job_id} video_id={snapshot.video_id} attempts={snapshot.attempts}")
        self._publish(JobCompleted(job=snapshot))
        return snapshot

    def fail(self, job_id: str, error_message: str, allow_retry: bool = True) -> Optional[EncodingJob]:
        """Records a failed attempt.

        The job goes back to the tail of the queue while retries are allowed
        and attempts remain; otherwise it becomes terminally FAILED. Returns
        the resulting job, or None if job_id was not IN_PROGRESS.
        """
        with self._lock:
            job = self._take_in_progress(job_id, "fail")
            if job is None:
                return None
            job.last_error = error_message
            job.updated_at = self.clock()
            if allow_retry and job.attempts < job.max_attempts:
                job.status = JobStatus.QUEUED
                self._pending.append(job.id)
                event: Event = JobRetrying(job=job.model_copy(), error_message=error_message)
            else:
                job.status = JobStatus.FAILED
                event = JobFailed(job=job.model_copy(), error_message=error_message)
            snapshot = job.model_copy()

        if snapshot.status == JobStatus.QUEUED:
            self.logger.warning(
                f"JOB_RETRY: job_id={job_id} video_id={snapshot.video_id} "
                f"attempt={snapshot.attempts}/{snapshot.max_attempts} error={error_message}"
            )
        else:
            self.logger.error(
                f"JOB_FAILED: job_id={job_id} video_id={snapshot.video_id} "
                f"attempts={snapshot.attempts} retry_allowed={allow_retry} error={error_message}"
            )
        self._publish(event)
        return snapshot

    def has_available_jobs(self) -> bool:
        with self._lock:
            return self._next_eligible_index() is not None

    def get_job(self, job_id: str) -> Optional[EncodingJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job else None

    def get_job_by_video_id(self, video_id: str) -> Optional[EncodingJob]:
        """Returns the most recent job for a video."""
        with self._lock:
            for job in reversed(list(self._jobs.values())):
                if job.video_id == video_id:
                    return job.model_copy()
            return None

    def stats(self) -> QueueStats:
        counts = {status: 0 for status in JobStatus}
        with self._lock:
            for job in self._jobs.values():
                counts[job.status] += 1
            total = len(self._jobs)
        return QueueStats(
            queued=counts[JobStatus.QUEUED],
            in_progress=counts[JobStatus.IN_PROGRESS],
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
            total=total,
        )

    def cleanup(self) -> int:
        """Purges COMPLETED/FAILED jobs resolved longer ago than the retention window."""
        cutoff = self.clock() - timedelta(seconds=self.config.retention_s)
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.status in TERMINAL_STATUSES and job.updated_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]

        if expired:
            self.logger.info(f"QUEUE_CLEANUP: removed={len(expired)}")
        return len(expired)

    def _publish(self, event: Event) -> None:
        self.event_bus.publish(event)
