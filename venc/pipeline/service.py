import logging
from dataclasses import dataclass
from typing import Optional
from venc.config.models import AppConfig
from venc.domain.models import QueueStats
from venc.infrastructure.event_bus import EventBus
from venc.infrastructure.fallback import FallbackAdapter
from venc.infrastructure.ffmpeg import FFmpegEncoder
from venc.infrastructure.storage import LocalObjectStorage
from venc.infrastructure.video_records import InMemoryVideoRecordStore
from venc.pipeline.job_queue import EncodingJobQueue
from venc.pipeline.worker import EncodingWorker

logger = logging.getLogger(__name__)


@dataclass
class EncodingPipeline:
    """The one queue/worker pair of a process, built explicitly at bootstrap.

    Components that accept uploads receive this handle and call submit();
    nothing here is a module-level singleton.
    """

    event_bus: EventBus
    queue: EncodingJobQueue
    worker: EncodingWorker
    storage: LocalObjectStorage
    records: InMemoryVideoRecordStore

    @classmethod
    def from_config(cls, config: AppConfig, event_bus: Optional[EventBus] = None) -> "EncodingPipeline":
        bus = event_bus or EventBus()
        storage = LocalObjectStorage(config.storage)
        records = InMemoryVideoRecordStore()
        queue = EncodingJobQueue(bus, config.queue)
        worker = EncodingWorker(
            queue=queue,
            encoder=FFmpegEncoder(config.encoder, storage),
            fallback=FallbackAdapter(storage),
            records=records,
            event_bus=bus,
            config=config.worker,
        )
        return cls(event_bus=bus, queue=queue, worker=worker, storage=storage, records=records)

    def submit(self, video_id: str, input_locator: str) -> Optional[str]:
        """Registers the video record and enqueues its encoding job.

        Returns the job id, or None when the video already has active work.
        """
        self.records.create(video_id)
        job_id = self.queue.submit(video_id, input_locator)
        if job_id is None:
            logger.info(f"SUBMIT_REJECTED: video_id={video_id} (already queued or in progress)")
        return job_id

    def start(self) -> bool:
        return self.worker.start()

    def stop(self, timeout_s: Optional[float] = None) -> bool:
        return self.worker.stop(timeout_s)

    def stats(self) -> QueueStats:
        return self.queue.stats()
