import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol
from venc.domain.errors import RecordNotFoundError
from venc.domain.models import EncodingStatus, VideoRecord

class VideoRecordStore(Protocol):
    """The subset of the persistent video record the encoding worker writes."""

    def mark_ready(
        self,
        video_id: str,
        *,
        hls_manifest_url: Optional[str] = None,
        mp4_url: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        degraded_quality: bool = False,
    ) -> VideoRecord: ...

    def mark_failed(self, video_id: str, error: str) -> VideoRecord: ...


class InMemoryVideoRecordStore:
    """Thread-safe in-process video record store.

    Encoding status is monotonic: a record leaves PENDING exactly once. A
    second terminal write is ignored and logged.
    """

    def __init__(self):
        self._records: Dict[str, VideoRecord] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def create(self, video_id: str) -> VideoRecord:
        with self._lock:
            record = self._records.get(video_id)
            if record is None:
                record = VideoRecord(video_id=video_id)
                self._records[video_id] = record
            return record.model_copy()

    def get(self, video_id: str) -> Optional[VideoRecord]:
        with self._lock:
            record = self._records.get(video_id)
            return record.model_copy() if record else None

    def _transition(self, video_id: str, status: EncodingStatus, **fields) -> VideoRecord:
        with self._lock:
            record = self._records.get(video_id)
            if record is None:
                raise RecordNotFoundError(video_id)
            if record.encoding_status != EncodingStatus.PENDING:
                self.logger.warning(
                    f"RECORD_TRANSITION_IGNORED: video_id={video_id} "
                    f"current={record.encoding_status.value} requested={status.value}"
                )
                return record.model_copy()
            record.encoding_status = status
            record.encoding_completed_at = datetime.now(timezone.utc)
            for key, value in fields.items():
                setattr(record, key, value)
            return record.model_copy()

    def mark_ready(
        self,
        video_id: str,
        *,
        hls_manifest_url: Optional[str] = None,
        mp4_url: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        degraded_quality: bool = False,
    ) -> VideoRecord:
        return self._transition(
            video_id,
            EncodingStatus.READY,
            hls_manifest_url=hls_manifest_url,
            mp4_url=mp4_url,
            thumbnail_url=thumbnail_url,
            degraded_quality=degraded_quality,
        )

    def mark_failed(self, video_id: str, error: str) -> VideoRecord:
        return self._transition(video_id, EncodingStatus.FAILED, encoding_error=error)
