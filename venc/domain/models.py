from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.IN_PROGRESS})

class EncodingStatus(str, Enum):
    PENDING = "PENDING"
    READY = "READY"
    FAILED = "FAILED"

class WorkerState(str, Enum):
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"

class EncodingJob(BaseModel):
    id: str
    video_id: str
    input_locator: str
    status: JobStatus = JobStatus.QUEUED
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

class QueueStats(BaseModel):
    queued: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0

class EncodingOutputs(BaseModel):
    adaptive_manifest_url: Optional[str] = None
    progressive_url: Optional[str] = None
    thumbnail_url: Optional[str] = None

class EncodingResult(BaseModel):
    success: bool
    outputs: EncodingOutputs = Field(default_factory=EncodingOutputs)
    error: Optional[str] = None
    # Set when retrying cannot help (unreadable source).
    permanent: bool = False

class FallbackResult(BaseModel):
    url: str

class VideoRecord(BaseModel):
    video_id: str
    encoding_status: EncodingStatus = EncodingStatus.PENDING
    encoding_completed_at: Optional[datetime] = None
    hls_manifest_url: Optional[str] = None
    mp4_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    degraded_quality: bool = False
    encoding_error: Optional[str] = None
