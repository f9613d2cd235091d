"""Domain events for the video encoding queue.

Events flow through the EventBus and decouple the job queue from whoever
reacts to it (the encoding worker subscribes to JobAdded to wake up early).

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pydantic import BaseModel
from .models import EncodingJob


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class JobEvent(Event):
    """Base class for events related to a specific encoding job."""

    job: EncodingJob


class JobAdded(JobEvent):
    """Emitted after a job has been accepted by the queue."""

    pass


class JobCompleted(JobEvent):
    """Emitted when a job reaches COMPLETED."""

    pass


class JobRetrying(JobEvent):
    """Emitted when a failed job goes back to QUEUED for another attempt."""

    error_message: str


class JobFailed(JobEvent):
    """Emitted when a job becomes terminally FAILED."""

    error_message: str
