"""Domain events for the transcoding pipeline.

Events flow through the EventBus from the orchestrator, the scheduler and the
ffmpeg adapter to the UI layer, so the pipeline never talks to the dashboard
directly.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import List
from pydantic import BaseModel
from .models import EncodeJob, ManifestFragment, SourceDescriptor


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class SourceAnalyzed(Event):
    """Emitted once the source descriptor is known (probed or default)."""

    source: SourceDescriptor
    probed: bool = True


class LadderPlanned(Event):
    """Emitted with every job of the run, in ladder order, before dispatch."""

    jobs: List[EncodeJob]
    batch_size: int


class BatchStarted(Event):
    index: int  # 1-based
    total: int
    heights: List[int]


class BatchFinished(Event):
    index: int
    total: int
    failed: int = 0


class JobEvent(Event):
    """Base class for events related to a specific encode job."""

    job: EncodeJob


class JobStarted(JobEvent):
    pass


class JobProgressUpdated(JobEvent):
    """Emitted as ffmpeg reports progress."""

    progress_percent: float


class JobCompleted(JobEvent):
    fragment: ManifestFragment


class JobFailed(JobEvent):
    error_message: str


class ManifestWritten(Event):
    path: Path
    renditions: int


class GpuUsageSampled(Event):
    utilization_percent: float
