import logging
from abr.infrastructure.event_bus import EventBus
from abr.ui.state import UIState
from abr.domain.events import (
    SourceAnalyzed, LadderPlanned,
    BatchStarted, BatchFinished,
    JobStarted, JobProgressUpdated, JobCompleted, JobFailed,
    ManifestWritten, GpuUsageSampled,
)

logger = logging.getLogger(__name__)

class UIManager:
    """Subscribes to EventBus and updates UIState."""

    def __init__(self, bus: EventBus, state: UIState):
        self.bus = bus
        self.state = state
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(SourceAnalyzed, self.on_source_analyzed)
        self.bus.subscribe(LadderPlanned, self.on_ladder_planned)
        self.bus.subscribe(BatchStarted, self.on_batch_started)
        self.bus.subscribe(BatchFinished, self.on_batch_finished)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobProgressUpdated, self.on_job_progress)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(ManifestWritten, self.on_manifest_written)
        self.bus.subscribe(GpuUsageSampled, self.on_gpu_sample)

    def on_source_analyzed(self, event: SourceAnalyzed):
        with self.state._lock:
            self.state.source = event.source
            self.state.source_probed = event.probed

    def on_ladder_planned(self, event: LadderPlanned):
        self.state.set_plan(event.jobs, event.batch_size)
        self.state.set_last_action(
            f"Planned {len(event.jobs)} rendition(s): {', '.join(j.rendition.label for j in event.jobs)}"
        )

    def on_batch_started(self, event: BatchStarted):
        self.state.start_batch(event.index, event.total)
        self.state.set_last_action(
            f"Batch {event.index}/{event.total}: {', '.join(f'{h}p' for h in event.heights)}"
        )

    def on_batch_finished(self, event: BatchFinished):
        if event.failed:
            self.state.set_last_action(f"Batch {event.index}/{event.total} failed ({event.failed} rendition(s))")

    def on_job_started(self, event: JobStarted):
        self.state.mark_started(event.job)

    def on_job_progress(self, event: JobProgressUpdated):
        self.state.update_progress(event.job, event.progress_percent)

    def on_job_completed(self, event: JobCompleted):
        self.state.mark_completed(event.job)

    def on_job_failed(self, event: JobFailed):
        logger.debug(f"UI: {event.job.rendition.label} failed: {event.error_message}")
        self.state.mark_failed(event.job, event.error_message)

    def on_manifest_written(self, event: ManifestWritten):
        with self.state._lock:
            self.state.manifest_path = str(event.path)
            self.state.finished = True
        self.state.set_last_action(f"Master playlist written ({event.renditions} renditions)")

    def on_gpu_sample(self, event: GpuUsageSampled):
        self.state.add_gpu_sample(event.utilization_percent)
