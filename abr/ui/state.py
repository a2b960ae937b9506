import threading
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional
from abr.domain.models import EncodeJob, JobStatus, SourceDescriptor

class UIState:
    """Thread-safe state manager for the transcode dashboard."""

    def __init__(self, gpu_history_size: int = 60):
        self._lock = threading.RLock()

        # Source and plan
        self.source: Optional[SourceDescriptor] = None
        self.source_probed = True
        self.jobs: List[EncodeJob] = []
        self.batch_size = 0

        # Batch progress
        self.current_batch = 0
        self.total_batches = 0

        # Counters
        self.completed_count = 0
        self.failed_count = 0
        self.interrupted_count = 0

        self.job_start_times: Dict[int, datetime] = {}  # height -> start time
        self.progress: Dict[int, float] = {}  # height -> percent
        self.errors: Dict[int, str] = {}  # height -> message

        self.manifest_path: Optional[str] = None
        self.processing_start_time: Optional[datetime] = None
        self.finished = False

        # GPU utilization samples (percent)
        self.gpu_history: deque = deque(maxlen=gpu_history_size)

        self.last_action: str = ""

    def set_plan(self, jobs: List[EncodeJob], batch_size: int):
        with self._lock:
            self.jobs = list(jobs)
            self.batch_size = batch_size
            self.progress = {job.height: 0.0 for job in jobs}
            self.processing_start_time = datetime.now()

    def start_batch(self, index: int, total: int):
        with self._lock:
            self.current_batch = index
            self.total_batches = total

    def mark_started(self, job: EncodeJob):
        with self._lock:
            self.job_start_times[job.height] = datetime.now()

    def mark_completed(self, job: EncodeJob):
        with self._lock:
            self.progress[job.height] = 100.0
            self.completed_count += 1

    def update_progress(self, job: EncodeJob, percent: float):
        with self._lock:
            self.progress[job.height] = percent

    def progress_for(self, job: EncodeJob) -> float:
        with self._lock:
            return self.progress.get(job.height, 0.0)

    def mark_failed(self, job: EncodeJob, message: str):
        with self._lock:
            if job.status == JobStatus.INTERRUPTED:
                self.interrupted_count += 1
            else:
                self.failed_count += 1
            self.errors[job.height] = message

    def add_gpu_sample(self, percent: float):
        with self._lock:
            self.gpu_history.append(percent)

    @property
    def gpu_average(self) -> Optional[float]:
        with self._lock:
            if not self.gpu_history:
                return None
            return sum(self.gpu_history) / len(self.gpu_history)

    @property
    def overall_progress(self) -> float:
        """Mean progress across all planned renditions (0-100)."""
        with self._lock:
            if not self.jobs:
                return 0.0
            return sum(self.progress.get(job.height, 0.0) for job in self.jobs) / len(self.jobs)

    def elapsed_seconds(self, job: EncodeJob) -> Optional[float]:
        with self._lock:
            if job.elapsed_seconds is not None and job.is_terminal:
                return job.elapsed_seconds
            started = self.job_start_times.get(job.height)
            if started is None:
                return None
            return (datetime.now() - started).total_seconds()

    def set_last_action(self, action: str):
        with self._lock:
            self.last_action = action
