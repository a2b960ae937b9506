"""Batch scheduler for rendition encode jobs.

Fully parallel, capped and sequential runs are one algorithm parameterized by
batch size (all jobs, ``max_concurrent``, 1): the ladder is cut into
consecutive batches in ladder order, each batch runs every job concurrently
(one future per job) and batches run strictly one after another.

Failure policy: jobs already running when a sibling fails are allowed to
finish (there is no mid-job cancellation); every failure of that batch is
collected, no later batch is started, and the run raises one
:class:`EncodeRunError`.
"""

import concurrent.futures
import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence, TypeVar

from abr.config.models import ConcurrencyPolicy
from abr.domain.errors import EncodeRunError, JobError
from abr.domain.events import BatchFinished, BatchStarted, JobCompleted, JobFailed, JobStarted
from abr.domain.models import EncodeJob, JobStatus, ManifestFragment
from abr.infrastructure.event_bus import EventBus

T = TypeVar("T")

# Encode callable: (job, input_path, duration_seconds, shutdown_event) -> fragment
EncodeFn = Callable[..., ManifestFragment]


def resolve_batch_size(policy: ConcurrencyPolicy, max_concurrent: Optional[int], job_count: int) -> int:
    if job_count <= 0:
        return 1
    if policy == ConcurrencyPolicy.SEQUENTIAL:
        return 1
    if policy == ConcurrencyPolicy.CAPPED:
        if not max_concurrent or max_concurrent <= 0:
            raise ValueError("Capped concurrency requires a positive max_concurrent.")
        return min(max_concurrent, job_count)
    return job_count


def partition_batches(items: Sequence[T], batch_size: int) -> List[List[T]]:
    if batch_size <= 0:
        raise ValueError(f"Batch size must be positive (got {batch_size}).")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


class JobScheduler:
    """Runs encode jobs batch by batch on a thread pool."""

    def __init__(
        self,
        encode: EncodeFn,
        event_bus: EventBus,
        logger: Optional[logging.Logger] = None,
        shutdown_event: Optional[threading.Event] = None,
    ):
        self.encode = encode
        self.event_bus = event_bus
        self.logger = logger or logging.getLogger(__name__)
        self.shutdown_event = shutdown_event or threading.Event()

    def _run_job(self, job: EncodeJob, input_path: Path, duration_seconds: float) -> ManifestFragment:
        job.status = JobStatus.RUNNING
        self.event_bus.publish(JobStarted(job=job))
        self.logger.info(f"JOB_START: {job.rendition.label}")
        start = time.monotonic()
        try:
            fragment = self.encode(job, input_path, duration_seconds=duration_seconds, shutdown_event=self.shutdown_event)
        except JobError as e:
            if job.status != JobStatus.INTERRUPTED:
                job.status = JobStatus.FAILED
            job.error_message = e.message
            job.elapsed_seconds = time.monotonic() - start
            self.logger.error(f"JOB_END: {job.rendition.label} status={job.status.value} error={e.message}")
            self.event_bus.publish(JobFailed(job=job, error_message=e.message))
            raise
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error_message = f"{type(e).__name__}: {e}"
            job.elapsed_seconds = time.monotonic() - start
            self.logger.exception(f"JOB_END: {job.rendition.label} status=FAILED (unexpected error)")
            self.event_bus.publish(JobFailed(job=job, error_message=job.error_message))
            raise JobError(job.error_message, height=job.height) from e

        job.status = JobStatus.COMPLETED
        job.elapsed_seconds = time.monotonic() - start
        self.logger.info(f"JOB_END: {job.rendition.label} status=COMPLETED elapsed={job.elapsed_seconds:.2f}s")
        self.event_bus.publish(JobCompleted(job=job, fragment=fragment))
        return fragment

    def _run_batch(
        self,
        executor: concurrent.futures.ThreadPoolExecutor,
        batch: List[EncodeJob],
        input_path: Path,
        duration_seconds: float,
    ) -> List[ManifestFragment]:
        futures = {
            executor.submit(self._run_job, job, input_path, duration_seconds): job
            for job in batch
        }
        concurrent.futures.wait(futures, return_when=concurrent.futures.ALL_COMPLETED)

        fragments: List[ManifestFragment] = []
        errors: List[JobError] = []
        for future, job in futures.items():
            try:
                fragments.append(future.result())
            except JobError as e:
                errors.append(e)
        if errors:
            raise EncodeRunError(errors)
        return fragments

    def run(
        self,
        jobs: Sequence[EncodeJob],
        batch_size: int,
        input_path: Path,
        duration_seconds: float = 0.0,
    ) -> List[ManifestFragment]:
        """Runs every job and returns their fragments in completion-independent ladder order.

        Raises:
            EncodeRunError: one or more jobs of a batch failed; later batches
                were never started.
        """
        batches = partition_batches(list(jobs), batch_size)
        fragments: List[ManifestFragment] = []
        if not batches:
            return fragments

        with concurrent.futures.ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="encode") as executor:
            try:
                for index, batch in enumerate(batches, start=1):
                    heights = [job.height for job in batch]
                    self.logger.info(f"BATCH_START: {index}/{len(batches)} heights={heights}")
                    self.event_bus.publish(BatchStarted(index=index, total=len(batches), heights=heights))
                    try:
                        fragments.extend(self._run_batch(executor, batch, input_path, duration_seconds))
                    except EncodeRunError as e:
                        self.logger.error(f"BATCH_FAILED: {index}/{len(batches)} {e.message}")
                        self.event_bus.publish(BatchFinished(index=index, total=len(batches), failed=len(e.errors)))
                        raise
                    self.event_bus.publish(BatchFinished(index=index, total=len(batches)))
            except KeyboardInterrupt:
                self.logger.info("Ctrl+C detected - interrupting active encodes...")
                self.shutdown_event.set()
                executor.shutdown(wait=True, cancel_futures=True)
                raise

        return fragments
