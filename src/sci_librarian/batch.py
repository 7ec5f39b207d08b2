"""
Batch Processing
================

One batch turns a capped slice of the PENDING backlog into filed papers:

- the `Scanner` loads the newest PENDING records and turns them into jobs,
- a `WorkerPool` of N threads pulls jobs from one bounded FIFO queue and
  runs the per-job pipeline, emitting exactly one result per job,
- the `Collector` applies exactly one status update per result to the store
  and reports progress, until the last worker closes the result queue.

Queues are closed with marker objects: after the last job, one marker per
worker is enqueued, so a worker only ever sees a marker once the queue has
been drained. The last worker to leave puts the marker that ends the
collector's loop. Results arrive in arbitrary order.

Job failures are data (`JobFailure`) and never stop a worker. The only
batch-fatal error is a store failure while applying a result: remaining
queued jobs are abandoned (their records stay PENDING), the workers are
joined and the error is re-raised.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

import structlog

from .classifier import Classifier
from .extract import TextExtractor
from .models import FileRecord, Job, JobFailure, JobResult, RuleSet
from .remote import RemoteFileStore
from .storage import RecordStore
from .worker import JobProcessor

log = structlog.get_logger(__name__)

# Queue close marker.
_CLOSED = object()


@dataclass(frozen=True)
class ProgressEvent:
    record_id: str
    name: str
    ok: bool
    error: str | None
    completed: int
    total: int


@dataclass
class BatchOutcome:
    dispatched: int = 0
    processed: int = 0
    failed: int = 0
    failures: list[JobFailure] = field(default_factory=list)


ProgressCallback = Callable[[ProgressEvent], None]


class Scanner:
    """Read-only view of the backlog."""

    def __init__(self, store: RecordStore):
        self.store = store

    def load_batch(self, limit: int) -> list[FileRecord]:
        return self.store.load_pending(limit)

    @staticmethod
    def jobs_for(records: Iterable[FileRecord]) -> list[Job]:
        return [Job.from_record(record) for record in records]


class WorkerPool:
    """
    A fixed number of threads consuming one bounded job queue.

    Call `start`, then `submit` every job, then `close`. Results (and finally
    the close marker) are read from `results`.
    """

    def __init__(
        self,
        process_job: Callable[[Job], JobResult],
        worker_count: int,
        capacity: int,
    ):
        self.process_job = process_job
        self.worker_count = max(1, int(worker_count))
        capacity = max(1, int(capacity))
        self._jobs: queue.Queue = queue.Queue(maxsize=capacity)
        # Room for every result plus the close marker, so workers never block
        # on a collector that stopped reading.
        self.results: queue.Queue = queue.Queue(maxsize=capacity + 1)
        self._threads: list[threading.Thread] = []
        self._active = 0
        self._active_lock = threading.Lock()
        self._abandoned = threading.Event()

    def start(self) -> None:
        self._active = self.worker_count
        for index in range(self.worker_count):
            thread = threading.Thread(
                target=self._run, args=(index,), name=f"worker-{index}", daemon=True
            )
            self._threads.append(thread)
            thread.start()

    def submit(self, job: Job) -> None:
        self._jobs.put(job)

    def close(self) -> None:
        """Signal that no more jobs will be submitted."""
        for _ in range(self.worker_count):
            self._jobs.put(_CLOSED)

    def abandon(self) -> None:
        """Stop handing out queued jobs; in-flight jobs still finish."""
        self._abandoned.set()

    def join(self) -> None:
        for thread in self._threads:
            thread.join()

    def _run(self, index: int) -> None:
        log.debug("Worker started", worker=index)
        try:
            while True:
                job = self._jobs.get()
                if job is _CLOSED:
                    break
                if self._abandoned.is_set():
                    continue
                self.results.put(self._run_job(job))
        finally:
            with self._active_lock:
                self._active -= 1
                last = self._active == 0
            if last:
                self.results.put(_CLOSED)
            log.debug("Worker idle", worker=index)

    def _run_job(self, job: Job) -> JobResult:
        try:
            return self.process_job(job)
        except Exception as e:
            log.exception(
                "Unexpected error while processing job",
                record_id=job.record_id,
                name=job.name,
            )
            return JobFailure(
                record_id=job.record_id, name=job.name, error=f"Unexpected error: {e}"
            )


class Collector:
    """Applies job results to the store, one update per result."""

    def __init__(
        self,
        store: RecordStore,
        total: int,
        on_progress: ProgressCallback | None = None,
    ):
        self.store = store
        self.total = total
        self.on_progress = on_progress
        self.outcome = BatchOutcome(dispatched=total)
        self.completed = 0

    def drain(self, results: queue.Queue) -> BatchOutcome:
        """Consume results until the close marker arrives."""
        while True:
            result = results.get()
            if result is _CLOSED:
                break
            self.apply(result)
        return self.outcome

    def apply(self, result: JobResult) -> None:
        # Store errors propagate and abort the batch.
        if result.ok:
            self.store.mark_processed(
                result.record_id, result.metadata, result.target_paths
            )
            self.outcome.processed += 1
            log.info(
                "Processed paper",
                record_id=result.record_id,
                name=result.name,
                targets=result.target_paths,
            )
            error = None
        else:
            self.store.mark_error(result.record_id, result.error)
            self.outcome.failed += 1
            self.outcome.failures.append(result)
            log.warning(
                "Failed paper",
                record_id=result.record_id,
                name=result.name,
                error=result.error,
            )
            error = result.error

        self.completed += 1
        self._emit(
            ProgressEvent(
                record_id=result.record_id,
                name=result.name,
                ok=result.ok,
                error=error,
                completed=self.completed,
                total=self.total,
            )
        )

    def _emit(self, event: ProgressEvent) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(event)
        except Exception:
            log.exception("Progress callback failed", record_id=event.record_id)


class BatchRunner:
    """Scanner -> WorkerPool -> Collector, end to end."""

    def __init__(
        self,
        store: RecordStore,
        remote: RemoteFileStore,
        classifier: Classifier,
        extractor: TextExtractor,
        rules: RuleSet,
        work_dir: str | Path,
    ):
        self.store = store
        self.scanner = Scanner(store)
        self.processor = JobProcessor(
            remote=remote,
            classifier=classifier,
            extractor=extractor,
            rules=rules,
            work_dir=Path(work_dir),
        )

    def run_batch(
        self,
        batch_size: int,
        worker_count: int,
        on_progress: ProgressCallback | None = None,
    ) -> BatchOutcome:
        """
        Process up to ``batch_size`` PENDING records with ``worker_count`` workers.

        Returns once every dispatched job has been applied to the store.
        """
        batch_size = max(1, int(batch_size))
        worker_count = max(1, int(worker_count))

        records = self.scanner.load_batch(batch_size)
        if not records:
            log.info("No pending files to process")
            return BatchOutcome()

        jobs = self.scanner.jobs_for(records)
        worker_count = min(worker_count, len(jobs))
        log.info("Processing batch", job_count=len(jobs), max_workers=worker_count)

        pool = WorkerPool(self.processor.process, worker_count, capacity=len(jobs))
        collector = Collector(self.store, total=len(jobs), on_progress=on_progress)

        pool.start()
        for job in jobs:
            pool.submit(job)
        pool.close()

        try:
            outcome = collector.drain(pool.results)
        except Exception:
            log.exception(
                "Store update failed; aborting batch",
                completed=collector.completed,
                total=len(jobs),
            )
            pool.abandon()
            pool.join()
            raise

        pool.join()
        log.info(
            "Batch complete",
            dispatched=outcome.dispatched,
            processed=outcome.processed,
            failed=outcome.failed,
        )
        return outcome
