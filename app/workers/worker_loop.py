# app/workers/worker_loop.py
from __future__ import annotations

import logging
import os
import socket
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from app.errors import describe_error
from app.jobs import repository as jobs_repo
from app.jobs.model import Job
from app.workers.pipeline import Pipeline
from services.metrics import increment_job_processed
from services.observability import set_job_id

logger = logging.getLogger("questpay.worker")


def default_worker_prefix() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class JobWorker:
    """One claim loop. A tick claims at most one job and runs it to completion."""

    def __init__(self, *, pipeline: Pipeline, worker_id: str, conn_factory=None):
        if conn_factory is None:
            from db import get_conn as conn_factory
        self.pipeline = pipeline
        self.worker_id = worker_id
        self._conn_factory = conn_factory
        self._in_flight = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def tick(self) -> bool:
        """Returns True when a job was claimed (whatever its outcome)."""
        if not self._in_flight.acquire(blocking=False):
            logger.debug("worker=%s previous tick still in flight, skipping", self.worker_id)
            return False
        try:
            with self._conn_factory() as conn:
                job = jobs_repo.claim_next(conn, worker_id=self.worker_id)
            if job is None:
                return False
            try:
                self.process_job(job)
            except Exception:
                logger.exception("worker=%s job=%s (%s) failed", self.worker_id, job.id, job.type.value)
            return True
        except Exception:
            logger.exception("worker=%s tick failed", self.worker_id)
            return False
        finally:
            self._in_flight.release()

    def process_job(self, job: Job) -> None:
        """
        Run a claimed job and finalize it. Failures are recorded on the job
        and re-raised for the caller to log.
        """
        set_job_id(str(job.id))
        try:
            logger.info("processing job=%s type=%s entity=%s attempt=%s", job.id, job.type.value, job.entity_id, job.attempts)
            try:
                self.pipeline.run_job(job)
            except Exception as exc:
                with self._conn_factory() as conn:
                    jobs_repo.finalize(conn, job_id=job.id, success=False, error=describe_error(exc))
                increment_job_processed(job.type.value, "failed")
                raise
            with self._conn_factory() as conn:
                jobs_repo.finalize(conn, job_id=job.id, success=True)
            increment_job_processed(job.type.value, "completed")
        finally:
            set_job_id(None)


class WorkerScheduler:
    """
    Owns a bounded pool of JobWorker claim loops plus the stale-job reaper.
    Each worker runs in its own thread; within a worker jobs never overlap.
    """

    def __init__(
        self,
        *,
        pipeline: Pipeline,
        concurrency: int = 1,
        tick_seconds: float = 1.0,
        stale_seconds: int = 300,
        max_attempts: int = 5,
        conn_factory=None,
        worker_prefix: Optional[str] = None,
    ):
        if conn_factory is None:
            from db import get_conn as conn_factory
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        prefix = worker_prefix or default_worker_prefix()
        self.workers = [
            JobWorker(pipeline=pipeline, worker_id=f"{prefix}-{i}", conn_factory=conn_factory)
            for i in range(concurrency)
        ]
        self.tick_seconds = tick_seconds
        self.stale_seconds = stale_seconds
        self.max_attempts = max_attempts
        self._conn_factory = conn_factory
        self._stop = threading.Event()
        self._pool: Optional[ThreadPoolExecutor] = None
        self._futures: list[Future] = []

    @property
    def running(self) -> bool:
        return self._pool is not None and not self._stop.is_set()

    def start(self) -> None:
        if self._pool is not None:
            raise RuntimeError("scheduler already started")
        self._stop.clear()
        self._pool = ThreadPoolExecutor(max_workers=len(self.workers), thread_name_prefix="job-worker")
        self._futures = [self._pool.submit(self._claim_loop, w) for w in self.workers]
        logger.info("scheduler started workers=%d tick=%ss", len(self.workers), self.tick_seconds)

    def request_stop(self) -> None:
        """Signal-safe: loops exit after their current tick."""
        self._stop.set()

    def stop(self, *, wait: bool = True) -> None:
        self._stop.set()
        if self._pool is not None:
            self._pool.shutdown(wait=wait)
            self._pool = None
        logger.info("scheduler stopped")

    def _claim_loop(self, worker: JobWorker) -> None:
        while not self._stop.is_set():
            worker.tick()
            self._stop.wait(self.tick_seconds)

    def reap_once(self) -> int:
        try:
            with self._conn_factory() as conn:
                n = jobs_repo.reap_stale(conn, stale_seconds=self.stale_seconds, max_attempts=self.max_attempts)
        except Exception:
            logger.exception("stale job reaper failed")
            return 0
        if n:
            logger.warning("reaped %d stale PROCESSING job(s)", n)
        return n

    def run_forever(self) -> None:
        """Start the claim loops and reap stale jobs on this thread until stop()."""
        self.start()
        reap_every = max(self.tick_seconds, self.stale_seconds / 2)
        try:
            while not self._stop.wait(reap_every):
                self.reap_once()
        finally:
            self.stop()
