# app/worker.py
"""
Polling job worker.

Each tick claims up to `max_jobs_per_tick` jobs and runs them one after
another through the pipeline. Stale jobs (left in processing by a crashed
worker) are swept on startup and every `stale_check_interval` seconds.
"""
from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.config import get_settings
from app.services.job_queue_service import claim_next_job, record_job_failure, reset_stale_jobs
from app.services.pipeline_service import CallPipeline, build_pipeline

log = logging.getLogger(__name__)

PipelineFactory = Callable[[Session], CallPipeline]


class Worker:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        pipeline_factory: PipelineFactory = build_pipeline,
        poll_interval: float = 5.0,
        max_jobs_per_tick: int = 3,
        stale_timeout: timedelta = timedelta(minutes=10),
        stale_check_interval: float = 300.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.pipeline_factory = pipeline_factory
        self.poll_interval = poll_interval
        self.max_jobs_per_tick = max_jobs_per_tick
        self.stale_timeout = stale_timeout
        self.stale_check_interval = stale_check_interval
        self._sleep = sleep
        self._clock = clock
        self._last_stale_check: Optional[float] = None

    @classmethod
    def from_settings(cls, session_factory: Callable[[], Session], **overrides) -> "Worker":
        settings = get_settings()
        options = dict(
            poll_interval=settings.WORKER_POLL_INTERVAL_SECONDS,
            max_jobs_per_tick=settings.WORKER_MAX_CONCURRENT_JOBS,
            stale_timeout=timedelta(minutes=settings.STALE_JOB_TIMEOUT_MINUTES),
            stale_check_interval=settings.STALE_JOB_CHECK_INTERVAL_SECONDS,
        )
        options.update({k: v for k, v in overrides.items() if v is not None})
        return cls(session_factory, **options)

    def reset_stale(self) -> int:
        db = self.session_factory()
        try:
            count = reset_stale_jobs(db, self.stale_timeout)
        finally:
            db.close()
        self._last_stale_check = self._clock()
        if count:
            log.info("Reset %s stale job(s)", count)
        return count

    def _stale_check_due(self) -> bool:
        if self._last_stale_check is None:
            return True
        return self._clock() - self._last_stale_check >= self.stale_check_interval

    def _process_one(self) -> bool:
        """
        Claim and run a single job. Returns False when the queue is empty.
        """
        db = self.session_factory()
        try:
            job = claim_next_job(db)
            if job is None:
                return False
            claimed_attempts = job.attempts

            try:
                pipeline = self.pipeline_factory(db)
            except Exception as exc:
                # Misconfiguration (missing keys etc.) still counts as an attempt
                log.error("Could not build pipeline for job %s: %s", job.id, exc)
                db.rollback()
                record_job_failure(
                    db, job, f"Pipeline setup failed: {exc}", claimed_attempts=claimed_attempts
                )
                return True

            result = pipeline.execute(job)
            if result.success:
                log.info("Job %s completed", job.id)
            else:
                log.warning("Job %s failed: %s", job.id, result.error)
            return True
        finally:
            db.close()

    def run_once(self) -> int:
        """
        Process up to `max_jobs_per_tick` jobs sequentially. Returns how many
        jobs were picked up.
        """
        if self._stale_check_due():
            self.reset_stale()

        processed = 0
        while processed < self.max_jobs_per_tick:
            if not self._process_one():
                break
            processed += 1
        return processed

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        stop_event = stop_event or threading.Event()
        log.info(
            "Worker started (poll every %ss, up to %s jobs per tick)",
            self.poll_interval, self.max_jobs_per_tick,
        )
        self.reset_stale()

        while not stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                log.exception("Worker tick failed")

            if stop_event.is_set():
                break
            self._sleep(self.poll_interval)

        log.info("Worker stopped")
