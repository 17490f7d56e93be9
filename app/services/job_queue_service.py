# app/services/job_queue_service.py
"""
Persisted job queue.

State machine per job:

    pending -> processing -> completed
                          -> failed   (attempt budget spent)
                          -> pending  (re-armed for retry / stale reset)
    failed  -> pending                (manual operator retry)

The claim is the only contended operation. It takes the candidate row with
SELECT ... FOR UPDATE SKIP LOCKED (Postgres) and then flips it with a
conditional UPDATE guarded on status='pending'; whoever gets rowcount == 1
owns the job. On engines without row locks (SQLite) the conditional UPDATE
alone decides the winner.

Completion and failure bookkeeping are guarded the same way: they only
apply while the row is still processing with the attempt count seen at
claim time, so a worker whose job was re-armed under it changes nothing.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models.cdr_record import CdrRecord
from app.models.job import Job, JobStatus, JobType

log = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_STALE_TIMEOUT = timedelta(minutes=10)

JOB_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PENDING}),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset(),
}


class InvalidJobTransition(Exception):
    def __init__(self, job_id: Optional[int], current: str, target: str):
        super().__init__(f"Job {job_id}: cannot move from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


def can_transition(current: str, target: str) -> bool:
    return JobStatus(target) in JOB_TRANSITIONS[JobStatus(current)]


def transition(job: Job, target: JobStatus, now: Optional[datetime] = None) -> None:
    if not can_transition(job.status, target):
        raise InvalidJobTransition(job.id, job.status, target.value)
    job.status = target.value
    job.updated_at = now or datetime.utcnow()


def enqueue_job(
    db: Session,
    cdr: CdrRecord,
    *,
    priority: int = 0,
    max_attempts: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Job:
    """
    Add a pending full-pipeline job for `cdr`. Flushes but does not commit,
    so callers can create the CDR and its job in one transaction.
    """
    now = now or datetime.utcnow()
    job = Job(
        tenant_id=cdr.tenant_id,
        cdr_record_id=cdr.id,
        job_type=JobType.FULL_PIPELINE,
        status=JobStatus.PENDING.value,
        priority=priority,
        attempts=0,
        max_attempts=max_attempts or DEFAULT_MAX_ATTEMPTS,
        scheduled_for=now,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.flush()
    return job


def _try_claim(db: Session, job_id: int, now: datetime) -> bool:
    result = db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.PENDING.value)
        .values(
            status=JobStatus.PROCESSING.value,
            started_at=now,
            attempts=Job.attempts + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def claim_next_job(db: Session, now: Optional[datetime] = None) -> Optional[Job]:
    """
    Atomically move the best eligible pending job to processing and return it.

    Eligible: status pending and scheduled_for <= now. Order: priority
    ascending, then oldest first. Returns None only when no eligible row is
    left; a lost race moves on to the next candidate.
    """
    now = now or datetime.utcnow()

    while True:
        candidate = db.execute(
            select(Job.id)
            .where(Job.status == JobStatus.PENDING.value, Job.scheduled_for <= now)
            .order_by(Job.priority.asc(), Job.created_at.asc(), Job.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        ).scalar_one_or_none()

        if candidate is None:
            db.commit()
            return None

        if _try_claim(db, candidate, now):
            job = db.get(Job, candidate)
            log.info("Claimed job %s (attempt %s/%s)", job.id, job.attempts, job.max_attempts)
            return job

        log.debug("Lost claim race for job %s, trying the next candidate", candidate)


def _owned_by_claim(job: Job, claimed_attempts: Optional[int]) -> tuple:
    """
    WHERE clause for "this worker still holds the job": still processing and
    not re-claimed since (a re-claim bumps attempts).
    """
    attempts = job.attempts if claimed_attempts is None else claimed_attempts
    return (
        Job.id == job.id,
        Job.status == JobStatus.PROCESSING.value,
        Job.attempts == attempts,
    )


def complete_job(
    db: Session,
    job: Job,
    result: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
    *,
    claimed_attempts: Optional[int] = None,
) -> bool:
    """
    Mark the job completed. Returns False, and changes nothing, when the job
    was taken away from this worker (stale reset or another claim).
    """
    now = now or datetime.utcnow()
    done = db.execute(
        update(Job)
        .where(*_owned_by_claim(job, claimed_attempts))
        .values(
            status=JobStatus.COMPLETED.value,
            completed_at=now,
            updated_at=now,
            result=result or {},
            error=None,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()

    if done.rowcount != 1:
        log.warning("Job %s is no longer owned by this worker; completion not recorded", job.id)
        return False
    return True


def record_job_failure(
    db: Session,
    job: Job,
    error: str,
    now: Optional[datetime] = None,
    *,
    claimed_attempts: Optional[int] = None,
) -> Optional[JobStatus]:
    """
    Re-arm the job while it has attempts left, otherwise fail it for good.
    The error message is kept either way. Returns None, and changes nothing,
    when the job is no longer owned by this worker.
    """
    now = now or datetime.utcnow()
    owned = _owned_by_claim(job, claimed_attempts)

    rearmed = db.execute(
        update(Job)
        .where(*owned, Job.attempts < Job.max_attempts)
        .values(
            status=JobStatus.PENDING.value,
            started_at=None,
            scheduled_for=now,
            updated_at=now,
            error=error,
        )
        .execution_options(synchronize_session=False)
    )
    if rearmed.rowcount == 1:
        db.commit()
        log.info("Job %s will retry: %s", job.id, error)
        return JobStatus.PENDING

    failed = db.execute(
        update(Job)
        .where(*owned)
        .values(
            status=JobStatus.FAILED.value,
            completed_at=now,
            updated_at=now,
            error=error,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()

    if failed.rowcount == 1:
        log.error("Job %s failed permanently: %s", job.id, error)
        return JobStatus.FAILED

    log.warning("Job %s is no longer owned by this worker; failure not recorded: %s", job.id, error)
    return None


def reset_stale_jobs(
    db: Session,
    timeout: timedelta = DEFAULT_STALE_TIMEOUT,
    now: Optional[datetime] = None,
) -> int:
    """
    Return jobs stuck in processing longer than `timeout` to pending so
    another worker picks them up. Jobs whose attempt budget is already
    spent are failed instead. Returns how many jobs were re-armed.
    """
    now = now or datetime.utcnow()
    cutoff = now - timeout
    minutes = int(timeout.total_seconds() // 60)

    stale = (Job.status == JobStatus.PROCESSING.value, Job.started_at < cutoff)

    exhausted = db.execute(
        update(Job)
        .where(*stale, Job.attempts >= Job.max_attempts)
        .values(
            status=JobStatus.FAILED.value,
            completed_at=now,
            updated_at=now,
            error=f"Job stuck in processing for more than {minutes} minutes; no attempts left",
        )
        .execution_options(synchronize_session=False)
    )
    reset = db.execute(
        update(Job)
        .where(*stale, Job.attempts < Job.max_attempts)
        .values(
            status=JobStatus.PENDING.value,
            started_at=None,
            updated_at=now,
            error=f"Job stuck in processing for more than {minutes} minutes; re-queued",
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()

    if exhausted.rowcount:
        log.warning("Failed %s stale job(s) with no attempts left", exhausted.rowcount)
    if reset.rowcount:
        log.warning("Reset %s stale job(s)", reset.rowcount)
    return reset.rowcount


def retry_failed_job(db: Session, job_id: int, now: Optional[datetime] = None) -> Job:
    """
    Operator retry: put a failed job back in the queue.
    """
    job = db.get(Job, job_id)
    if job is None:
        raise LookupError(f"Job {job_id} not found")

    now = now or datetime.utcnow()
    transition(job, JobStatus.PENDING, now)
    job.error = None
    job.scheduled_for = now
    job.started_at = None
    job.completed_at = None
    db.commit()
    db.refresh(job)
    return job


def list_jobs(
    db: Session,
    *,
    status: Optional[str] = None,
    tenant_id: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Job], int]:
    query = db.query(Job)
    if status:
        query = query.filter(Job.status == status)
    if tenant_id is not None:
        query = query.filter(Job.tenant_id == tenant_id)

    total = query.count()
    items = (
        query.order_by(Job.created_at.desc(), Job.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total
