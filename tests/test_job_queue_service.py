# tests/test_job_queue_service.py
import threading
from datetime import datetime, timedelta

import pytest

from app.db.session import SessionLocal
from app.models import CdrRecord, Job, JobStatus
from app.services import job_queue_service
from app.services.job_queue_service import (
    InvalidJobTransition,
    _try_claim,
    can_transition,
    claim_next_job,
    complete_job,
    enqueue_job,
    list_jobs,
    record_job_failure,
    reset_stale_jobs,
    retry_failed_job,
    transition,
)

T0 = datetime(2024, 1, 15, 9, 0, 0)


def _add_cdr(db, seeded, uniqueid):
    cdr = CdrRecord(
        tenant_id=seeded["tenant_id"],
        pbx_connection_id=seeded["connection_id"],
        uniqueid=uniqueid,
        src="+15551234567",
        dst="1001",
        call_direction="inbound",
        recording_filename=f"{uniqueid}.wav",
    )
    db.add(cdr)
    db.flush()
    return cdr


def _enqueue(db, seeded, uniqueid, created, priority=0, max_attempts=None):
    job = enqueue_job(
        db, _add_cdr(db, seeded, uniqueid), priority=priority, max_attempts=max_attempts, now=created
    )
    db.commit()
    return job.id


def test_enqueue_creates_pending_job(seeded):
    db = SessionLocal()
    try:
        job_id = _enqueue(db, seeded, "u1", T0)
        job = db.get(Job, job_id)
        assert job.status == "pending"
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.priority == 0
        assert job.job_type == "full_pipeline"
    finally:
        db.close()


def test_claim_orders_by_priority_then_age(seeded):
    db = SessionLocal()
    try:
        newer = _enqueue(db, seeded, "newer", T0 + timedelta(minutes=2))
        older = _enqueue(db, seeded, "older", T0 + timedelta(minutes=1))
        low_priority = _enqueue(db, seeded, "low", T0, priority=5)
        urgent = _enqueue(db, seeded, "urgent", T0 + timedelta(minutes=3), priority=-1)

        now = T0 + timedelta(minutes=10)
        claimed = [claim_next_job(db, now=now).id for _ in range(4)]

        assert claimed == [urgent, older, newer, low_priority]
        assert claim_next_job(db, now=now) is None
    finally:
        db.close()


def test_claim_skips_jobs_scheduled_in_the_future(seeded):
    db = SessionLocal()
    try:
        _enqueue(db, seeded, "later", T0 + timedelta(hours=1))
        assert claim_next_job(db, now=T0) is None
        assert claim_next_job(db, now=T0 + timedelta(hours=2)) is not None
    finally:
        db.close()


def test_claim_marks_processing_and_counts_attempt(seeded):
    db = SessionLocal()
    try:
        _enqueue(db, seeded, "u1", T0)
        now = T0 + timedelta(seconds=30)

        job = claim_next_job(db, now=now)

        assert job.status == "processing"
        assert job.attempts == 1
        assert job.started_at == now
    finally:
        db.close()


def test_each_job_is_claimed_exactly_once_across_workers(seeded):
    db = SessionLocal()
    try:
        expected = {_enqueue(db, seeded, f"call-{i}", T0 + timedelta(seconds=i)) for i in range(7)}
    finally:
        db.close()

    workers = [SessionLocal() for _ in range(3)]
    claimed = []
    try:
        idle = 0
        turn = 0
        while idle < len(workers):
            job = claim_next_job(workers[turn % len(workers)], now=T0 + timedelta(minutes=5))
            turn += 1
            if job is None:
                idle += 1
                continue
            idle = 0
            claimed.append(job.id)
    finally:
        for w in workers:
            w.close()

    assert len(claimed) == len(expected)
    assert set(claimed) == expected


def test_concurrent_claims_never_share_a_job(seeded):
    db = SessionLocal()
    try:
        expected = {_enqueue(db, seeded, f"call-{i}", T0 + timedelta(seconds=i)) for i in range(12)}
    finally:
        db.close()

    start = threading.Barrier(4)
    claimed = []
    errors = []
    lock = threading.Lock()

    def worker():
        session = SessionLocal()
        try:
            start.wait()
            while True:
                job = claim_next_job(session, now=T0 + timedelta(minutes=5))
                if job is None:
                    return
                with lock:
                    claimed.append(job.id)
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert sorted(claimed) == sorted(expected)


def test_claim_keeps_going_after_lost_races(seeded, monkeypatch):
    db = SessionLocal()
    rival = SessionLocal()
    try:
        ids = [_enqueue(db, seeded, f"call-{i}", T0 + timedelta(seconds=i)) for i in range(7)]
        real_try_claim = job_queue_service._try_claim
        lost = []

        def contended(session, job_id, now):
            # a rival worker wins every candidate but the last one
            if len(lost) < 6:
                assert real_try_claim(rival, job_id, now) is True
                lost.append(job_id)
            return real_try_claim(session, job_id, now)

        monkeypatch.setattr(job_queue_service, "_try_claim", contended)

        job = claim_next_job(db, now=T0 + timedelta(minutes=5))

        assert lost == ids[:6]
        assert job is not None
        assert job.id == ids[6]
    finally:
        db.close()
        rival.close()


def test_claim_loses_when_job_already_taken(seeded):
    db = SessionLocal()
    other = SessionLocal()
    try:
        job_id = _enqueue(db, seeded, "u1", T0)
        assert _try_claim(db, job_id, T0) is True
        assert _try_claim(other, job_id, T0) is False
        assert db.get(Job, job_id).attempts == 1
    finally:
        db.close()
        other.close()


def test_complete_job_stores_result(seeded):
    db = SessionLocal()
    try:
        _enqueue(db, seeded, "u1", T0)
        job = claim_next_job(db, now=T0)
        complete_job(db, job, {"sentiment": "positive"}, now=T0 + timedelta(minutes=1))

        job = db.get(Job, job.id)
        assert job.status == "completed"
        assert job.result == {"sentiment": "positive"}
        assert job.completed_at == T0 + timedelta(minutes=1)
        assert job.error is None
    finally:
        db.close()


def test_completion_after_stale_reset_changes_nothing(seeded):
    db = SessionLocal()
    try:
        job_id = _enqueue(db, seeded, "u1", T0)
        job = claim_next_job(db, now=T0)
        claimed_attempts = job.attempts

        assert reset_stale_jobs(db, timedelta(minutes=10), now=T0 + timedelta(minutes=30)) == 1

        assert complete_job(db, job, {"ok": True}, claimed_attempts=claimed_attempts) is False
        assert record_job_failure(db, job, "late", claimed_attempts=claimed_attempts) is None

        job = db.get(Job, job_id)
        db.refresh(job)
        assert job.status == "pending"
        assert job.result is None
        assert "stuck in processing" in job.error
    finally:
        db.close()


def test_old_owner_cannot_touch_a_reclaimed_job(seeded):
    db = SessionLocal()
    try:
        job_id = _enqueue(db, seeded, "u1", T0)
        first = claim_next_job(db, now=T0)
        first_attempts = first.attempts

        reset_stale_jobs(db, timedelta(minutes=10), now=T0 + timedelta(minutes=30))
        claim_next_job(db, now=T0 + timedelta(minutes=31))

        # the first worker finishes late; the second claim is untouched
        assert complete_job(db, first, {"ok": True}, claimed_attempts=first_attempts) is False

        job = db.get(Job, job_id)
        db.refresh(job)
        assert job.status == "processing"
        assert job.attempts == 2
    finally:
        db.close()


def test_failure_rearms_until_attempts_are_spent(seeded):
    db = SessionLocal()
    try:
        job_id = _enqueue(db, seeded, "u1", T0, max_attempts=2)

        job = claim_next_job(db, now=T0)
        assert record_job_failure(db, job, "PBX timeout", now=T0) == JobStatus.PENDING
        job = db.get(Job, job_id)
        assert job.status == "pending"
        assert job.error == "PBX timeout"
        assert job.started_at is None

        job = claim_next_job(db, now=T0 + timedelta(minutes=1))
        assert job.attempts == 2
        assert record_job_failure(db, job, "PBX timeout again") == JobStatus.FAILED
        job = db.get(Job, job_id)
        assert job.status == "failed"
        assert job.error == "PBX timeout again"
        assert job.completed_at is not None

        # failed jobs are never claimed again on their own
        assert claim_next_job(db, now=T0 + timedelta(hours=1)) is None
    finally:
        db.close()


def test_stale_reset_is_idempotent(seeded):
    db = SessionLocal()
    try:
        job_id = _enqueue(db, seeded, "u1", T0)
        claim_next_job(db, now=T0)

        later = T0 + timedelta(minutes=11)
        assert reset_stale_jobs(db, timedelta(minutes=10), now=later) == 1
        assert reset_stale_jobs(db, timedelta(minutes=10), now=later) == 0

        job = db.get(Job, job_id)
        db.refresh(job)
        assert job.status == "pending"
        assert job.started_at is None
        assert "stuck in processing" in job.error
    finally:
        db.close()


def test_stale_reset_leaves_recent_jobs_alone(seeded):
    db = SessionLocal()
    try:
        job_id = _enqueue(db, seeded, "u1", T0)
        claim_next_job(db, now=T0)

        assert reset_stale_jobs(db, timedelta(minutes=10), now=T0 + timedelta(minutes=5)) == 0
        assert db.get(Job, job_id).status == "processing"
    finally:
        db.close()


def test_stale_job_without_attempts_left_is_failed(seeded):
    db = SessionLocal()
    try:
        job_id = _enqueue(db, seeded, "u1", T0, max_attempts=1)
        claim_next_job(db, now=T0)

        assert reset_stale_jobs(db, timedelta(minutes=10), now=T0 + timedelta(minutes=30)) == 0

        job = db.get(Job, job_id)
        db.refresh(job)
        assert job.status == "failed"
    finally:
        db.close()


def test_transition_table():
    assert can_transition("pending", "processing")
    assert can_transition("processing", "completed")
    assert can_transition("processing", "failed")
    assert can_transition("processing", "pending")
    assert can_transition("failed", "pending")
    assert not can_transition("pending", "completed")
    assert not can_transition("completed", "pending")
    assert not can_transition("failed", "processing")


def test_transition_rejects_illegal_moves():
    job = Job(id=42, status="completed")
    with pytest.raises(InvalidJobTransition) as excinfo:
        transition(job, JobStatus.PENDING)
    assert excinfo.value.current == "completed"
    assert job.status == "completed"


def test_manual_retry_only_for_failed_jobs(seeded):
    db = SessionLocal()
    try:
        job_id = _enqueue(db, seeded, "u1", T0, max_attempts=1)

        with pytest.raises(InvalidJobTransition):
            retry_failed_job(db, job_id)

        job = claim_next_job(db, now=T0)
        record_job_failure(db, job, "boom")

        job = retry_failed_job(db, job_id)
        assert job.status == "pending"
        assert job.error is None
        assert job.started_at is None
        assert job.completed_at is None

        with pytest.raises(LookupError):
            retry_failed_job(db, 9999)
    finally:
        db.close()


def test_list_jobs_filters_and_paginates(seeded):
    db = SessionLocal()
    try:
        for i in range(5):
            _enqueue(db, seeded, f"call-{i}", T0 + timedelta(seconds=i))
        claim_next_job(db, now=T0 + timedelta(minutes=1))

        items, total = list_jobs(db, page=1, limit=2)
        assert total == 5
        assert len(items) == 2
        # newest first
        assert items[0].created_at > items[1].created_at

        items, total = list_jobs(db, status="processing")
        assert total == 1
        assert items[0].status == "processing"

        items, total = list_jobs(db, tenant_id=seeded["tenant_id"] + 100)
        assert total == 0
        assert items == []
    finally:
        db.close()
