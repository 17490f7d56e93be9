# tests/test_webhook_service.py
from app.db.session import SessionLocal
from app.models import CdrRecord, Job, PbxConnection
from app.schemas.webhook import GrandstreamCdrPayload
from app.services import webhook_service
from app.services.webhook_service import ingest_cdr, verify_webhook_secret

PAYLOAD = {
    "uniqueid": "race-1",
    "src": "+15551234567",
    "dst": "1001",
    "recording_filename": "race-1.wav",
}


def test_insert_race_resolves_to_duplicate(seeded, monkeypatch):
    db = SessionLocal()
    try:
        connection = db.get(PbxConnection, seeded["connection_id"])
        payload = GrandstreamCdrPayload.model_validate(PAYLOAD)
        winner = ingest_cdr(db, connection, payload)

        # Simulate a concurrent delivery that passed the duplicate check
        # before the winner committed
        real_find = webhook_service._find_existing
        calls = []

        def find_after_first_miss(db, tenant_id, uniqueid):
            calls.append(uniqueid)
            return None if len(calls) == 1 else real_find(db, tenant_id, uniqueid)

        monkeypatch.setattr(webhook_service, "_find_existing", find_after_first_miss)

        loser = ingest_cdr(db, connection, payload)

        assert loser.duplicate is True
        assert loser.cdr_id == winner.cdr_id
        assert loser.job_id is None
        assert db.query(CdrRecord).count() == 1
        assert db.query(Job).count() == 1
    finally:
        db.close()


def test_max_attempts_is_applied_to_new_jobs(seeded):
    db = SessionLocal()
    try:
        connection = db.get(PbxConnection, seeded["connection_id"])
        result = ingest_cdr(db, connection, GrandstreamCdrPayload.model_validate(PAYLOAD), max_attempts=5)
        assert db.get(Job, result.job_id).max_attempts == 5
    finally:
        db.close()


def test_verify_webhook_secret(seeded):
    db = SessionLocal()
    try:
        connection = db.get(PbxConnection, seeded["connection_id"])
        assert verify_webhook_secret(connection, seeded["webhook_secret"])
        assert not verify_webhook_secret(connection, seeded["webhook_secret"][:-1])
        assert not verify_webhook_secret(connection, None)
        assert not verify_webhook_secret(connection, "")
    finally:
        db.close()
