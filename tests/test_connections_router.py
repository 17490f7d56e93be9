# tests/test_connections_router.py
import re

from fastapi.testclient import TestClient

from app.db.session import SessionLocal
from app.main import app
from app.models import PbxConnection
from app.routers.connections import get_connection_tester
from app.services import connection_service
from app.services.encryption_service import CredentialStore
from app.services.pbx_client import ConnectionTestResult


class FakeTester:
    """Stands in for a UCM; remembers the configs it was asked to test."""

    def __init__(self, result):
        self.result = result
        self.configs = []

    def __call__(self, config, timeout_ms):
        self.configs.append(config)
        return self.result


ok_tester = FakeTester(ConnectionTestResult(True, "Connection successful", None, 42))

app.dependency_overrides[get_connection_tester] = lambda: ok_tester

client = TestClient(app)

ADMIN = {"X-Admin-Key": "test-admin-key"}


def test_create_connection_encrypts_password(seeded):
    db = SessionLocal()
    try:
        connection = db.get(PbxConnection, seeded["connection_id"])
        assert connection.password_encrypted != seeded["pbx_password"]
        assert seeded["pbx_password"] not in connection.password_encrypted
        assert CredentialStore.from_settings().decrypt(connection.password_encrypted) == seeded["pbx_password"]
        assert re.fullmatch(r"[0-9a-f]{64}", connection.webhook_secret)
        assert connection.status == "active"
        assert connection.verify_ssl is False
    finally:
        db.close()


def test_connection_test_endpoint_marks_connection_active(seeded):
    ok_tester.configs.clear()
    resp = client.post(f"/connections/{seeded['connection_id']}/test", headers=ADMIN)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["response_time_ms"] == 42
    assert body["connection"]["status"] == "active"
    assert body["connection"]["last_connected_at"] is not None
    assert seeded["pbx_password"] not in resp.text

    assert ok_tester.configs[0].password == seeded["pbx_password"]
    assert ok_tester.configs[0].port == 8089


def test_failed_test_records_error(seeded):
    tester = FakeTester(ConnectionTestResult(False, "Network error", "Connection refused", 5))
    db = SessionLocal()
    try:
        connection = db.get(PbxConnection, seeded["connection_id"])
        result = connection_service.test_pbx_connection(db, connection, tester)

        assert result.success is False
        db.refresh(connection)
        assert connection.status == "error"
        assert connection.last_error == "Connection refused"
    finally:
        db.close()


def test_connection_test_requires_admin_key(seeded):
    assert client.post(f"/connections/{seeded['connection_id']}/test").status_code == 401


def test_connection_test_unknown_connection(seeded):
    assert client.post("/connections/9999/test", headers=ADMIN).status_code == 404
