# tests/test_health.py
from fastapi.testclient import TestClient
from app.main import app

client = TestClient(app)


def test_health_reports_database_ok():
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    # the test SQLite database is always reachable
    assert data["status"] == "ok"
    assert data["database"] == "ok"
    assert data["app"]
    assert data["env"]


def test_health_does_not_require_admin_key():
    response = client.get("/health", headers={"X-Admin-Key": "wrong"})
    assert response.status_code == 200
