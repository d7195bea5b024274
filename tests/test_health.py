import pytest
from fastapi.testclient import TestClient

from doclifecycle.core import health as health_module
from doclifecycle.main import app

client = TestClient(app)


@pytest.fixture(autouse=True)
def _mock_env(monkeypatch):
    monkeypatch.setattr(health_module.settings, "environment", "test")
    yield


async def _ok():
    return {"status": "ok"}


def test_health_live_returns_ok() -> None:
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert "timestamp" in payload


def test_health_ready_ok(monkeypatch) -> None:
    monkeypatch.setattr(health_module, "_check_db", _ok)
    monkeypatch.setattr(health_module, "_check_redis", _ok)

    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert payload.get("ready") is True
    assert payload["environment"] == "test"
    assert payload["checks"]["database"]["status"] == "ok"
    assert payload["checks"]["redis"]["status"] == "ok"


def test_health_ready_degraded(monkeypatch) -> None:
    async def bad_db():
        return {"status": "error", "error": "unreachable"}

    monkeypatch.setattr(health_module, "_check_db", bad_db)
    monkeypatch.setattr(health_module, "_check_redis", _ok)

    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "degraded"
    assert payload.get("ready") is False
    assert payload["checks"]["database"]["status"] == "error"


def test_status_summary_reports_integrity_backlog(monkeypatch) -> None:
    async def backlog():
        return 3

    monkeypatch.setattr(health_module, "_check_db", _ok)
    monkeypatch.setattr(health_module, "_check_redis", _ok)
    monkeypatch.setattr(health_module, "_integrity_backlog", backlog)

    response = client.get("/api/v1/status/summary")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert payload.get("version") == health_module.APP_VERSION
    assert payload["integrity_backlog"] == 3


def test_status_summary_skips_backlog_without_redis(monkeypatch) -> None:
    async def bad_redis():
        return {"status": "error", "error": "refused"}

    async def backlog():  # pragma: no cover - must not be called
        raise AssertionError("backlog read without redis")

    monkeypatch.setattr(health_module, "_check_db", _ok)
    monkeypatch.setattr(health_module, "_check_redis", bad_redis)
    monkeypatch.setattr(health_module, "_integrity_backlog", backlog)

    payload = client.get("/api/v1/status/summary").json()["data"]
    assert payload["ready"] is False
    assert payload["integrity_backlog"] is None
