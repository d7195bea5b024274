from __future__ import annotations

from typing import Any

from sqlalchemy import text

from doclifecycle.core.settings import settings
from doclifecycle.db.session import engine
from doclifecycle.models.types import utcnow
from doclifecycle.utils.redis_client import get_redis_client

APP_VERSION = "0.1.0"


async def _check_db() -> dict[str, Any]:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:  # pragma: no cover - exercised in runtime
        return {"status": "error", "error": str(exc)}


async def _check_redis() -> dict[str, Any]:
    try:
        redis = get_redis_client()
        await redis.ping()
        return {"status": "ok"}
    except Exception as exc:
        return {"status": "error", "error": str(exc)}


async def _integrity_backlog() -> int | None:
    try:
        return int(await get_redis_client().llen(settings.integrity_queue_key))
    except Exception:
        return None


def _overall_status(checks: dict[str, dict[str, Any]]) -> tuple[str, bool]:
    ready = all(check.get("status") == "ok" for check in checks.values())
    return ("ok" if ready else "degraded", ready)


async def live_payload() -> dict[str, str]:
    return {"status": "ok", "timestamp": utcnow().isoformat()}


async def ready_payload() -> dict[str, Any]:
    checks = {
        "database": await _check_db(),
        "redis": await _check_redis(),
    }
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "timestamp": utcnow().isoformat(),
        "checks": checks,
    }


async def status_summary_payload() -> dict[str, Any]:
    payload = await ready_payload()
    payload["version"] = APP_VERSION
    payload["integrity_backlog"] = (
        await _integrity_backlog() if payload["checks"]["redis"]["status"] == "ok" else None
    )
    return payload
