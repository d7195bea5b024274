from fastapi import APIRouter, Request

from doclifecycle.core.health import live_payload, ready_payload, status_summary_payload
from doclifecycle.core.limiter import limiter

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
@limiter.exempt
async def health_live(request: Request) -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Database and Redis readiness check")
@limiter.exempt
async def health_ready(request: Request) -> dict:
    return await ready_payload()


@router.get("/status/summary", tags=["status"], summary="Service status summary")
@limiter.exempt
async def status_summary(request: Request) -> dict:
    return await status_summary_payload()
