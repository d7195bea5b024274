import json
import logging
from collections.abc import Iterable

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from doclifecycle.core.settings import settings
from doclifecycle.services.errors import DataIntegrityWarning
from doclifecycle.services.validity import scan_validity_anomalies

logger = logging.getLogger(__name__)


async def queue_for_reconciliation(
    redis: Redis,
    warnings: Iterable[DataIntegrityWarning],
    *,
    key: str | None = None,
) -> int:
    """Push anomalies onto a Redis list for an operator or repair job."""
    payloads = [json.dumps(warning.to_dict(), default=str) for warning in warnings]
    if not payloads:
        return 0
    queue_key = key or settings.integrity_queue_key
    await redis.rpush(queue_key, *payloads)
    logger.info(
        "Queued data integrity warnings",
        extra={"context": {"queue": queue_key, "count": len(payloads)}},
    )
    return len(payloads)


async def reconcile_tenant(db: AsyncSession, redis: Redis, tenant_id: str) -> list[DataIntegrityWarning]:
    warnings = await scan_validity_anomalies(db, tenant_id)
    await queue_for_reconciliation(redis, warnings)
    return warnings
