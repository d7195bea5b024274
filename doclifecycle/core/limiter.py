from slowapi import Limiter
from slowapi.util import get_remote_address

from doclifecycle.core.settings import settings

# Read endpoints only; the budget is per client address across all routes.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.redis_url,
)

__all__ = ["limiter"]
