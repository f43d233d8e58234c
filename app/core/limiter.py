from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.settings import settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=settings.rate_limit_enabled,
)


def auth_rate_limit() -> str:
    return f"{settings.auth_rate_limit_per_minute}/minute"


__all__ = ["limiter", "auth_rate_limit"]
