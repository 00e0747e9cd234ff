from slowapi import Limiter
from slowapi.util import get_remote_address

from sessionauth.core.config import settings

# Keyed by client IP: these limits guard unauthenticated endpoints (login, resends).
# The limiter stays enabled; ENABLE_RATE_LIMITING is checked per request via exempt_when.
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
)


def rate_limiting_disabled() -> bool:
    return not settings.ENABLE_RATE_LIMITING
