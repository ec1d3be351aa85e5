"""Rate limiting singleton using slowapi."""

from fastapi import Request
from slowapi import Limiter


def _get_real_ip(request: Request) -> str:
    """Extract client IP, supporting X-Forwarded-For behind nginx proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _tenant_key(request: Request) -> str:
    """Limit per tenant when the caller identifies one, per client IP otherwise."""
    tenant = request.headers.get("X-Tenant-ID")
    if tenant:
        return f"tenant:{tenant}"
    return _get_real_ip(request)


limiter = Limiter(key_func=_tenant_key)
