"""
Rate limiting utilities for API endpoints.
Uses slowapi to prevent upload flooding and API abuse.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from builder_cms.config import settings


def get_client_identifier(request: Request) -> str:
    """
    Get client identifier for rate limiting.
    Uses forwarded IP if behind proxy, otherwise remote address.
    """
    # Check for forwarded IP (if behind reverse proxy)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Get first IP in chain (original client)
        return forwarded.split(",")[0].strip()

    return get_remote_address(request)


# Create limiter instance
limiter = Limiter(
    key_func=get_client_identifier,
    default_limits=["100/hour"],
    storage_uri="memory://",  # Use in-memory storage (for production, consider Redis)
    enabled=settings.RATE_LIMIT_ENABLED,
)


# Rate limit configurations for specific use cases
RATE_LIMITS = {
    "upload": "60/hour",  # A full gallery is 10 images; allow a few retries
    "cleanup": "30/hour",
    "general": "100/hour",
}
