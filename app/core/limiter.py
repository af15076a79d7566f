import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from app.core.config import settings

# Initialize logger
logger = logging.getLogger(__name__)

storage_uri = "memory://" if settings.is_testing else settings.redis_url

# RATE LIMITER CONFIGURATION
# key_func=get_remote_address: Identifies payers by their IP address.
limiter = Limiter(
    key_func=get_remote_address,
    # Points at Redis so limits are shared across all API containers
    storage_uri=storage_uri,
    strategy="fixed-window",
    enabled=not settings.is_testing
)


def init_limiter_error_handlers(app):
    """
    Registers a custom error handler to return
    a clean JSON response when a caller is rate-limited.
    """
    from fastapi import Request
    from fastapi.responses import JSONResponse
    from slowapi.errors import RateLimitExceeded

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
        ip = request.client.host if request.client else "unknown"
        logger.warning(f"Rate limit exceeded by IP: {ip}")
        return JSONResponse(
            status_code=429,
            content={"success": False, "error": "Too many requests. Please slow down."},
        )
