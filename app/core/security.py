import hmac
import logging
from datetime import datetime, timedelta, timezone

from jose import jwt

from app.core.config import settings


# Initialize logger for tracking token generation events
logger = logging.getLogger(__name__)


# ----- JWT --------

def create_access_token(user) -> str:
    """
    Generates a short-lived JWT Access Token.

    Payload:
    - sub: The User UUID (Standard subject claim)
    - type: The type which is access token
    - email: Included for quick frontend display without a DB lookup
    - role: The role of the user
    - exp: Expiration timestamp (Default: 20 minutes)
    """

    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.access_token_expire_minutes)

    # Ensure user.id is a string as UUID objects aren't JSON serializable by default
    payload = {
        "sub": str(user.id),
        "type": "access",
        "email": str(user.email),
        "role": user.role.value,
        "iat": now,
        "exp": expire
    }

    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    logger.debug(f"JWT: Access token created for user {user.id}")
    return token


# ----- SERVICE-TO-SERVICE --------

INTERNAL_KEY_HEADERS = ("x-internal-api-key", "x-internal-secret")


def is_internal_key(value: str | None) -> bool:
    """Constant-time check of a caller-supplied key against INTERNAL_API_KEY."""
    if not value or not settings.internal_api_key:
        return False
    return hmac.compare_digest(value.encode("utf-8"), settings.internal_api_key.encode("utf-8"))


def is_shared_secret(value: str | None, secret: str) -> bool:
    if not value:
        return False
    return hmac.compare_digest(value.encode("utf-8"), secret.encode("utf-8"))
