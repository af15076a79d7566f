import inspect
import logging
import uuid
from typing import Type, TypeVar

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import PharmacyConfigurationError, WebhookSignatureError
from app.core.roles import UserRole
from app.core.security import INTERNAL_KEY_HEADERS, is_internal_key, is_shared_secret
from app.db.sessions import AsyncSessionLocal, get_async_session
from app.models import User
from app.services.authnet import AuthorizeNetClient
from app.services.digitalrx.client import DigitalRxClient
from app.services.notification.notification_service import NotificationService


# Initialize logger for security events
logger = logging.getLogger(__name__)

# HTTPBearer is used for "Authorization: Bearer <token>" headers
oauth2_scheme = HTTPBearer(auto_error=False)

T = TypeVar("T")


# Create ONE Redis client (connection pool)
redis_client = Redis.from_url(
    settings.redis_url,
    decode_responses=True,  # returns str instead of bytes
)


async def get_current_user(
    token: HTTPAuthorizationCredentials = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_async_session)
) -> User:
    """
    Dependency that authenticates requests using a JWT.
    """
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = jwt.decode(
            token.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"leeway": 30}
        )

        user_id_str: str = payload.get("sub")

        if not user_id_str or payload.get("type") != "access":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token"
            )

    except JWTError:
        logger.warning("JWT Decode Failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is invalid or has expired"
        )

    try:
        user_uuid = uuid.UUID(user_id_str)
    except (ValueError, AttributeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identifier format"
        )

    result = await session.execute(select(User).where(User.id == user_uuid))
    user = result.scalar_one_or_none()

    if not user:
        logger.warning(f"Auth Failure: User {user_id_str} not found in database.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    if not user.is_active:
        raise HTTPException(status_code=403, detail="User account disabled")

    return user


# ROLE BASED ACCESS CONTROL (SUB DEPENDENCIES OF GET CURRENT USER)

def get_current_provider(current_user: User = Depends(get_current_user)) -> User:
    """Require Provider role"""
    if current_user.role != UserRole.PROVIDER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Provider access required",
        )
    return current_user


def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """Require admin role"""
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


def is_internal_request(request: Request) -> bool:
    return any(is_internal_key(request.headers.get(name)) for name in INTERNAL_KEY_HEADERS)


async def get_provider_or_internal(
    request: Request,
    token: HTTPAuthorizationCredentials = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_async_session),
) -> User | None:
    """
    Service-to-service callers (x-internal-api-key / x-internal-secret)
    resolve to None; everyone else must be a signed-in provider.
    """
    if is_internal_request(request):
        return None

    user = await get_current_user(token, session)
    return get_current_provider(user)


def verify_digitalrx_webhook(x_webhook_secret: str | None = Header(default=None)) -> None:
    if not settings.digitalrx_webhook_secret:
        raise PharmacyConfigurationError("DigitalRx webhook secret not configured")

    if not is_shared_secret(x_webhook_secret, settings.digitalrx_webhook_secret):
        logger.warning("DigitalRx webhook rejected: bad shared secret")
        raise WebhookSignatureError("Invalid webhook secret")


# SERVICE DEPENDENCIES

async def get_redis() -> Redis:
    return redis_client


def get_notification_service() -> NotificationService:
    return NotificationService()


def get_digitalrx_client() -> DigitalRxClient:
    return DigitalRxClient()


def get_authnet_client() -> AuthorizeNetClient:
    return AuthorizeNetClient()


def get_session_factory():
    return AsyncSessionLocal


def get_service(service_cls: Type[T]):
    """
    Builds `service_cls` with whichever of our shared dependencies its
    constructor asks for (db/session, notification_service, digitalrx, authnet).
    """
    def _get(
        db: AsyncSession = Depends(get_async_session),
        notification_service: NotificationService = Depends(get_notification_service),
        digitalrx: DigitalRxClient = Depends(get_digitalrx_client),
        authnet: AuthorizeNetClient = Depends(get_authnet_client),
    ) -> T:
        available = {
            "db": db,
            "session": db,
            "notification_service": notification_service,
            "digitalrx": digitalrx,
            "authnet": authnet,
        }
        params = inspect.signature(service_cls.__init__).parameters
        return service_cls(**{name: value for name, value in available.items() if name in params})

    return _get
