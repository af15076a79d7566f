import logging
import os
import uuid

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.router import router as api_router
from app.core.config import settings
from app.core.deps import get_digitalrx_client, get_redis
from app.core.exceptions import AppError
from app.core.limiter import init_limiter_error_handlers, limiter
from app.core.logging import request_id_var, setup_logging
from app.db.sessions import get_async_session
from app.services.digitalrx.client import DigitalRxClient

# LOGGING
setup_logging()
logger = logging.getLogger(__name__)

# APP INITIALIZATION
allowed_hosts = os.getenv("ALLOWED_HOSTS", "*").split(",")

app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"{type(exc).__name__}: {exc.message} | RequestID: {getattr(request.state, 'request_id', '-')}")

    content = {"success": False, "error": exc.message}
    if exc.details:
        content["details"] = exc.details

    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content))


# ROUTERS
app.include_router(api_router, prefix="/api")


@app.exception_handler(Exception)
async def universal_exception_handler(request: Request, exc: Exception):
    # Log the real error for the developer
    logger.error(f"Unhandled error: {str(exc)}", exc_info=True)

    # Send a polite message to the user
    return JSONResponse(
        status_code=500, content={"detail": "An unexpected error occurred."}
    )


# RATE LIMITING
app.state.limiter = limiter
init_limiter_error_handlers(app)


# SECURITY MIDDLEWARES
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8000",
        settings.app_url,
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
)


# REQUEST TRACING & SECURITY HEADERS
@app.middleware("http")
async def security_and_tracing_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = request_id_var.set(request_id)

    try:
        response = await call_next(request)

        response.headers["X-Request-Id"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"

        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=63072000; includeSubDomains"
            )

        return response

    finally:
        request_id_var.reset(token)


# HEALTH CHECKS
@app.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_async_session),
    redis=Depends(get_redis),
    digitalrx: DigitalRxClient = Depends(get_digitalrx_client),
):
    health_status = {"status": "healthy", "dependencies": {}}

    # 1. Check PostgreSQL
    try:
        await db.execute(text("SELECT 1"))
        health_status["dependencies"]["database"] = "ok"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["dependencies"]["database"] = str(e)

    # 2. Check Redis
    try:
        await redis.ping()
        health_status["dependencies"]["redis"] = "ok"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["dependencies"]["redis"] = str(e)

    # 3. Check DigitalRx (5 s timeout)
    if await digitalrx.ping():
        health_status["dependencies"]["digitalrx"] = "ok"
    else:
        health_status["status"] = "degraded" if health_status["status"] == "healthy" else health_status["status"]
        health_status["dependencies"]["digitalrx"] = "unreachable"

    return health_status
