import logging
from contextlib import asynccontextmanager
from app.core.config import settings
from sqlalchemy.pool import NullPool
from sqlalchemy.ext.asyncio import (AsyncSession, async_sessionmaker, create_async_engine)

# Initialize the logger for async database events
logger = logging.getLogger(__name__)

# --- DATABASE URL CONFIGURATION ---

db_url = settings.database_url

if not db_url:
    raise RuntimeError("DATABASE_URL is not set")

if db_url.startswith("postgresql+asyncpg://"):
    async_db = db_url
else:
    #create async version for the application
    async_db = db_url.replace('postgresql://', 'postgresql+asyncpg://')


# --- ASYNC ENGINE CONFIG (FastAPI)

async_engine = create_async_engine(
    async_db,
    echo=False,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_= AsyncSession,
    expire_on_commit= False,
)


# --- FASTAPI DEPENDENCY
async def get_async_session() -> AsyncSession:
    """
    FastAPI Dependency that provides an asynchronous database session.
    """
    async with AsyncSessionLocal() as session:
        try:
            logger.debug("Database: New async session yielded for API request.")
            yield session
        except Exception as e:
            await session.rollback()
            logger.exception(f"Database: Async session error: {e}")
            raise
        finally:
            await session.close()


# CELERY / WORKER USAGE

@asynccontextmanager
async def worker_session_factory():
    """
    Session factory for Celery tasks.

    Every task runs its coroutine under a fresh event loop (asyncio.run), so
    the pooled API engine can't be shared; this one is built per task with
    NullPool and disposed on exit.
    """
    engine = create_async_engine(async_db, poolclass=NullPool)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()
