import asyncio
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text

from newsletter.core.config import settings
from newsletter.core.logger import info, warning
from newsletter.core.setup_logger import db_logger


def _engine_kwargs(url: str) -> dict:
    kwargs = {"pool_pre_ping": True, "echo": settings.DEBUG}
    if not url.startswith("sqlite"):
        # shared by the scheduler and every queue slot; fan-out is capped below this
        kwargs["pool_size"] = settings.DB_POOL_SIZE
        kwargs["max_overflow"] = settings.DB_MAX_OVERFLOW
    return kwargs


async def connect_with_retry(url: Optional[str] = None, retries=5, delay=3) -> AsyncEngine:
    """Create async engine with retry logic."""
    url = url or settings.async_database_url
    for attempt in range(retries):
        engine = create_async_engine(url, **_engine_kwargs(url))
        try:
            async with engine.begin() as connection:
                await connection.execute(text("SELECT 1"))
            return engine
        except Exception as e:
            await engine.dispose()
            if attempt == retries - 1:
                raise
            warning(db_logger, f"Database connection attempt {attempt + 1} failed, retrying in {delay} seconds...",
                    context={"error": str(e)})
            await asyncio.sleep(delay)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False
    )


engine: Optional[AsyncEngine] = None
SessionLocal: Optional[async_sessionmaker] = None
Base = declarative_base()


async def init_database(url: Optional[str] = None):
    """Initialize database connection."""
    global engine, SessionLocal

    if engine is None:
        engine = await connect_with_retry(url)
        SessionLocal = create_session_factory(engine)
        info(db_logger, "Async database connection initialized", context={
            "dialect": engine.dialect.name,
        })


async def close_database():
    """Close database connections."""
    global engine, SessionLocal
    if engine:
        await engine.dispose()
        engine = None
        SessionLocal = None
        info(db_logger, "Database connections closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for async database sessions."""
    if SessionLocal is None:
        await init_database()

    async with SessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
