"""
API process: read-only inspection endpoints plus the background scheduler.
Run with: uvicorn newsletter.main:app
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio.session import AsyncSession

from newsletter.api.v1 import api_v1_router
from newsletter.core import settings
from newsletter.core.logger import info, error
from newsletter.core.setup_logger import api_logger
from newsletter.db import database, get_db
from newsletter.queue.postgres_queue import PostgresQueue
from newsletter.scheduler.scheduler import Scheduler


def build_scheduler(session_factory) -> Scheduler:
    queue = PostgresQueue(
        session_factory,
        lane_weights=settings.queue_lane_weights,
        max_retry=settings.QUEUE_MAX_RETRY,
        retry_base_delay=settings.QUEUE_RETRY_BASE_DELAY,
    )
    return Scheduler(
        session_factory,
        queue,
        interval=settings.SCHEDULER_INTERVAL,
        batch_size=settings.SCHEDULER_BATCH_SIZE,
        retry_failed=settings.JOB_RETRY_ENABLED,
        retry_base_delay=settings.JOB_RETRY_BASE_DELAY,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    await database.init_database()
    app.state.scheduler = None

    if settings.SCHEDULER_ENABLED:
        app.state.scheduler = build_scheduler(database.SessionLocal)
        await app.state.scheduler.start()
        info(api_logger, "Scheduler running in background", context={
            "interval_seconds": settings.SCHEDULER_INTERVAL,
        })

    try:
        yield
    finally:
        if app.state.scheduler is not None:
            await app.state.scheduler.stop()
        await database.close_database()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allows all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allows all methods
    allow_headers=["*"],  # Allows all headers
)

app.include_router(api_v1_router, prefix=settings.API_V1_STR)

info(api_logger, "FastAPI application starting...")


@app.get("/")
def health_check():
    return {"status": "ok", "message": "Application running"}


@app.get("/db-health")
async def db_health_check(db: AsyncSession = Depends(get_db)):
    try:
        result = await db.execute(text('SELECT 1'))
        _ = result.scalar()
        return {"status": "ok", "message": "Database running"}
    except SQLAlchemyError as e:
        error(api_logger, "Database health check failed", context={"error": str(e)})
        return {"status": "error", "message": str(e)}
