"""
Lock-and-skip behaviour against a real PostgreSQL.
Set NEWSLETTER_TEST_POSTGRES_URL (postgresql+asyncpg://...) to run these.
"""
import asyncio
import os

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from conftest import DummyQueue, seed_content, seed_job
from newsletter.db.database import Base, create_session_factory
from newsletter.repositories import JobRepository
from newsletter.scheduler.scheduler import Scheduler

POSTGRES_URL = os.environ.get("NEWSLETTER_TEST_POSTGRES_URL")

pytestmark = pytest.mark.skipif(not POSTGRES_URL, reason="NEWSLETTER_TEST_POSTGRES_URL not set")


@pytest_asyncio.fixture
async def pg_session_factory():
    engine = create_async_engine(POSTGRES_URL, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield create_session_factory(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_claims_never_overlap(pg_session_factory):
    seeded = await seed_content(pg_session_factory)
    for _ in range(4):
        await seed_job(pg_session_factory, content_id=seeded["content_id"])
    repo = JobRepository()

    async with pg_session_factory() as first, pg_session_factory() as second:
        claimed_first = await repo.claim_due_jobs(first, 2)
        claimed_second = await repo.claim_due_jobs(second, 10)

        assert len(claimed_first) == 2
        assert len(claimed_second) == 2
        assert not {job.id for job in claimed_first} & {job.id for job in claimed_second}
        await first.rollback()
        await second.rollback()


@pytest.mark.asyncio
async def test_two_schedulers_enqueue_each_job_once(pg_session_factory):
    seeded = await seed_content(pg_session_factory)
    job_ids = [await seed_job(pg_session_factory, content_id=seeded["content_id"]) for _ in range(10)]
    queue = DummyQueue()
    schedulers = [Scheduler(pg_session_factory, queue, batch_size=10) for _ in range(2)]

    results = await asyncio.gather(*(scheduler.tick() for scheduler in schedulers))

    enqueued = [m["payload"]["job_id"] for m in queue.enqueued]
    assert sum(result.enqueued for result in results) == 10
    assert sorted(enqueued) == sorted(str(job_id) for job_id in job_ids)

    async with pg_session_factory() as db:
        stats = await JobRepository().get_job_stats(db)
    assert stats["enqueued_count"] == 10
