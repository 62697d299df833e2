import uuid
from typing import List, Optional, Dict, Any, Union
from datetime import datetime, timezone, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from newsletter.constants.job_status import JobStatus
from newsletter.constants.job_types import JobTypes
from newsletter.repositories.base_repository import AsyncBaseRepository
from newsletter.models.jobs_model import ScheduledJob

StatusLike = Union[JobStatus, str]


def _status_value(status: StatusLike) -> str:
    return status.value if isinstance(status, JobStatus) else status


class JobRepository(AsyncBaseRepository[ScheduledJob]):
    def __init__(self):
        super().__init__(ScheduledJob)

    async def create_job(
            self,
            db: AsyncSession,
            *,
            content_id: uuid.UUID,
            scheduled_at: Optional[datetime] = None,
            job_type: JobTypes = JobTypes.send_newsletter,
            max_attempts: int = 3
    ) -> ScheduledJob:
        """
        Schedule a job for a content item.
        """
        if scheduled_at is None:
            scheduled_at = datetime.now(timezone.utc)

        job_data = {
            "content_id": content_id,
            "job_type": job_type.value,
            "status": JobStatus.pending.value,
            "scheduled_at": scheduled_at,
            "attempts": 0,
            "max_attempts": max_attempts
        }

        return await self.create(db, obj_in=job_data)

    def due_jobs_query(self, limit: int, now: Optional[datetime] = None):
        """
        Oldest due pending jobs, locked for the caller's transaction.
        SKIP LOCKED makes concurrent schedulers step over each other's rows
        instead of waiting on them, so two claims never overlap.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        return (
            select(ScheduledJob)
            .where(
                ScheduledJob.status == JobStatus.pending.value,
                ScheduledJob.scheduled_at <= now
            )
            .order_by(ScheduledJob.scheduled_at.asc(), ScheduledJob.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )

    async def claim_due_jobs(
            self,
            db: AsyncSession,
            limit: int
    ) -> List[ScheduledJob]:
        """
        Claim up to `limit` due jobs using FOR UPDATE SKIP LOCKED.
        The locks last until the caller commits or rolls back.
        """
        try:
            result = await db.execute(self.due_jobs_query(limit))
            return list(result.scalars().all())
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def set_status(
            self,
            db: AsyncSession,
            job_id: uuid.UUID,
            status: StatusLike,
            expected_status: Optional[StatusLike] = None
    ) -> bool:
        """
        Set a job's status. With expected_status the update only applies
        while the job is still in that status.

        Returns False when no row matched.
        """
        condition = {"id": job_id}
        if expected_status is not None:
            condition["status"] = _status_value(expected_status)

        count = await self.bulk_update(
            db,
            condition=condition,
            values={"status": _status_value(status)}
        )
        return count > 0

    async def set_status_with_error(
            self,
            db: AsyncSession,
            job_id: uuid.UUID,
            status: StatusLike,
            attempts: int,
            error_message: Optional[str]
    ) -> bool:
        count = await self.bulk_update(
            db,
            condition={"id": job_id},
            values={
                "status": _status_value(status),
                "attempts": attempts,
                "error_message": error_message,
            }
        )
        return count > 0

    async def mark_failed(
            self,
            db: AsyncSession,
            job_id: uuid.UUID,
            error_message: str
    ) -> bool:
        """
        Mark a job as failed, bumping attempts in SQL so concurrent
        writers never lose an increment.
        """
        try:
            stmt = (
                update(ScheduledJob)
                .where(ScheduledJob.id == job_id)
                .values(
                    status=JobStatus.failed.value,
                    attempts=ScheduledJob.attempts + 1,
                    error_message=error_message,
                    updated_at=datetime.now(timezone.utc)
                )
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            return result.rowcount > 0
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def requeue_failed_jobs(
            self,
            db: AsyncSession,
            limit: int = 100,
            base_delay_seconds: int = 60
    ) -> int:
        """
        Move failed jobs that still have attempts left back to pending,
        scheduled with exponential backoff (base, 2x base, 4x base ...).
        """
        try:
            stmt = (
                select(ScheduledJob)
                .where(
                    ScheduledJob.status == JobStatus.failed.value,
                    ScheduledJob.attempts < ScheduledJob.max_attempts
                )
                .order_by(ScheduledJob.updated_at.asc())
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            result = await db.execute(stmt)
            jobs = list(result.scalars().all())

            now = datetime.now(timezone.utc)
            for job in jobs:
                delay = base_delay_seconds * 2 ** max(job.attempts - 1, 0)
                job.status = JobStatus.pending.value
                job.scheduled_at = now + timedelta(seconds=delay)
                job.updated_at = now

            await db.flush()
            return len(jobs)
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def get_job_stats(self, db: AsyncSession) -> Dict[str, Any]:
        """
        Count jobs per status; every status is present, zero when empty.
        """
        counts = await self.count_by(db, "status")
        return {
            f"{status.value}_count": counts.get(status.value, 0)
            for status in JobStatus
        }
