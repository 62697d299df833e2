import uuid
from typing import List, Optional, Dict
from datetime import datetime, timezone, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from newsletter.constants.queue_status import TaskStatus
from newsletter.repositories.base_repository import AsyncBaseRepository
from newsletter.models.queue_task_model import QueueTask

_FETCHABLE = [TaskStatus.pending.value, TaskStatus.retry.value]


class TaskRepository(AsyncBaseRepository[QueueTask]):
    """Storage for the durable queue's messages."""

    def __init__(self):
        super().__init__(QueueTask)

    async def create_task(
            self,
            db: AsyncSession,
            *,
            task_type: str,
            payload: str,
            lane: str = "default",
            max_retry: int = 3,
            process_at: Optional[datetime] = None
    ) -> QueueTask:
        return await self.create(db, obj_in={
            "task_type": task_type,
            "payload": payload,
            "lane": lane,
            "status": TaskStatus.pending.value,
            "process_at": process_at or datetime.now(timezone.utc),
            "retried": 0,
            "max_retry": max_retry,
        })

    async def claim_next_task(
            self,
            db: AsyncSession,
            lanes: List[str]
    ) -> Optional[QueueTask]:
        """
        Claim the oldest due task of the first lane (in the given order)
        that has one, using FOR UPDATE SKIP LOCKED, and mark it active.
        """
        now = datetime.now(timezone.utc)
        try:
            for lane in lanes:
                stmt = (
                    select(QueueTask)
                    .where(
                        QueueTask.lane == lane,
                        QueueTask.status.in_(_FETCHABLE),
                        QueueTask.process_at <= now
                    )
                    .order_by(QueueTask.process_at.asc(), QueueTask.created_at.asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                result = await db.execute(stmt)
                task = result.scalar_one_or_none()
                if task is None:
                    continue

                task.status = TaskStatus.active.value
                task.started_at = now
                task.updated_at = now
                await db.flush()
                return task

            return None
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def mark_completed(self, db: AsyncSession, task_id: uuid.UUID) -> bool:
        count = await self.bulk_update(
            db,
            condition={"id": task_id},
            values={"status": TaskStatus.completed.value, "last_error": None}
        )
        return count > 0

    async def schedule_retry(
            self,
            db: AsyncSession,
            task_id: uuid.UUID,
            error_message: str,
            process_at: datetime
    ) -> bool:
        try:
            stmt = (
                update(QueueTask)
                .where(QueueTask.id == task_id)
                .values(
                    status=TaskStatus.retry.value,
                    retried=QueueTask.retried + 1,
                    last_error=error_message,
                    process_at=process_at,
                    started_at=None,
                    updated_at=datetime.now(timezone.utc)
                )
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            return result.rowcount > 0
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def archive(self, db: AsyncSession, task_id: uuid.UUID, error_message: str) -> bool:
        count = await self.bulk_update(
            db,
            condition={"id": task_id},
            values={"status": TaskStatus.archived.value, "last_error": error_message}
        )
        return count > 0

    async def release(self, db: AsyncSession, task_id: uuid.UUID) -> bool:
        """
        Hand an interrupted task back to the queue without counting a retry.
        """
        count = await self.bulk_update(
            db,
            condition={"id": task_id, "status": TaskStatus.active.value},
            values={"status": TaskStatus.retry.value, "started_at": None}
        )
        return count > 0

    async def reset_stale_tasks(self, db: AsyncSession, stale_timeout_seconds: int) -> int:
        """
        Return tasks stuck in active (their consumer died) to the queue.
        """
        try:
            cutoff = datetime.now(timezone.utc) - timedelta(seconds=stale_timeout_seconds)
            stmt = (
                update(QueueTask)
                .where(
                    QueueTask.status == TaskStatus.active.value,
                    QueueTask.started_at < cutoff
                )
                .values(
                    status=TaskStatus.retry.value,
                    started_at=None,
                    updated_at=datetime.now(timezone.utc)
                )
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            return result.rowcount
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def get_queue_stats(self, db: AsyncSession) -> Dict[str, int]:
        counts = await self.count_by(db, "status")
        return {status.value: counts.get(status.value, 0) for status in TaskStatus}
