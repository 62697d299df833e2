"""
Scheduler: turns due jobs into queue messages.

Any number of schedulers may run against the same database. Each job is
claimed in its own transaction with FOR UPDATE SKIP LOCKED, enqueued, and
marked enqueued before that transaction commits, so two schedulers never
dispatch the same job.
"""
import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from newsletter.constants.job_status import JobStatus
from newsletter.constants.job_types import JobTypes, TaskTypes, QueueLane
from newsletter.core.exceptions import EnqueueError, UnknownJobTypeError
from newsletter.core.logger import info, debug, warning, error
from newsletter.core.setup_logger import scheduler_logger
from newsletter.queue.base import Queue, TaskInfo
from newsletter.repositories.job_repository import JobRepository
from newsletter.schemas.payloads import SendNewsletterPayload

# job kind -> (task type, queue lane)
JOB_ROUTES: Dict[str, Tuple[str, str]] = {
    JobTypes.send_newsletter.value: (TaskTypes.send_newsletter.value, QueueLane.default.value),
}


@dataclass
class TickResult:
    claimed: int = 0
    enqueued: int = 0
    failed: int = 0
    requeued: int = 0


class Scheduler:

    def __init__(
            self,
            session_factory: async_sessionmaker,
            queue: Queue,
            job_repository: Optional[JobRepository] = None,
            interval: float = 30.0,
            batch_size: int = 100,
            retry_failed: bool = False,
            retry_base_delay: int = 60
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.session_factory = session_factory
        self.queue = queue
        self.job_repository = job_repository or JobRepository()
        self.interval = interval
        self.batch_size = batch_size
        self.retry_failed = retry_failed
        self.retry_base_delay = retry_base_delay

        self.is_running = False
        self.last_run: Optional[datetime] = None
        self.last_result: Optional[TickResult] = None
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None

        # Statistics
        self.ticks = 0
        self.tick_errors = 0
        self.jobs_enqueued = 0
        self.jobs_failed = 0

    async def start(self):
        """Run in the background: tick now, then every interval until stop()."""
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self.run())

    async def stop(self):
        """Ask the loop to exit; a tick in progress finishes its batch first."""
        self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

    async def run(self):
        self.is_running = True
        info(scheduler_logger, "Scheduler started", context={
            "interval_seconds": self.interval,
            "batch_size": self.batch_size,
            "retry_failed": self.retry_failed,
        })

        try:
            while not self._stop_event.is_set():
                try:
                    await self.tick()
                except SQLAlchemyError as e:
                    self.tick_errors += 1
                    error(scheduler_logger, "Tick aborted, storage unavailable", context={
                        "error": str(e),
                        "error_type": type(e).__name__,
                    })
                except Exception as e:
                    self.tick_errors += 1
                    error(scheduler_logger, "Tick aborted by unexpected error", context={
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }, exc_info=True)

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.is_running = False
            info(scheduler_logger, "Scheduler stopped", context=self.get_stats())

    async def tick(self) -> TickResult:
        """
        Claim and dispatch up to batch_size due jobs, oldest first.

        Raises:
            SQLAlchemyError: claiming failed; nothing was committed for the current job
        """
        result = TickResult()

        if self.retry_failed:
            result.requeued = await self._requeue_failed_jobs()

        while result.claimed < self.batch_size:
            if not await self._dispatch_next(result):
                break

        self.ticks += 1
        self.last_run = datetime.now(timezone.utc)
        self.last_result = result
        self.jobs_enqueued += result.enqueued
        self.jobs_failed += result.failed

        if result.claimed or result.requeued:
            info(scheduler_logger, "Tick completed", context=asdict(result))
        else:
            debug(scheduler_logger, "Tick completed, no due jobs")
        return result

    async def _dispatch_next(self, result: TickResult) -> bool:
        """
        Claim one due job and hand it to the queue inside one transaction.
        Returns False when the tick should end.
        """
        async with self.session_factory() as db:
            jobs = await self.job_repository.claim_due_jobs(db, 1)
            if not jobs:
                await db.commit()
                return False

            job = jobs[0]
            job_id, attempts = job.id, job.attempts
            result.claimed += 1
            debug(scheduler_logger, "Job claimed", context={
                "job_id": job_id,
                "content_id": job.content_id,
                "scheduled_at": job.scheduled_at,
            })

            try:
                task_info = await self._enqueue(job)
            except EnqueueError as e:
                result.failed += 1
                error(scheduler_logger, "Failed to enqueue job", context={
                    "job_id": job_id,
                    "content_id": job.content_id,
                    "error": str(e),
                })
                # a failed write here means storage is gone: abort the tick
                await self.job_repository.set_status_with_error(
                    db, job_id, JobStatus.failed, attempts + 1, str(e)
                )
                await db.commit()
                return True

            result.enqueued += 1
            try:
                updated = await self.job_repository.set_status(
                    db, job_id, JobStatus.enqueued, expected_status=JobStatus.pending
                )
                await db.commit()
            except SQLAlchemyError as e:
                # the message is already durable; leave the drift and end the tick
                error(scheduler_logger, "Job enqueued but status update failed", context={
                    "job_id": job_id,
                    "task_id": task_info.id,
                    "error": str(e),
                })
                return False

            if not updated:
                warning(scheduler_logger, "Job left pending before status update", context={"job_id": job_id})

            info(scheduler_logger, "Job enqueued", context={
                "job_id": job_id,
                "content_id": job.content_id,
                "task_id": task_info.id,
                "queue": task_info.queue,
            })
            return True

    async def _enqueue(self, job) -> TaskInfo:
        route = JOB_ROUTES.get(job.job_type)
        if route is None:
            raise UnknownJobTypeError(job.job_type)
        task_type, lane = route

        payload = SendNewsletterPayload(content_id=job.content_id, job_id=job.id)
        return await self.queue.enqueue(task_type, payload.encode(), lane=lane)

    async def _requeue_failed_jobs(self) -> int:
        try:
            async with self.session_factory() as db:
                count = await self.job_repository.requeue_failed_jobs(
                    db, limit=self.batch_size, base_delay_seconds=self.retry_base_delay
                )
                await db.commit()
        except SQLAlchemyError as e:
            error(scheduler_logger, "Failed to requeue failed jobs", context={"error": str(e)})
            return 0

        if count:
            warning(scheduler_logger, f"Requeued {count} failed jobs for retry")
        return count

    def get_stats(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "interval_seconds": self.interval,
            "batch_size": self.batch_size,
            "retry_failed": self.retry_failed,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_result": asdict(self.last_result) if self.last_result else None,
            "ticks": self.ticks,
            "tick_errors": self.tick_errors,
            "jobs_enqueued": self.jobs_enqueued,
            "jobs_failed": self.jobs_failed,
        }
