"""
PostgreSQL-backed durable queue.
Messages live in queue_tasks; consumers claim them with FOR UPDATE SKIP LOCKED,
so any number of worker processes can share one queue.
"""
import asyncio
import json
import random
import time
import uuid
from datetime import datetime, timezone, timedelta
from typing import Dict, Optional, Any, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from newsletter.core.exceptions import EnqueueError, HandlerNotFoundError, PayloadError
from newsletter.core.logger import info, debug, warning, error
from newsletter.core.setup_logger import queue_logger
from newsletter.queue.base import Queue, Task, TaskInfo, HandlerFunc
from newsletter.repositories.task_repository import TaskRepository

DEFAULT_LANES = {"critical": 6, "default": 3, "low": 1}


class PostgresQueue(Queue):
    """
    Producer and consumer sides of the durable queue.

    The consumer runs a fixed pool of `concurrency` slots; each slot runs one
    handler call to completion. Lanes are polled in a weighted random order
    on every fetch, so a lane with weight 6 is tried first about six times as
    often as a lane with weight 1, and no lane starves.
    """

    def __init__(
            self,
            session_factory: async_sessionmaker,
            task_repository: Optional[TaskRepository] = None,
            concurrency: int = 10,
            lane_weights: Optional[Dict[str, int]] = None,
            poll_interval: float = 1.0,
            max_poll_interval: float = 10.0,
            backoff_factor: float = 1.5,
            max_retry: int = 3,
            retry_base_delay: float = 30.0,
            stale_timeout: int = 900,
            shutdown_timeout: float = 30.0,
            rng: Optional[random.Random] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        lane_weights = lane_weights or DEFAULT_LANES
        self.lane_weights = {lane: weight for lane, weight in lane_weights.items() if weight > 0}
        if not self.lane_weights:
            raise ValueError("at least one lane needs a positive weight")

        self.session_factory = session_factory
        self.task_repository = task_repository or TaskRepository()
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.backoff_factor = backoff_factor
        self.max_retry = max_retry
        self.retry_base_delay = retry_base_delay
        self.stale_timeout = stale_timeout
        self.shutdown_timeout = shutdown_timeout
        self._rng = rng or random.Random()

        self._handlers: Dict[str, HandlerFunc] = {}
        self.active_tasks: Set[asyncio.Task] = set()
        self.current_poll_interval = poll_interval
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._last_stale_check = 0.0

        # Statistics
        self.tasks_processed = 0
        self.tasks_succeeded = 0
        self.tasks_failed = 0

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    async def enqueue(
            self,
            task_type: str,
            payload: Dict[str, Any],
            *,
            lane: str = "default",
            max_retry: Optional[int] = None,
            process_at: Optional[datetime] = None
    ) -> TaskInfo:
        if lane not in self.lane_weights:
            raise EnqueueError(f"unknown queue lane: {lane}")

        try:
            encoded = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise EnqueueError(f"failed to encode {task_type} payload: {e}") from e

        try:
            async with self.session_factory() as db:
                task = await self.task_repository.create_task(
                    db,
                    task_type=task_type,
                    payload=encoded,
                    lane=lane,
                    max_retry=self.max_retry if max_retry is None else max_retry,
                    process_at=process_at,
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise EnqueueError(f"failed to enqueue {task_type}: {e}") from e

        debug(queue_logger, "Task enqueued", context={
            "task_id": str(task.id),
            "task_type": task_type,
            "lane": lane,
        })
        return TaskInfo(id=str(task.id), queue=lane)

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    def register_handler(self, task_type: str, handler: HandlerFunc) -> None:
        info(queue_logger, f"Registering handler for task_type: {task_type}")
        self._handlers[task_type] = handler

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> None:
        if self.is_running:
            return

        self._stop_event.clear()
        await self._recover_stale_tasks()

        info(queue_logger, "Queue consumer starting", context={
            "concurrency": self.concurrency,
            "lanes": self.lane_weights,
            "handlers": sorted(self._handlers),
        })
        self._loop_task = asyncio.create_task(self._processing_loop())

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        timeout = self.shutdown_timeout if timeout is None else timeout
        warning(queue_logger, "Queue consumer shutting down...", context={
            "active_tasks": len(self.active_tasks),
            "timeout": timeout,
        })

        self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        if self.active_tasks:
            warning(queue_logger, f"Waiting for {len(self.active_tasks)} active tasks to complete")
            await asyncio.wait(self.active_tasks, timeout=timeout)

            remaining = [task for task in self.active_tasks if not task.done()]
            if remaining:
                warning(queue_logger, f"Forcefully cancelling {len(remaining)} remaining tasks after timeout")
                for task in remaining:
                    task.cancel()
                await asyncio.gather(*remaining, return_exceptions=True)
            self.active_tasks.clear()

        info(queue_logger, "Queue consumer statistics", context={
            "tasks_processed": self.tasks_processed,
            "tasks_succeeded": self.tasks_succeeded,
            "tasks_failed": self.tasks_failed,
        })

    def lane_order(self):
        """Lanes in weighted random order, each lane once."""
        lanes = list(self.lane_weights.items())
        order = []
        while lanes:
            total = sum(weight for _, weight in lanes)
            pick = self._rng.uniform(0, total)
            acc = 0
            for index, (lane, weight) in enumerate(lanes):
                acc += weight
                if pick <= acc or index == len(lanes) - 1:
                    order.append(lane)
                    lanes.pop(index)
                    break
        return order

    async def _processing_loop(self):
        """
        Main loop: keep the slot pool filled while there is due work,
        back off exponentially while the queue is empty
        """
        info(queue_logger, "Entering main processing loop...")

        while not self._stop_event.is_set():
            try:
                self._cleanup_completed_tasks()

                if time.monotonic() - self._last_stale_check > max(self.stale_timeout / 2, 1):
                    await self._recover_stale_tasks()

                if self._available_slots() <= 0:
                    debug(queue_logger, "All slots are occupied, waiting...", context={
                        "active_tasks": len(self.active_tasks),
                    })
                    await self._sleep(self.poll_interval)
                    continue

                task = await self._claim_next()
                if task is not None:
                    job = asyncio.create_task(self._process_task(task))
                    self.active_tasks.add(job)
                    self.current_poll_interval = self.poll_interval
                    continue

                # Only back off when nothing is running; running handlers may free slots soon
                if not self.active_tasks:
                    await self._apply_backoff()
                else:
                    await self._sleep(self.poll_interval)
            except Exception as e:
                error(queue_logger, "Error in queue processing loop", context={
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "active_tasks": len(self.active_tasks),
                })
                await self._sleep(self.poll_interval)

        info(queue_logger, "Exiting main processing loop")

    async def _claim_next(self) -> Optional[Task]:
        async with self.session_factory() as db:
            row = await self.task_repository.claim_next_task(db, self.lane_order())
            if row is None:
                await db.commit()
                return None
            task = Task(
                id=str(row.id),
                task_type=row.task_type,
                payload=row.payload,
                lane=row.lane,
                retried=row.retried,
                max_retry=row.max_retry,
            )
            await db.commit()

        debug(queue_logger, "Task claimed", context={
            "task_id": task.id,
            "task_type": task.task_type,
            "lane": task.lane,
            "retried": task.retried,
        })
        return task

    async def _process_task(self, task: Task):
        """
        Run one handler call and record the outcome on the task row.
        """
        start_time = time.monotonic()
        try:
            handler = self._handlers.get(task.task_type)
            if handler is None:
                raise HandlerNotFoundError(task.task_type, sorted(self._handlers))

            task.payload = self._decode_payload(task.payload)
            await handler(task)
        except asyncio.CancelledError:
            warning(queue_logger, "Task interrupted, releasing it for redelivery", context={
                "task_id": task.id,
                "task_type": task.task_type,
            })
            await asyncio.shield(self._record(self.task_repository.release, uuid.UUID(task.id)))
            raise
        except HandlerNotFoundError as e:
            error(queue_logger, "Task archived: no handler", context={
                "task_id": task.id,
                "task_type": task.task_type,
                "error": str(e),
            })
            await self._record(self.task_repository.archive, uuid.UUID(task.id), str(e))
            self.tasks_failed += 1
        except Exception as e:
            await self._handle_failure(task, e)
            self.tasks_failed += 1
        else:
            await self._record(self.task_repository.mark_completed, uuid.UUID(task.id))
            self.tasks_succeeded += 1
            info(queue_logger, "Task completed", context={
                "task_id": task.id,
                "task_type": task.task_type,
                "duration_seconds": round(time.monotonic() - start_time, 2),
            })
        finally:
            self.tasks_processed += 1

    def _decode_payload(self, raw):
        if isinstance(raw, dict):
            return raw
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise PayloadError(f"payload is not valid JSON: {e}") from e

    async def _handle_failure(self, task: Task, exc: Exception):
        message = str(exc) or type(exc).__name__
        if task.retried < task.max_retry:
            delay = self.retry_base_delay * 2 ** task.retried
            process_at = datetime.now(timezone.utc) + timedelta(seconds=delay)
            warning(queue_logger, "Task failed, scheduling retry", context={
                "task_id": task.id,
                "task_type": task.task_type,
                "error": message,
                "error_type": type(exc).__name__,
                "retried": task.retried + 1,
                "max_retry": task.max_retry,
                "retry_in_seconds": delay,
            })
            await self._record(self.task_repository.schedule_retry, uuid.UUID(task.id), message, process_at)
        else:
            error(queue_logger, "Task failed, retries exhausted; archived", context={
                "task_id": task.id,
                "task_type": task.task_type,
                "error": message,
                "error_type": type(exc).__name__,
                "retried": task.retried,
            })
            await self._record(self.task_repository.archive, uuid.UUID(task.id), message)

    async def _record(self, method, *args):
        """Persist a task outcome in its own transaction; stale recovery covers a lost write."""
        try:
            async with self.session_factory() as db:
                await method(db, *args)
                await db.commit()
        except SQLAlchemyError as e:
            error(queue_logger, "Failed to record task outcome", context={
                "operation": method.__name__,
                "task_id": str(args[0]) if args else None,
                "error": str(e),
            })

    async def _recover_stale_tasks(self):
        self._last_stale_check = time.monotonic()
        try:
            async with self.session_factory() as db:
                count = await self.task_repository.reset_stale_tasks(db, self.stale_timeout)
                await db.commit()
        except SQLAlchemyError as e:
            error(queue_logger, "Failed to recover stale tasks", context={"error": str(e)})
            return 0

        if count:
            warning(queue_logger, f"Recovered {count} stale tasks for redelivery")
        return count

    async def _apply_backoff(self):
        self.current_poll_interval = min(
            self.current_poll_interval * self.backoff_factor,
            self.max_poll_interval
        )
        await self._sleep(self.current_poll_interval)

    async def _sleep(self, seconds: float):
        """Sleep, waking early when shutdown is requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _available_slots(self) -> int:
        return self.concurrency - len(self.active_tasks)

    def _cleanup_completed_tasks(self):
        completed = {task for task in self.active_tasks if task.done()}
        self.active_tasks -= completed
