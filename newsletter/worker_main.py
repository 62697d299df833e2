"""
Worker Entry Point
Consumes send_newsletter tasks from the durable queue
Run with: python -m newsletter.worker_main
"""

import asyncio
import signal
import sys

from newsletter.core.config import settings
from newsletter.core.logger import info, warning, critical
from newsletter.core.setup_logger import worker_logger
from newsletter.db import database
from newsletter.email.factory import build_email_sender
from newsletter.queue.postgres_queue import PostgresQueue
from newsletter.workers.handlers import register_handler, bind_handlers, list_handlers
from newsletter.workers.send_content import SendContentHandler


def load_config() -> dict:
    """
    Worker configuration, from settings
    """
    config = {
        "concurrency": settings.QUEUE_CONCURRENCY,
        "lanes": settings.queue_lane_weights,
        "poll_interval": settings.QUEUE_POLL_INTERVAL,
        "max_poll_interval": settings.QUEUE_MAX_POLL_INTERVAL,
        "backoff_factor": settings.QUEUE_BACKOFF_FACTOR,
        "max_retry": settings.QUEUE_MAX_RETRY,
        "shutdown_timeout": settings.QUEUE_SHUTDOWN_TIMEOUT,
        "fanout_concurrency": settings.FANOUT_CONCURRENCY,
        "send_timeout": settings.SEND_TIMEOUT,
        "transport": "http" if settings.EMAIL_USE_HTTP else "smtp",
    }

    info(worker_logger, "Configuration loaded", context=config)

    return config


def setup_signal_handlers(stop_event: asyncio.Event):
    """Set stop_event on SIGINT/SIGTERM"""
    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        warning(worker_logger, f"Received signal {signal.Signals(signum).name}, initiating graceful shutdown...")
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)


async def main():
    """
    Main function to start the worker
    """
    info(worker_logger, "Worker process starting...")

    config = load_config()

    info(worker_logger, "Initializing database connection...")
    await database.init_database()

    sender = build_email_sender(settings)
    queue = PostgresQueue(
        database.SessionLocal,
        concurrency=config["concurrency"],
        lane_weights=config["lanes"],
        poll_interval=config["poll_interval"],
        max_poll_interval=config["max_poll_interval"],
        backoff_factor=config["backoff_factor"],
        max_retry=config["max_retry"],
        retry_base_delay=settings.QUEUE_RETRY_BASE_DELAY,
        stale_timeout=settings.QUEUE_STALE_TIMEOUT,
        shutdown_timeout=config["shutdown_timeout"],
    )

    register_handler(SendContentHandler(
        database.SessionLocal,
        sender,
        fanout_concurrency=config["fanout_concurrency"],
        send_timeout=config["send_timeout"],
    ))
    bind_handlers(queue)

    info(worker_logger, "Worker created successfully", context={
        "task_types": list_handlers(),
        "concurrency": config["concurrency"],
    })

    stop_event = asyncio.Event()
    setup_signal_handlers(stop_event)

    try:
        await queue.start()
        await stop_event.wait()
    finally:
        await queue.shutdown(config["shutdown_timeout"])
        await sender.close()
        await database.close_database()

    info(worker_logger, "Worker process terminated")


if __name__ == "__main__":
    """
    Entry point when running: python -m newsletter.worker_main
    """
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        info(worker_logger, "Worker stopped by user")
    except Exception as e:
        critical(worker_logger, "Fatal error", context={
            "error": str(e),
            "error_type": type(e).__name__
        }, exc_info=True)
        sys.exit(1)
