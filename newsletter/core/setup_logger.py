"""
Centralized logger factory for the application
One logger per component: API, Scheduler, Queue, Worker and database
"""
import logging

from newsletter.core.config import settings
from newsletter.core.logger import setup_logging

_level = logging.getLevelName(settings.LOG_LEVEL.upper())
if not isinstance(_level, int):
    _level = logging.INFO

# API Logger - for the FastAPI inspection app
api_logger = setup_logging(
    log_level=_level,
    log_dir=settings.LOG_DIR,
    app_name='api',
    backup_count=30
)

# Scheduler Logger - claim and enqueue of due jobs
scheduler_logger = setup_logging(
    log_level=_level,
    log_dir=settings.LOG_DIR,
    app_name='scheduler',
    backup_count=30
)

# Queue Logger - durable queue producer and consumer pool
queue_logger = setup_logging(
    log_level=_level,
    log_dir=settings.LOG_DIR,
    app_name='queue',
    backup_count=30
)

# Worker Logger - newsletter fan-out and delivery tracking
worker_logger = setup_logging(
    log_level=_level,
    log_dir=settings.LOG_DIR,
    app_name='worker',
    backup_count=30
)

# Database Logger - connection lifecycle, warnings and errors only
db_logger = setup_logging(
    log_level=logging.WARNING,
    log_dir=settings.LOG_DIR,
    app_name='db',
    backup_count=30
)


def get_logger(name: str):
    """
    Get a logger by name

    Args:
        name: Logger name ('api', 'scheduler', 'queue', 'worker', 'database')

    Returns:
        Logger instance
    """
    loggers = {
        'api': api_logger,
        'scheduler': scheduler_logger,
        'queue': queue_logger,
        'worker': worker_logger,
        'database': db_logger
    }

    return loggers.get(name, api_logger)
