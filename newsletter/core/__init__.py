from newsletter.core import config
from newsletter.core.config import settings
from newsletter.core.setup_logger import (
    get_logger,
    api_logger,
    scheduler_logger,
    queue_logger,
    worker_logger,
    db_logger,
)

__all__ = [
    'config',
    'settings',
    'api_logger',
    'scheduler_logger',
    'queue_logger',
    'worker_logger',
    'db_logger',
    'get_logger',
]
