from newsletter.scheduler.scheduler import Scheduler, TickResult, JOB_ROUTES

__all__ = [
    'Scheduler',
    'TickResult',
    'JOB_ROUTES',
]
