from newsletter.workers.base_handler import BaseTaskHandler
from newsletter.workers.send_content import SendContentHandler, DispatchSummary

__all__ = [
    'BaseTaskHandler',
    'SendContentHandler',
    'DispatchSummary',
]
