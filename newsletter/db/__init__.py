from newsletter.db import database
from newsletter.db.database import Base, get_db, init_database, close_database, create_session_factory

__all__ = [
    'database',
    'Base',
    'get_db',
    'init_database',
    'close_database',
    'create_session_factory',
]
