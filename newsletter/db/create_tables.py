"""
Create the database schema.
Run once to set up the tables: python -m newsletter.db.create_tables
"""
import asyncio

from newsletter.db import database
from newsletter.db.database import Base
from newsletter.core.logger import info
from newsletter.core.setup_logger import db_logger

# register every mapped table on Base.metadata
import newsletter.models  # noqa: F401


async def create_tables(engine=None):
    """Create all database tables."""
    if engine is None:
        await database.init_database()
        engine = database.engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    info(db_logger, "Database tables created", context={
        "tables": sorted(Base.metadata.tables.keys())
    })


async def _main():
    try:
        await create_tables()
    finally:
        await database.close_database()


if __name__ == "__main__":
    asyncio.run(_main())
