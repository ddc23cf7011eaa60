#!/usr/bin/env python3
"""Initialize database tables, internal funds and the first settings version."""

import asyncio
import sys

from loguru import logger

from ledger.database import create_engine, create_session_maker, create_tables
from ledger.repositories.fund_repository import InternalFundRepository
from ledger.repositories.program_settings_repository import (
    ProgramSettingsRepository,
)

# Configure logger for script
logger.remove()
logger.add(sys.stderr, level="INFO")


async def init_database() -> None:
    """Create all tables and seed defaults where missing."""
    logger.info("Connecting to database...")
    engine = create_engine()

    logger.info("Creating tables (checkfirst=True)...")
    await create_tables(engine)

    session_maker = create_session_maker(engine)
    async with session_maker() as session:
        await InternalFundRepository(session).ensure_funds()

        settings_repo = ProgramSettingsRepository(session)
        current = await settings_repo.get_current()
        if current is None:
            published = await settings_repo.publish_defaults()
            logger.info(f"Published default program settings v{published.version}")
        else:
            logger.info(f"Program settings v{current.version} already published")

        await session.commit()

    await engine.dispose()
    logger.success("Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_database())
