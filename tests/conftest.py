"""Pytest configuration and shared fixtures for all tests."""

import os

# Minimal environment for Settings; tests build their own engines
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from ledger.database import create_session_maker, create_tables
from ledger.models.user import RealUser, User
from ledger.repositories.fund_repository import InternalFundRepository
from ledger.repositories.program_settings_repository import (
    ProgramSettingsRepository,
)
from ledger.services.tree.registration import UserRegistrationService


@pytest.fixture
def mock_session():
    """Mock AsyncSession for tests without a database."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.refresh = AsyncMock()
    return session


@pytest_asyncio.fixture
async def engine(tmp_path):
    """SQLite database in a temporary file with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    """Session factory bound to the test database."""
    return create_session_maker(engine)


@pytest_asyncio.fixture
async def session(session_maker):
    """A session for direct repository work."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def publish_settings(session_maker):
    """
    Publish a program settings version.

    Returns an async callable taking column overrides (and ``levels``)
    on top of the business defaults, returning the new version number.
    """

    async def _publish(**overrides) -> int:
        async with session_maker() as session:
            await InternalFundRepository(session).ensure_funds()
            program_settings = await ProgramSettingsRepository(
                session
            ).publish_defaults(**overrides)
            await session.commit()
            return program_settings.version

    return _publish


@pytest_asyncio.fixture
async def default_settings(publish_settings):
    """Default program settings (3/3/3/1 of 10%, 100 points per tree, cap 5)."""
    return await publish_settings()


@pytest.fixture
def register_user(session_maker):
    """
    Register a real user in its own transaction.

    Returns an async callable ``(name, referral_code=None) -> RealUser``.
    """

    async def _register(name: str, referral_code: str | None = None) -> RealUser:
        async with session_maker() as session:
            return await UserRegistrationService(session).register(
                name=name,
                email=f"{name.lower()}@example.com",
                referral_code=referral_code,
            )

    return _register


@pytest.fixture
def load_user(session_maker):
    """Load a user's current state in a fresh session."""

    async def _load(user_id: int):
        async with session_maker() as session:
            return await session.get(User, user_id)

    return _load
