"""
Conflict retry for units of work.

Concurrent ledger updates can lose a race at the database level: a
serialization failure, a deadlock, a unique-key race on an order id or a
tree slot, or a locked SQLite file. Such failures are transient. The unit
of work is re-run in a fresh session with exponential backoff a bounded
number of times, then surfaced as TransientLedgerError.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger.utils.exceptions import TransientLedgerError

T = TypeVar("T")

# PostgreSQL SQLSTATE codes treated as transient
TRANSIENT_SQLSTATES = frozenset({
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available
    "23505",  # unique_violation (lost an insert race)
})

# SQLite reports conflicts only through the message text
TRANSIENT_SQLITE_MESSAGES = (
    "database is locked",
    "unique constraint failed",
)


def is_transient_error(exc: BaseException) -> bool:
    """
    Check whether a database error is a retryable concurrency conflict.

    Args:
        exc: Exception raised by the unit of work

    Returns:
        True if re-running the unit of work may succeed
    """
    if not isinstance(exc, DBAPIError):
        return False

    if exc.connection_invalidated:
        return True

    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code:
        return code in TRANSIENT_SQLSTATES

    message = str(orig).lower()
    return any(marker in message for marker in TRANSIENT_SQLITE_MESSAGES)


async def retry_on_conflict(
    session_maker: async_sessionmaker[AsyncSession],
    unit_of_work: Callable[[AsyncSession], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 0.05,
    operation_name: str = "unit of work",
) -> T:
    """
    Run a unit of work, retrying transient conflicts in a fresh session.

    Args:
        session_maker: Factory for new sessions
        unit_of_work: Coroutine function receiving the session; it must
            commit its own work
        max_attempts: Maximum number of attempts
        base_delay: First backoff delay in seconds, doubled per attempt
        operation_name: Operation name for logging

    Returns:
        Result of the unit of work

    Raises:
        TransientLedgerError: If every attempt hit a conflict
        Exception: Any non-transient error, unchanged
    """
    for attempt in range(1, max_attempts + 1):
        async with session_maker() as session:
            try:
                result = await unit_of_work(session)
            except DBAPIError as e:
                await session.rollback()
                if not is_transient_error(e):
                    raise

                if attempt == max_attempts:
                    logger.error(
                        f"{operation_name} failed after {max_attempts} attempts: {e}"
                    )
                    raise TransientLedgerError(operation_name, max_attempts) from e

                delay = base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"{operation_name} hit a conflict on attempt "
                    f"{attempt}/{max_attempts}: {type(e).__name__}. "
                    f"Retrying in {delay:.2f}s..."
                )
                await asyncio.sleep(delay)
                continue

        if attempt > 1:
            logger.success(f"{operation_name} succeeded on attempt {attempt}")
        return result

    # max_attempts < 1
    raise TransientLedgerError(operation_name, max_attempts)
