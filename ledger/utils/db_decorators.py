"""
Database decorators for automatic error handling and rollback.

Provides decorators for service methods that own their unit of work:
the service's ``session`` attribute is rolled back on any exception so
no partial state survives a failed operation.
"""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession


T = TypeVar("T")


def _find_session(args: tuple[Any, ...], kwargs: dict[str, Any]) -> AsyncSession | None:
    """Locate the session in call arguments or on the bound service."""
    session = kwargs.get("session")
    if session is None and args:
        if isinstance(args[0], AsyncSession):
            session = args[0]
        else:
            session = getattr(args[0], "session", None)
    return session


def with_rollback_on_error(func: Callable[..., T]) -> Callable[..., T]:
    """
    Decorator that automatically rolls back the session on any exception.

    Usage:
        class CommissionEngine:
            @with_rollback_on_error
            async def distribute_commission(self, ...):
                ...
                await self.session.commit()

    The decorator will:
    1. Execute the wrapped function
    2. If an exception occurs, call session.rollback()
    3. Re-raise the exception for proper error handling

    Args:
        func: Async function or method to wrap. The session is taken from a
              ``session`` keyword, a first positional AsyncSession, or the
              ``session`` attribute of ``self``.

    Returns:
        Wrapped function with automatic rollback on error
    """
    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        session = _find_session(args, kwargs)

        if session is None:
            logger.warning(
                f"Function {func.__name__} decorated with @with_rollback_on_error "
                f"but no session found. Rollback will not be performed."
            )
            return await func(*args, **kwargs)

        try:
            return await func(*args, **kwargs)
        except Exception as e:
            try:
                await session.rollback()
                logger.info(
                    f"Rollback performed in {func.__name__} due to error: {type(e).__name__}"
                )
            except Exception as rollback_error:
                logger.error(
                    f"Failed to rollback in {func.__name__}: {rollback_error}",
                    exc_info=True,
                )
            raise

    return wrapper
