"""Async database engine, session management and transaction helpers.

Provides async engine creation and a session factory using SQLAlchemy 2.x
with asyncpg, plus :func:`atomic`, the single place where storage-engine
exceptions are logged and translated into the domain error taxonomy, and
:func:`store_operation`, which does the same for reads outside a unit of work.
"""

import asyncio
import functools
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import ParamSpec, TypeVar

from loguru import logger
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from location_api.core.exceptions import (
    ConstraintViolationError,
    LocationApiError,
    StoreUnavailableError,
    TransactionFailureError,
)

P = ParamSpec("P")
R = TypeVar("R")

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Return the current async engine.

    Raises:
        RuntimeError: If the engine has not been initialized.
    """
    if _engine is None:
        msg = "Database engine not initialized. Call init_engine() first."
        raise RuntimeError(msg)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the current session factory.

    Raises:
        RuntimeError: If the engine has not been initialized.
    """
    if _session_factory is None:
        msg = "Session factory not initialized. Call init_engine() first."
        raise RuntimeError(msg)
    return _session_factory


def init_engine(database_url: str, *, schema: str | None = None, **kwargs: object) -> AsyncEngine:
    """Create and store the async engine and session factory.

    Args:
        database_url: PostgreSQL async connection string.
        schema: Optional PostgreSQL schema for isolated environments.
        **kwargs: Additional arguments passed to create_async_engine.

    Returns:
        The created async engine.
    """
    global _engine, _session_factory  # noqa: PLW0603
    if schema is not None:
        connect_args = kwargs.pop("connect_args", {})
        if not isinstance(connect_args, dict):
            msg = "connect_args must be a dict"
            raise TypeError(msg)
        connect_args["server_settings"] = {"search_path": f"{schema},public"}
        kwargs["connect_args"] = connect_args
    uses_static_pool = kwargs.get("poolclass") is StaticPool or "sqlite" in database_url
    if not uses_static_pool:
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 5)
        kwargs.setdefault("pool_pre_ping", True)
    _engine = create_async_engine(database_url, **kwargs)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose of the async engine and release connections."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def translate_store_error(exc: SQLAlchemyError, operation: str, *, bulk: bool = False) -> LocationApiError:
    """Map a SQLAlchemy exception to the domain error taxonomy.

    Args:
        exc: The storage-engine exception.
        operation: Human-readable name of the failed operation.
        bulk: Whether the failure happened inside a multi-row batch, in which
            case constraint violations are reported as a transaction failure.

    Returns:
        The domain error to raise in place of ``exc``.
    """
    if isinstance(exc, (OperationalError, InterfaceError)) or getattr(exc, "connection_invalidated", False):
        return StoreUnavailableError(
            f"Relational store unavailable during {operation}", context={"operation": operation}
        )
    if isinstance(exc, IntegrityError) and not bulk:
        return ConstraintViolationError(
            f"Uniqueness or reference constraint violated during {operation}",
            context={"operation": operation},
        )
    return TransactionFailureError(
        f"{operation} failed; no changes were applied",
        context={"operation": operation},
    )



def store_operation(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
    """Translate storage-engine errors raised by a service method.

    Covers statements issued outside :func:`atomic` (lookups, pre-write
    checks, refreshes).  Domain errors pass through untouched.
    """
    operation = func.__qualname__

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.bind(operation=operation).exception("Store error outside a unit of work")
            raise translate_store_error(exc, operation) from exc

    return wrapper


@asynccontextmanager
async def atomic(
    session: AsyncSession,
    operation: str,
    *,
    timeout: float | None = None,
    bulk: bool = False,
) -> AsyncGenerator[AsyncSession]:
    """Run a block as one all-or-nothing unit of work.

    Commits when the block exits normally.  Any exception, including
    cancellation and deadline expiry, rolls the session back so no partial
    writes survive.

    Args:
        session: Database session.
        operation: Operation name used in log lines and error context.
        timeout: Optional deadline in seconds for the whole unit of work.
        bulk: Report constraint violations as :class:`TransactionFailureError`.

    Yields:
        The same session.
    """
    try:
        async with asyncio.timeout(timeout):
            yield session
            await session.commit()
    except LocationApiError:
        await session.rollback()
        raise
    except TimeoutError as exc:
        await session.rollback()
        logger.bind(operation=operation).warning(f"Exceeded the {timeout}s deadline; rolled back")
        raise TransactionFailureError(
            f"{operation} timed out; no changes were applied",
            context={"operation": operation, "timeout": timeout},
        ) from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.bind(operation=operation).exception("Store error; rolled back")
        raise translate_store_error(exc, operation, bulk=bulk) from exc
    except BaseException:
        await asyncio.shield(session.rollback())
        raise
