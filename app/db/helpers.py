"""
Query helpers for the lifecycle store.

Every helper takes an optional `connection` so a caller can run several
statements inside one `db_pool.transaction()`; without it each call borrows a
pooled connection for a single statement.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import Any

import psycopg

from app.db.pool import db_pool
from app.features.event_lifecycle.errors import TransientIOError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(TransientIOError):
    """A failed statement. `recoverable` is False for integrity and data errors."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message, operation=operation, recoverable=recoverable)


async def _run(
    query: str,
    params: tuple,
    connection: psycopg.AsyncConnection | None,
    operation: str,
    handler: Callable[[psycopg.AsyncCursor], Awaitable[Any]],
) -> Any:
    try:
        if connection is not None:
            return await handler(await connection.execute(query, params))
        async with db_pool.connection() as conn:
            return await handler(await conn.execute(query, params))
    except (psycopg.IntegrityError, psycopg.DataError) as e:
        logger.error("Database statement rejected", operation=operation, error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation, recoverable=False) from e
    except psycopg.Error as e:
        logger.error(
            "Database statement failed", operation=operation, query=query[:100], error=str(e)
        )
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    async def handler(cur):
        return await cur.fetchone()

    return await _run(query, params, connection, "fetch_one", handler)


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    async def handler(cur):
        return await cur.fetchall()

    return await _run(query, params, connection, "fetch_all", handler)


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """First column of the first row, or None."""

    async def handler(cur):
        row = await cur.fetchone()
        return next(iter(row.values())) if row else None

    return await _run(query, params, connection, "fetch_val", handler)


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """
    Execute a statement and return the affected row count.

    Conditional status updates rely on it: 0 means the guard did not match.
    """

    async def handler(cur):
        return cur.rowcount

    return await _run(query, params, connection, "execute", handler)


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a read on connection-level failures with exponential backoff.

    Only use on idempotent operations; integrity and data errors are raised
    immediately.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    if not isinstance(e.__cause__, psycopg.OperationalError):
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "Database operation failed after all retries",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
