"""
PostgreSQL connection pool for the lifecycle store.

One AsyncConnectionPool per process, shared by the scheduler tasks and the
control API. Connections come back as dict rows in UTC, autocommit on, so a
conditional status update is a single statement with no open transaction.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib import resources
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_RESOURCE = "schema.sql"


class DatabasePoolManager:
    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._initialized and not self._closed

    async def initialize(self) -> None:
        """Open the pool, probe it and (optionally) create the tables."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        config = settings.get_db_pool_config()
        self.pool = AsyncConnectionPool(
            conninfo=settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **config,
        )
        try:
            await self.pool.open()
            await self.pool.wait(timeout=config["timeout"])

            # connection() refuses to hand out connections before this is set
            self._initialized = True
            await self._probe()
            if settings.DB_APPLY_SCHEMA:
                await self.apply_schema()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self._initialized = False
            try:
                await self.pool.close()
            except Exception as cleanup_error:
                logger.warning("Error closing half-open pool", error=str(cleanup_error))
            self.pool = None
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool ready",
            min_size=config["min_size"],
            max_size=config["max_size"],
            schema_applied=settings.DB_APPLY_SCHEMA,
        )

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        await conn.execute(
            sql.SQL("SET application_name = {}").format(
                sql.Literal(f"family-events-{settings.environment}")
            )
        )
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute("SET statement_timeout = '30s'")

    async def _probe(self) -> float:
        """Round-trip a trivial query; returns latency in ms."""
        start = time.time()
        async with self.connection() as conn:
            row = await (await conn.execute("SELECT 1 AS ok")).fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database probe returned an unexpected result")
        return round((time.time() - start) * 1000, 2)

    async def apply_schema(self) -> None:
        """Create the lifecycle tables if they do not exist. Safe to repeat."""
        ddl = resources.files("app.db").joinpath(SCHEMA_RESOURCE).read_text(encoding="utf-8")
        async with self.transaction() as conn:
            await conn.execute(ddl)
        logger.info("Database schema applied", resource=SCHEMA_RESOURCE)

    async def close(self) -> None:
        if not self._initialized or self._closed:
            return
        try:
            logger.info("Closing database connection pool")
            await asyncio.wait_for(self.pool.close(), timeout=settings.SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            logger.warning("Database pool close timed out, forcing shutdown")
        finally:
            self._initialized = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        if not self._initialized:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")
        if self._closed:
            raise RuntimeError("Database pool is closed")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Connection inside a transaction: commits on success, rolls back on exception."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        if not self.initialized:
            return {"healthy": False, "error": "Pool not initialized", "service": "database_pool"}

        try:
            latency_ms = await self._probe()
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        health = {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": latency_ms,
            "pool_stats": {
                "pool_size": stats.get("pool_size", 0),
                "pool_available": stats.get("pool_available", 0),
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }
        if stats.get("requests_waiting", 0) > 0:
            health["warnings"] = [f"Requests waiting for connections: {stats['requests_waiting']}"]
        return health


db_pool = DatabasePoolManager()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
