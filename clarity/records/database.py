"""Shared asyncpg connection pool for the relational store.

The specification repository and the usage recorder both go through one
``Database`` so a process opens a single pool.

Connection management
- The pool is created lazily on first use and reused across calls
- Queries are funneled through ``execute``/``fetch``/``fetch_one`` for
  uniform error handling
- ``jsonb`` columns are decoded to Python objects by a per-connection codec
"""

import asyncio
import json
from typing import Any, List, Optional

import asyncpg
import structlog
from asyncpg import Connection, Pool

logger = structlog.get_logger("records.database")


class RecordStoreError(Exception):
    """Relational store unreachable or a query failed."""
    pass


class Database:
    """Lazily created asyncpg pool with uniform error handling."""

    def __init__(
        self,
        dsn: str,
        pool_size: int = 10,
        command_timeout: float = 30.0,
    ):
        """Configure the pool.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of the asyncpg connection pool
        - command_timeout: Seconds to allow per DB command
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self._pool: Optional[Pool] = None
        self._pool_lock = asyncio.Lock()

    async def _init_connection(self, conn: Connection) -> None:
        """Register the JSON codec so ``jsonb`` round-trips as dicts."""
        await conn.set_type_codec(
            "jsonb",
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )

    async def _get_pool(self) -> Pool:
        """Get or create the connection pool."""
        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            if self._pool is None:
                try:
                    self._pool = await asyncpg.create_pool(
                        self.dsn,
                        min_size=1,
                        max_size=self.pool_size,
                        command_timeout=self.command_timeout,
                        init=self._init_connection,
                    )
                    logger.info("Created database connection pool", pool_size=self.pool_size)
                except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
                    logger.error("Failed to create database connection pool", error=str(e))
                    raise RecordStoreError(f"Failed to create connection pool: {e}") from e

        return self._pool

    async def _run(self, method: str, query: str, *args: Any) -> Any:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                return await getattr(conn, method)(query, *args)
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("Query execution failed", query=query, error=str(e))
            raise RecordStoreError(f"Query failed: {e}") from e

    async def execute(self, query: str, *args: Any) -> str:
        return await self._run("execute", query, *args)

    async def fetch(self, query: str, *args: Any) -> List[asyncpg.Record]:
        return await self._run("fetch", query, *args)

    async def fetch_one(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        return await self._run("fetchrow", query, *args)

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Closed database connection pool")
