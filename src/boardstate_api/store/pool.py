"""
Board State Database Connection Pool

Manages the asyncpg connection pool for the board state database.
Automatically runs migrations on initialization.

Schema Evolution:
-----------------
When adding/removing/renaming tables in schema.sql:
1. Update the schema.sql file with new DDL
2. Update StateDBPool.EXPECTED_TABLES and migrations.REQUIRED_TABLES
3. Column additions go into migrations._run_incremental_migrations_impl
"""

from typing import Optional

import asyncpg
from loguru import logger

from boardstate_api.store.migrations import SCHEMA_NAME
from boardstate_api.store.migrations import run_incremental_migrations
from boardstate_api.store.migrations import run_migrations
from boardstate_api.store.migrations import verify_schema


class StateDBPool:
    """Board state database connection pool manager."""

    # Expected tables in the boardstate schema
    EXPECTED_TABLES = {
        "board_state",
        "board_events",
        "board_entity_events",
        "board_backups",
    }

    def __init__(
        self,
        connection_string: str,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 60,
    ):
        """
        Initialize state DB pool.

        Args:
            connection_string: PostgreSQL connection string for the board state database
            min_size: Minimum pooled connections
            max_size: Maximum pooled connections
            command_timeout: Per-statement timeout in seconds
        """
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.pool: Optional[asyncpg.Pool] = None
        self._pool_initialized = False

    async def initialize(self) -> None:
        """
        Initialize connection pool and run migrations.

        Creates the pool, validates it with a round-trip query and brings the schema up to date.
        """
        if self._pool_initialized and self.pool is not None:
            logger.debug("State DB pool already initialized")
            return

        try:
            logger.info("Initializing board state database pool")

            self.pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
                timeout=15,  # Connection timeout (15 seconds)
                max_cached_statement_lifetime=0,  # Disable prepared statement caching (safer for DDL)
            )

            logger.info("State DB pool created successfully")

            async with self.pool.acquire() as conn:
                result = await conn.fetchval("SELECT 1")
                if result != 1:
                    raise RuntimeError("Pool validation query failed")

            logger.info("State DB pool validated")

            await self._run_migrations()

            self._pool_initialized = True
            logger.success("Board state database initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize state DB pool: {e}")
            if self.pool:
                await self.pool.close()
                self.pool = None
            raise

    async def _run_migrations(self) -> None:
        """
        Bring the schema up to date.

        A fresh database gets the full schema.sql. A database that already has every
        expected table only gets incremental migrations. A partial schema is refused.
        """
        async with self.pool.acquire() as conn:
            existing_tables_result = await conn.fetch(
                """
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = $1
                ORDER BY table_name
                """,
                SCHEMA_NAME,
            )
        existing_tables = {row["table_name"] for row in existing_tables_result}

        if existing_tables >= self.EXPECTED_TABLES:
            logger.info(
                f"Board state schema and all {len(self.EXPECTED_TABLES)} expected tables exist - "
                "running incremental migrations only"
            )
            await run_incremental_migrations(self.pool)
            return

        if existing_tables & self.EXPECTED_TABLES:
            missing_tables = self.EXPECTED_TABLES - existing_tables
            logger.warning(
                "Board state schema is incomplete - creating missing tables",
                missing_tables=sorted(missing_tables),
            )
        else:
            logger.info("Board state schema not found - running migrations")

        await run_migrations(self.pool)

        verification = await verify_schema(self.pool)
        if not verification["all_present"]:
            raise RuntimeError(f"Migration incomplete: missing tables {sorted(verification['missing_tables'])}")

        logger.success(f"All {len(self.EXPECTED_TABLES)} board state tables verified successfully")

    async def close(self) -> None:
        """Close the connection pool gracefully."""
        if self.pool:
            logger.info("Closing board state database pool")
            await self.pool.close()
            self.pool = None
            self._pool_initialized = False
            logger.info("State DB pool closed")

    def acquire(self):
        """
        Acquire a database connection from the pool.

        Returns async context manager that yields a connection.

        Usage:
            async with pool.acquire() as conn:
                result = await conn.fetchrow("SELECT * FROM ...")
        """
        if not self.pool:
            raise RuntimeError("State DB pool not initialized - call initialize() first")
        return self.pool.acquire()

    async def health_check(self) -> bool:
        """
        Check if database connection is healthy.

        Returns:
            True if connection is healthy, False otherwise
        """
        try:
            if not self.pool:
                return False

            async with self.pool.acquire() as conn:
                result = await conn.fetchval("SELECT 1")
                return result == 1
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"State DB health check failed: {e}")
            return False

    async def get_table_counts(self) -> dict:
        """
        Get row counts for all board state tables.

        Useful for debugging and verification.

        Returns:
            Dict mapping table names to row counts
        """
        counts = {}
        async with self.acquire() as conn:
            for table_name in sorted(self.EXPECTED_TABLES):
                counts[table_name] = await conn.fetchval(f"SELECT COUNT(*) FROM {SCHEMA_NAME}.{table_name}")
        return counts
