"""Database migrations for the board state store.

This module handles schema initialization by executing the schema.sql file.
All DDL is stored in schema.sql for maintainability.
"""

from pathlib import Path

import asyncpg
from loguru import logger

SCHEMA_NAME = "boardstate"

REQUIRED_TABLES = [
    "board_state",
    "board_events",
    "board_entity_events",
    "board_backups",
]


def load_schema_sql() -> str:
    """Read schema.sql from the package directory."""
    schema_path = Path(__file__).parent / "schema.sql"

    if not schema_path.exists():
        raise FileNotFoundError(
            f"Schema file not found: {schema_path}\n" "Expected location: src/boardstate_api/store/schema.sql"
        )

    return schema_path.read_text(encoding="utf-8")


async def run_migrations(pool) -> None:
    """Run database migrations to create schema and tables.

    This function:
    1. Reads the schema.sql file
    2. Executes it against the database
    3. Applies incremental migrations for databases created by older releases

    All SQL uses IF NOT EXISTS, so it's safe to run multiple times.

    Parameters
    ----------
    pool
        asyncpg pool (or StateDBPool) exposing acquire()

    Raises
    ------
    FileNotFoundError
        If schema.sql file not found
    asyncpg.PostgresError
        If migration fails
    """
    schema_sql = load_schema_sql()
    logger.info("Loaded board state schema")

    async with pool.acquire() as conn:
        try:
            await conn.execute(schema_sql)
            logger.info(
                "Board state migrations completed successfully",
                schema=SCHEMA_NAME,
                tables=len(REQUIRED_TABLES),
            )
        except Exception as e:
            logger.error(f"Migration failed: {e}")
            raise

        await _run_incremental_migrations_impl(conn)


async def run_incremental_migrations(pool) -> None:
    """Run only incremental migrations (add columns, backfill).

    Safe to call on every startup. Use when the schema already exists so that
    databases created by older releases pick up new columns.
    """
    async with pool.acquire() as conn:
        await _run_incremental_migrations_impl(conn)


async def _run_incremental_migrations_impl(conn: asyncpg.Connection) -> None:
    """Shared implementation: ledger columns added after the first release."""
    # Early ledgers stored only (client_request_id, data); the version lived inside data
    for column, ddl in (
        ("version", "BIGINT"),
        ("user_id", "TEXT"),
    ):
        try:
            await conn.execute(
                f"""
                ALTER TABLE {SCHEMA_NAME}.board_events
                ADD COLUMN IF NOT EXISTS {column} {ddl}
                """
            )
            logger.debug(f"Ensured {column} on {SCHEMA_NAME}.board_events")
        except asyncpg.PostgresError as col_err:
            logger.warning(f"Column {column} on board_events (may already exist): {col_err}")

    backfilled = await conn.execute(
        f"""
        UPDATE {SCHEMA_NAME}.board_events
        SET version = (data->>'version')::bigint
        WHERE version IS NULL
          AND jsonb_typeof(data) = 'object'
          AND data ? 'version'
        """
    )
    if backfilled and backfilled != "UPDATE 0":
        logger.info("Backfilled ledger versions from event payloads", result=backfilled)

    try:
        await conn.execute(
            f"""
            ALTER TABLE {SCHEMA_NAME}.board_backups
            ADD COLUMN IF NOT EXISTS source TEXT
            """
        )
        logger.debug(f"Ensured source on {SCHEMA_NAME}.board_backups")
    except asyncpg.PostgresError as src_err:
        logger.warning(f"Column source on board_backups (may already exist): {src_err}")


async def verify_schema(pool) -> dict:
    """Verify that all required tables exist.

    Returns
    -------
    dict
        {
            "schema_exists": bool,
            "tables": list[str],  # List of existing tables
            "missing_tables": list[str],
            "all_present": bool
        }
    """
    async with pool.acquire() as conn:
        schema_exists = await conn.fetchval(
            """
            SELECT EXISTS(
                SELECT 1 FROM information_schema.schemata
                WHERE schema_name = $1
            )
            """,
            SCHEMA_NAME,
        )

        if not schema_exists:
            return {
                "schema_exists": False,
                "tables": [],
                "missing_tables": list(REQUIRED_TABLES),
                "all_present": False,
            }

        existing_tables = await conn.fetch(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = $1
            ORDER BY table_name
            """,
            SCHEMA_NAME,
        )
        existing_table_names = [row["table_name"] for row in existing_tables]

        missing = [t for t in REQUIRED_TABLES if t not in existing_table_names]

        return {
            "schema_exists": True,
            "tables": existing_table_names,
            "missing_tables": missing,
            "all_present": len(missing) == 0,
        }
