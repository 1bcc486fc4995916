"""
Base Repository

Shared plumbing for the board state repositories: connection reuse inside a caller's
transaction and JSONB encoding/decoding.
"""

import json
from contextlib import asynccontextmanager
from typing import Any
from typing import AsyncIterator
from typing import Dict
from typing import Optional

import asyncpg

from boardstate_api.store.migrations import SCHEMA_NAME


def encode_json(value: Any) -> Optional[str]:
    """Serialize a value for a $n::jsonb parameter (None stays SQL NULL)."""
    if value is None:
        return None
    return json.dumps(value)


def decode_json(value: Any) -> Any:
    """Decode a JSONB column value; asyncpg returns JSONB as text by default."""
    if value is None:
        return None
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class BaseRepository:
    """
    Base repository for the boardstate schema.

    Every method accepts an optional `conn`. When given, the query runs on that connection
    (and therefore inside the caller's transaction); otherwise a connection is taken from
    the pool for the duration of the call.
    """

    def __init__(self, pool, table_name: str):
        """
        Args:
            pool: asyncpg pool or StateDBPool (anything exposing acquire())
            table_name: Table name without schema prefix
        """
        self.pool = pool
        self.table = f"{SCHEMA_NAME}.{table_name}"

    @asynccontextmanager
    async def connection(self, conn: Optional[asyncpg.Connection] = None) -> AsyncIterator[asyncpg.Connection]:
        if conn is not None:
            yield conn
            return
        async with self.pool.acquire() as acquired:
            yield acquired

    @staticmethod
    def row_to_dict(row, json_columns=()) -> Optional[Dict[str, Any]]:
        """Convert an asyncpg Record to a dict, decoding JSONB columns."""
        if row is None:
            return None
        result = dict(row)
        for column in json_columns:
            if column in result:
                result[column] = decode_json(result[column])
        return result

    async def count(self, conn: Optional[asyncpg.Connection] = None) -> int:
        async with self.connection(conn) as c:
            return await c.fetchval(f"SELECT COUNT(*) FROM {self.table}")
