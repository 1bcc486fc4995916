"""
Document Repository

Reads and writes the single-row board_state table. The row id is always 1.
"""

from typing import Any
from typing import Dict
from typing import Optional

import asyncpg

from boardstate_api.errors import StateValidationError
from boardstate_api.errors import StorageError
from boardstate_api.store.document import VersionedDocument
from boardstate_api.store.document import normalize_document
from boardstate_api.store.repository_base import BaseRepository
from boardstate_api.store.repository_base import encode_json

STATE_ROW_ID = 1


class DocumentRepository(BaseRepository):
    """Repository for the current board document."""

    def __init__(self, pool):
        super().__init__(pool, "board_state")

    def _to_document(self, row) -> Optional[VersionedDocument]:
        if row is None:
            return None
        try:
            document = normalize_document(row["data"])
        except StateValidationError as e:
            raise StorageError(f"Stored board document is malformed: {e.detail}") from e
        return VersionedDocument(
            document=document,
            version=row["version"],
            updated_at=row["updated_at"],
        )

    async def fetch_current(self, conn: Optional[asyncpg.Connection] = None) -> Optional[VersionedDocument]:
        """Plain read of the current document, or None when nothing was ever saved."""
        async with self.connection(conn) as c:
            row = await c.fetchrow(
                f"SELECT data, version, updated_at FROM {self.table} WHERE id = $1",
                STATE_ROW_ID,
            )
        return self._to_document(row)

    async def lock_current(self, conn: asyncpg.Connection) -> Optional[VersionedDocument]:
        """
        Read the current document and hold its row lock until the caller's transaction ends.

        Must run inside a transaction. Returns None when the row does not exist yet; the
        first-insert race is settled later by the conditional upsert.
        """
        row = await conn.fetchrow(
            f"SELECT data, version, updated_at FROM {self.table} WHERE id = $1 FOR UPDATE",
            STATE_ROW_ID,
        )
        return self._to_document(row)

    async def fetch_version(self, conn: Optional[asyncpg.Connection] = None) -> int:
        """Committed version, 0 when no document exists."""
        async with self.connection(conn) as c:
            version = await c.fetchval(f"SELECT version FROM {self.table} WHERE id = $1", STATE_ROW_ID)
        return version or 0

    async def compare_and_swap(
        self,
        conn: asyncpg.Connection,
        document: Dict[str, Any],
        new_version: int,
        expected_version: int,
    ) -> Optional[int]:
        """
        Store `document` at `new_version` only if the stored version still equals `expected_version`.

        A missing row counts as version 0. Returns the stored version, or None when another
        writer got there first.
        """
        return await conn.fetchval(
            f"""
            INSERT INTO {self.table} AS stored (id, data, version, updated_at)
            VALUES ($1, $2::jsonb, $3, NOW())
            ON CONFLICT (id) DO UPDATE
                SET data = EXCLUDED.data,
                    version = EXCLUDED.version,
                    updated_at = EXCLUDED.updated_at
                WHERE stored.version = $4
            RETURNING version
            """,
            STATE_ROW_ID,
            encode_json(document),
            new_version,
            expected_version,
        )
