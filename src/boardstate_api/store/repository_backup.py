"""
Backup Repository

Point-in-time snapshots of the board document (board_backups).
"""

from typing import Any
from typing import Dict
from typing import List
from typing import Optional

import asyncpg

from boardstate_api.enums import BackupKind
from boardstate_api.store.repository_base import BaseRepository
from boardstate_api.store.repository_base import encode_json

BACKUP_SUMMARY_COLUMNS = "id, version, kind, source, created_at"


class BackupRepository(BaseRepository):
    """Repository for document snapshots."""

    def __init__(self, pool):
        super().__init__(pool, "board_backups")

    async def create(
        self,
        snapshot: Dict[str, Any],
        version: int,
        kind: BackupKind,
        source: Optional[str] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Dict[str, Any]:
        """Insert a snapshot and return its summary row."""
        async with self.connection(conn) as c:
            row = await c.fetchrow(
                f"""
                INSERT INTO {self.table} (snapshot, version, kind, source, created_at)
                VALUES ($1::jsonb, $2, $3, $4, clock_timestamp())
                RETURNING {BACKUP_SUMMARY_COLUMNS}
                """,
                encode_json(snapshot),
                version,
                BackupKind(kind).value,
                source,
            )
        return self.row_to_dict(row)

    async def list_backups(
        self,
        limit: Optional[int] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> List[Dict[str, Any]]:
        """Backup summaries (without snapshot bodies), newest first."""
        async with self.connection(conn) as c:
            rows = await c.fetch(
                f"""
                SELECT {BACKUP_SUMMARY_COLUMNS}
                FROM {self.table}
                ORDER BY created_at DESC, id DESC
                LIMIT $1
                """,
                limit,
            )
        return [self.row_to_dict(row) for row in rows]

    async def get(self, backup_id: int, conn: Optional[asyncpg.Connection] = None) -> Optional[Dict[str, Any]]:
        """Full backup row including the snapshot body."""
        async with self.connection(conn) as c:
            row = await c.fetchrow(
                f"SELECT {BACKUP_SUMMARY_COLUMNS}, snapshot FROM {self.table} WHERE id = $1",
                backup_id,
            )
        return self.row_to_dict(row, json_columns=("snapshot",))
