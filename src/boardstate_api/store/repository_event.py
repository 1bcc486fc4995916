"""
Event Ledger Repository

Append-only ledger of accepted writes (board_events) and the per-project history
derived from them (board_entity_events). Rows are never updated or deleted.
"""

from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Sequence

import asyncpg

from boardstate_api.store.document import EntityChange
from boardstate_api.store.document import VersionedDocument
from boardstate_api.store.document import replay_events
from boardstate_api.store.migrations import SCHEMA_NAME
from boardstate_api.store.repository_base import BaseRepository
from boardstate_api.store.repository_base import decode_json
from boardstate_api.store.repository_base import encode_json

EVENT_COLUMNS = "id, client_request_id, data, version, user_id, created_at"
ENTITY_EVENT_COLUMNS = "id, ledger_event_id, project_id, user_id, action_type, payload, snapshot_after, created_at"


class EventRepository(BaseRepository):
    """Repository for the write ledger and per-project history."""

    def __init__(self, pool):
        super().__init__(pool, "board_events")
        self.entity_table = f"{SCHEMA_NAME}.board_entity_events"

    def _event_to_dict(self, row) -> Optional[Dict[str, Any]]:
        event = self.row_to_dict(row, json_columns=("data",))
        if event is None:
            return None
        # Rows written before the version column existed keep it only inside data
        if event.get("version") is None and isinstance(event.get("data"), dict):
            event["version"] = event["data"].get("version")
        return event

    def _entity_event_to_dict(self, row) -> Optional[Dict[str, Any]]:
        return self.row_to_dict(row, json_columns=("payload", "snapshot_after"))

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def append(
        self,
        conn: asyncpg.Connection,
        client_request_id: str,
        data: Dict[str, Any],
        version: int,
        user_id: Optional[str] = None,
    ) -> Optional[int]:
        """
        Insert a ledger event unless one already exists for `client_request_id`.

        Returns:
            New event id, or None when the idempotency key is already taken
        """
        return await conn.fetchval(
            f"""
            INSERT INTO {self.table} (client_request_id, data, version, user_id, created_at)
            VALUES ($1, $2::jsonb, $3, $4, clock_timestamp())
            ON CONFLICT (client_request_id) DO NOTHING
            RETURNING id
            """,
            client_request_id,
            encode_json(data),
            version,
            user_id,
        )

    async def find_by_request_id(
        self,
        client_request_id: str,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[Dict[str, Any]]:
        async with self.connection(conn) as c:
            row = await c.fetchrow(
                f"SELECT {EVENT_COLUMNS} FROM {self.table} WHERE client_request_id = $1",
                client_request_id,
            )
        return self._event_to_dict(row)

    async def list_events(
        self,
        since_id: Optional[int] = None,
        limit: Optional[int] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> List[Dict[str, Any]]:
        """
        Ledger events in replay order (created_at ascending, then id).

        Args:
            since_id: Only events with a larger id
            limit: Maximum number of events
        """
        async with self.connection(conn) as c:
            rows = await c.fetch(
                f"""
                SELECT {EVENT_COLUMNS}
                FROM {self.table}
                WHERE ($1::bigint IS NULL OR id > $1)
                ORDER BY created_at ASC, id ASC
                LIMIT $2
                """,
                since_id,
                limit,
            )
        return [self._event_to_dict(row) for row in rows]

    async def replay(self, conn: Optional[asyncpg.Connection] = None) -> List[VersionedDocument]:
        """Rebuild every document version from the ledger, oldest first."""
        return replay_events(await self.list_events(conn=conn))

    # ------------------------------------------------------------------
    # Per-project history
    # ------------------------------------------------------------------

    async def append_entity_events(
        self,
        conn: asyncpg.Connection,
        ledger_event_id: int,
        changes: Sequence[EntityChange],
        user_id: Optional[str] = None,
    ) -> int:
        """Insert one history row per changed project. Returns the number of rows written."""
        if not changes:
            return 0
        await conn.executemany(
            f"""
            INSERT INTO {self.entity_table}
                (ledger_event_id, project_id, user_id, action_type, payload, snapshot_after, created_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, clock_timestamp())
            """,
            [
                (
                    ledger_event_id,
                    change.entity_id,
                    user_id,
                    change.action_type.value,
                    encode_json(change.payload or {}),
                    encode_json(change.snapshot_after),
                )
                for change in changes
            ],
        )
        return len(changes)

    async def history_for(
        self,
        entity_id: str,
        limit: Optional[int] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> List[Dict[str, Any]]:
        """History of one project, newest first."""
        async with self.connection(conn) as c:
            rows = await c.fetch(
                f"""
                SELECT {ENTITY_EVENT_COLUMNS}
                FROM {self.entity_table}
                WHERE project_id = $1
                ORDER BY created_at DESC, id DESC
                LIMIT $2
                """,
                str(entity_id),
                limit,
            )
        return [self._entity_event_to_dict(row) for row in rows]

    async def get_entity_event(
        self,
        event_id: int,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[Dict[str, Any]]:
        async with self.connection(conn) as c:
            row = await c.fetchrow(
                f"SELECT {ENTITY_EVENT_COLUMNS} FROM {self.entity_table} WHERE id = $1",
                event_id,
            )
        return self._entity_event_to_dict(row)
