"""In-memory stand-ins for the board state repositories and fixtures built on them.

The fakes keep the semantics the store relies on: a row lock held until the transaction
ends, rollback of everything written under the lock when the transaction fails, a unique
client_request_id on the ledger and a version-guarded upsert.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

import pytest

from boardstate_api.enums import BackupKind
from boardstate_api.jobs.backup_scheduler import BackupScheduler
from boardstate_api.store.cache import MemoryStateCache
from boardstate_api.store.document import VersionedDocument
from boardstate_api.store.document import normalize_document
from boardstate_api.store.document import replay_events
from boardstate_api.store.document_store import DocumentStore
from boardstate_api.store.restore import RestoreEngine

BASE_TIME = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class FakeBoardDatabase:
    """Tables of the boardstate schema held in memory."""

    def __init__(self):
        self.state: Optional[Dict[str, Any]] = None
        self.events: List[Dict[str, Any]] = []
        self.entity_events: List[Dict[str, Any]] = []
        self.backups: List[Dict[str, Any]] = []
        self.row_lock = asyncio.Lock()
        self.failures: Dict[str, Exception] = {}
        self._ticks = 0

    def now(self) -> datetime:
        self._ticks += 1
        return BASE_TIME + timedelta(seconds=self._ticks)

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call to `operation` raise `error`."""
        self.failures[operation] = error

    def check(self, operation: str) -> None:
        error = self.failures.pop(operation, None)
        if error is not None:
            raise error

    def snapshot(self):
        return copy.deepcopy((self.state, self.events, self.entity_events, self.backups))

    def restore(self, snapshot) -> None:
        self.state, self.events, self.entity_events, self.backups = snapshot


class FakeTransaction:
    def __init__(self, conn: "FakeConnection"):
        self.conn = conn

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None and self.conn.snapshot is not None:
            self.conn.db.restore(self.conn.snapshot)
        self.conn.snapshot = None
        if self.conn.holds_lock:
            self.conn.holds_lock = False
            self.conn.db.row_lock.release()
        return False


class FakeConnection:
    def __init__(self, db: FakeBoardDatabase):
        self.db = db
        self.holds_lock = False
        self.snapshot = None

    def transaction(self):
        return FakeTransaction(self)


class FakePool:
    def __init__(self, db: FakeBoardDatabase):
        self.db = db

    @asynccontextmanager
    async def acquire(self):
        self.db.check("acquire")
        yield FakeConnection(self.db)


class FakeDocumentRepository:
    def __init__(self, db: FakeBoardDatabase):
        self.db = db

    def _current(self) -> Optional[VersionedDocument]:
        if self.db.state is None:
            return None
        return VersionedDocument(
            document=normalize_document(self.db.state["data"]),
            version=self.db.state["version"],
            updated_at=self.db.state["updated_at"],
        )

    async def fetch_current(self, conn=None):
        self.db.check("fetch_current")
        return self._current()

    async def lock_current(self, conn: FakeConnection):
        self.db.check("lock_current")
        await self.db.row_lock.acquire()
        conn.holds_lock = True
        conn.snapshot = self.db.snapshot()
        # Let concurrent writers queue up on the lock
        await asyncio.sleep(0)
        return self._current()

    async def fetch_version(self, conn=None) -> int:
        return self.db.state["version"] if self.db.state else 0

    async def compare_and_swap(self, conn, document, new_version, expected_version):
        self.db.check("compare_and_swap")
        current_version = self.db.state["version"] if self.db.state else None
        if current_version is not None and current_version != expected_version:
            return None
        self.db.state = {
            "data": copy.deepcopy(document),
            "version": new_version,
            "updated_at": self.db.now(),
        }
        return new_version


class FakeEventRepository:
    def __init__(self, db: FakeBoardDatabase):
        self.db = db

    async def append(self, conn, client_request_id, data, version, user_id=None):
        self.db.check("append")
        if any(e["client_request_id"] == client_request_id for e in self.db.events):
            return None
        event_id = len(self.db.events) + 1
        self.db.events.append(
            {
                "id": event_id,
                "client_request_id": client_request_id,
                "data": copy.deepcopy(data),
                "version": version,
                "user_id": user_id,
                "created_at": self.db.now(),
            }
        )
        return event_id

    async def find_by_request_id(self, client_request_id, conn=None):
        self.db.check("find_by_request_id")
        for event in self.db.events:
            if event["client_request_id"] == client_request_id:
                return copy.deepcopy(event)
        return None

    async def list_events(self, since_id=None, limit=None, conn=None):
        rows = [e for e in self.db.events if since_id is None or e["id"] > since_id]
        rows.sort(key=lambda e: (e["created_at"], e["id"]))
        return copy.deepcopy(rows[:limit] if limit else rows)

    async def replay(self, conn=None):
        return replay_events(await self.list_events())

    async def append_entity_events(self, conn, ledger_event_id, changes, user_id=None):
        self.db.check("append_entity_events")
        for change in changes:
            self.db.entity_events.append(
                {
                    "id": len(self.db.entity_events) + 1,
                    "ledger_event_id": ledger_event_id,
                    "project_id": change.entity_id,
                    "user_id": user_id,
                    "action_type": change.action_type.value,
                    "payload": copy.deepcopy(change.payload),
                    "snapshot_after": copy.deepcopy(change.snapshot_after),
                    "created_at": self.db.now(),
                }
            )
        return len(changes)

    async def history_for(self, entity_id, limit=None, conn=None):
        rows = [e for e in self.db.entity_events if e["project_id"] == str(entity_id)]
        rows.sort(key=lambda e: (e["created_at"], e["id"]), reverse=True)
        return copy.deepcopy(rows[:limit] if limit else rows)

    async def get_entity_event(self, event_id, conn=None):
        self.db.check("get_entity_event")
        for entry in self.db.entity_events:
            if entry["id"] == event_id:
                return copy.deepcopy(entry)
        return None

    async def count(self, conn=None):
        return len(self.db.events)


class FakeBackupRepository:
    def __init__(self, db: FakeBoardDatabase):
        self.db = db

    @staticmethod
    def _summary(backup):
        return {k: v for k, v in backup.items() if k != "snapshot"}

    async def create(self, snapshot, version, kind, source=None, conn=None):
        self.db.check("create_backup")
        backup = {
            "id": len(self.db.backups) + 1,
            "snapshot": copy.deepcopy(snapshot),
            "version": version,
            "kind": BackupKind(kind).value,
            "source": source,
            "created_at": self.db.now(),
        }
        self.db.backups.append(backup)
        return self._summary(backup)

    async def list_backups(self, limit=None, conn=None):
        rows = sorted(self.db.backups, key=lambda b: (b["created_at"], b["id"]), reverse=True)
        rows = rows[:limit] if limit else rows
        return [self._summary(b) for b in rows]

    async def get(self, backup_id, conn=None):
        self.db.check("get_backup")
        for backup in self.db.backups:
            if backup["id"] == backup_id:
                return copy.deepcopy(backup)
        return None

    async def count(self, conn=None):
        self.db.check("count_backups")
        return len(self.db.backups)


@pytest.fixture
def board_db():
    """Empty in-memory board database."""
    return FakeBoardDatabase()


@pytest.fixture
def state_cache():
    return MemoryStateCache(ttl_seconds=60)


@pytest.fixture
def document_store(board_db, state_cache):
    """DocumentStore over the in-memory database, with a cache."""
    return DocumentStore(
        FakePool(board_db),
        cache=state_cache,
        documents=FakeDocumentRepository(board_db),
        events=FakeEventRepository(board_db),
    )


@pytest.fixture
def backup_repository(board_db):
    return FakeBackupRepository(board_db)


@pytest.fixture
def restore_engine(document_store, backup_repository):
    return RestoreEngine(document_store, backup_repository)


@pytest.fixture
def backup_scheduler(document_store, backup_repository):
    return BackupScheduler(document_store.documents, backup_repository, source="scheduler")


@pytest.fixture
def sample_projects():
    """Two projects as the board client sends them."""
    return [
        {"id": "p1", "name": "Launch", "lists": [{"id": "l1", "cards": []}]},
        {"id": "p2", "name": "Roadmap", "lists": []},
    ]
