"""
Versioned Document Store

Optimistic-concurrency writes of the board document. Every accepted write runs in one
transaction that:

1. locks the document row (SELECT ... FOR UPDATE)
2. answers a known client_request_id from the ledger without changing anything
3. compares the writer's expected version with the locked one
4. appends the ledger event (ON CONFLICT DO NOTHING on client_request_id)
5. appends one history row per changed project
6. stores the document with a conditional upsert guarded by the expected version

The cache is invalidated after commit.
"""

import asyncio
import copy
from contextlib import contextmanager
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable
from typing import Dict
from typing import Iterator
from typing import List
from typing import Optional
from typing import Tuple

import asyncpg
from loguru import logger

from boardstate_api.errors import DuplicateIdempotencyKey
from boardstate_api.errors import StateValidationError
from boardstate_api.errors import StorageError
from boardstate_api.errors import VersionConflict
from boardstate_api.store.cache import StateCache
from boardstate_api.store.document import VERSION_KEY
from boardstate_api.store.document import EntityChange
from boardstate_api.store.document import VersionedDocument
from boardstate_api.store.document import diff_entities
from boardstate_api.store.document import empty_document
from boardstate_api.store.document import normalize_document
from boardstate_api.store.repository_event import EventRepository
from boardstate_api.store.repository_state import DocumentRepository

STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

Mutation = Callable[[Dict[str, Any]], Dict[str, Any]]
ChangeDescriber = Callable[[Optional[Dict[str, Any]], Dict[str, Any]], List[EntityChange]]
WritePlan = Callable[[Optional[VersionedDocument]], Tuple[int, Optional[Dict[str, Any]], Optional[List[EntityChange]]]]


@contextmanager
def translate_storage_errors(action: str) -> Iterator[None]:
    """Re-raise driver and network failures as StorageError."""
    try:
        yield
    except STORAGE_ERRORS as e:
        logger.error(f"Failed to {action}: {e}", error_type=type(e).__name__)
        raise StorageError(f"Failed to {action}: {e}") from e


@dataclass
class WriteResult:
    """Outcome of an accepted (or replayed) write."""

    version: int
    replayed: bool = False
    event_id: Optional[int] = None
    document: Optional[Dict[str, Any]] = None
    changes: List[EntityChange] = field(default_factory=list)

    def to_payload(self) -> Optional[Dict[str, Any]]:
        if self.document is None:
            return None
        payload = copy.deepcopy(self.document)
        payload[VERSION_KEY] = self.version
        return payload


def _check_expected_version(expected_version: Any) -> int:
    if isinstance(expected_version, bool) or not isinstance(expected_version, int):
        raise StateValidationError("'version' must be an integer")
    if expected_version < 0:
        raise StateValidationError("'version' must be >= 0")
    return expected_version


def _check_client_request_id(client_request_id: Any) -> str:
    if not isinstance(client_request_id, str) or not client_request_id.strip():
        raise StateValidationError("'client_request_id' is required")
    return client_request_id


class DocumentStore:
    """Read and compare-and-swap write access to the board document."""

    def __init__(
        self,
        pool,
        cache: Optional[StateCache] = None,
        documents: Optional[DocumentRepository] = None,
        events: Optional[EventRepository] = None,
    ):
        """
        Args:
            pool: StateDBPool (or asyncpg pool) used for transactions
            cache: Optional read-through cache for the current document
            documents: Document repository (defaults to one on `pool`)
            events: Event repository (defaults to one on `pool`)
        """
        self.pool = pool
        self.cache = cache
        self.documents = documents or DocumentRepository(pool)
        self.events = events or EventRepository(pool)

    async def read(self) -> Optional[VersionedDocument]:
        """
        Latest normalized document and its version.

        Returns:
            VersionedDocument, or None when nothing has been saved yet
        """
        generation = None
        if self.cache is not None:
            generation = self.cache.generation
            cached = self.cache.get()
            if cached is not None:
                logger.debug("Board state served from cache", version=cached[VERSION_KEY])
                return VersionedDocument.from_payload(cached)

        with translate_storage_errors("read board state"):
            current = await self.documents.fetch_current()

        if current is None:
            return None

        if self.cache is not None:
            self.cache.set(current.to_payload(), generation)
        return current

    async def write(
        self,
        next_document: Any,
        expected_version: int,
        client_request_id: str,
        user_id: Optional[str] = None,
    ) -> WriteResult:
        """
        Replace the document if nobody else wrote since `expected_version`.

        Args:
            next_document: Full next document (object or legacy bare list)
            expected_version: Version the writer last read (0 when no document existed)
            client_request_id: Idempotency token; retries must reuse it
            user_id: Caller identity recorded on the ledger

        Returns:
            WriteResult with the new version, or the recorded version for a replay

        Raises:
            StateValidationError: Missing or malformed input
            VersionConflict: Stored version differs from `expected_version`
            StorageError: Database failure (the transaction is rolled back)
        """
        document = normalize_document(next_document)
        if document is None:
            raise StateValidationError("'data' is required")
        expected_version = _check_expected_version(expected_version)
        client_request_id = _check_client_request_id(client_request_id)

        def plan(current: Optional[VersionedDocument]):
            return expected_version, document, None

        return await self._commit(client_request_id, user_id, plan)

    async def apply(
        self,
        mutate: Mutation,
        client_request_id: str,
        user_id: Optional[str] = None,
        describe_changes: Optional[ChangeDescriber] = None,
    ) -> WriteResult:
        """
        Server-side read-modify-write under the document row lock.

        `mutate` receives a copy of the current document (the empty document when none
        exists) and returns the next one. The write always expects the locked version, so
        it cannot conflict with a concurrent writer; it waits for the lock instead.

        Args:
            mutate: Function from current document to next document
            client_request_id: Idempotency token (server generated for restores)
            user_id: Caller identity recorded on the ledger
            describe_changes: Builds the history rows from (previous, next); defaults to a project diff
        """
        client_request_id = _check_client_request_id(client_request_id)

        def plan(current: Optional[VersionedDocument]):
            previous = current.document if current is not None else None
            base = copy.deepcopy(previous) if previous is not None else empty_document()
            next_document = normalize_document(mutate(base))
            changes = None
            if describe_changes is not None and next_document is not None:
                changes = describe_changes(previous, next_document)
            return (current.version if current is not None else 0), next_document, changes

        return await self._commit(client_request_id, user_id, plan)

    def invalidate_cache(self) -> None:
        if self.cache is not None:
            self.cache.invalidate()

    async def _commit(self, client_request_id: str, user_id: Optional[str], plan: WritePlan) -> WriteResult:
        try:
            with translate_storage_errors("save board state"):
                async with self.pool.acquire() as conn:
                    async with conn.transaction():
                        result = await self._write_locked(conn, client_request_id, user_id, plan)
        except DuplicateIdempotencyKey:
            return await self._replay(client_request_id)

        if result.replayed:
            logger.info(
                "Replaying previously applied write",
                client_request_id=client_request_id,
                version=result.version,
            )
            return result

        # Synchronous: the next read after this returns must not see the old document
        self.invalidate_cache()

        logger.info(
            "Board state saved",
            version=result.version,
            event_id=result.event_id,
            client_request_id=client_request_id,
            user_id=user_id,
            changed_entities=len(result.changes),
        )
        return result

    async def _write_locked(
        self,
        conn: asyncpg.Connection,
        client_request_id: str,
        user_id: Optional[str],
        plan: WritePlan,
    ) -> WriteResult:
        current = await self.documents.lock_current(conn)

        prior = await self.events.find_by_request_id(client_request_id, conn=conn)
        if prior is not None:
            return WriteResult(version=prior["version"], replayed=True, event_id=prior["id"])

        expected_version, next_document, changes = plan(current)
        if next_document is None:
            raise StateValidationError("'data' is required")

        current_version = current.version if current is not None else 0
        if expected_version != current_version:
            raise VersionConflict(current_version, expected_version)

        new_version = current_version + 1
        event_id = await self.events.append(
            conn,
            client_request_id,
            {**next_document, VERSION_KEY: new_version},
            new_version,
            user_id,
        )
        if event_id is None:
            # Another transaction committed the same token after our pre-check
            raise DuplicateIdempotencyKey(client_request_id)

        if changes is None:
            changes = diff_entities(current.document if current is not None else None, next_document)
        await self.events.append_entity_events(conn, event_id, changes, user_id)

        stored_version = await self.documents.compare_and_swap(conn, next_document, new_version, expected_version)
        if stored_version is None:
            raise VersionConflict(await self.documents.fetch_version(conn), expected_version)

        return WriteResult(
            version=stored_version,
            event_id=event_id,
            document=next_document,
            changes=changes,
        )

    async def _replay(self, client_request_id: str) -> WriteResult:
        with translate_storage_errors("look up prior write"):
            prior = await self.events.find_by_request_id(client_request_id)
        if prior is None:
            raise StorageError(f"client_request_id '{client_request_id}' is taken but its ledger event is missing")

        logger.info(
            "Replaying write committed concurrently with the same client_request_id",
            client_request_id=client_request_id,
            version=prior["version"],
        )
        return WriteResult(version=prior["version"], replayed=True, event_id=prior["id"])
