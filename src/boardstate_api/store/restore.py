"""
Restore Engine

Entity-scoped restore from the per-project history and whole-document restore from a
backup. Both go through DocumentStore.apply(), so a restore is an ordinary versioned
write: the version moves forward by one and the ledger records it.
"""

import copy
import uuid
from typing import Any
from typing import Dict
from typing import Optional

from loguru import logger

from boardstate_api.enums import ActionType
from boardstate_api.errors import NotFound
from boardstate_api.store.document import EntityChange
from boardstate_api.store.document import as_restore_changes
from boardstate_api.store.document import diff_entities
from boardstate_api.store.document import empty_document
from boardstate_api.store.document import normalize_document
from boardstate_api.store.document import remove_entity
from boardstate_api.store.document import replace_entity
from boardstate_api.store.document_store import DocumentStore
from boardstate_api.store.document_store import WriteResult
from boardstate_api.store.document_store import translate_storage_errors
from boardstate_api.store.repository_backup import BackupRepository


class RestoreEngine:
    """Rolls a single project, or the whole board, back to an earlier state."""

    def __init__(self, store: DocumentStore, backups: BackupRepository):
        self.store = store
        self.events = store.events
        self.backups = backups

    async def restore_entity(self, entity_id: str, event_id: int, user_id: Optional[str] = None) -> WriteResult:
        """
        Put a project back to how it looked right after history entry `event_id`.

        A history entry without snapshot (a delete) removes the project from the board.
        Otherwise the project with the same id is replaced, or appended when it is gone.

        Raises:
            NotFound: The entry does not exist or belongs to another project
        """
        entity_id = str(entity_id)
        with translate_storage_errors("load history entry"):
            entry = await self.events.get_entity_event(event_id)
        if entry is None or str(entry["project_id"]) != entity_id:
            raise NotFound(f"History entry {event_id} not found for entity '{entity_id}'")

        snapshot: Optional[Dict[str, Any]] = entry["snapshot_after"]

        def mutate(document: Dict[str, Any]) -> Dict[str, Any]:
            if snapshot is None:
                return remove_entity(document, entity_id)
            return replace_entity(document, entity_id, snapshot)

        def describe(previous, current):
            return [
                EntityChange(
                    entity_id=entity_id,
                    action_type=ActionType.RESTORE,
                    payload={"source_event_id": entry["id"]},
                    snapshot_after=copy.deepcopy(snapshot),
                )
            ]

        result = await self.store.apply(
            mutate,
            client_request_id=f"restore-entity-{entity_id}-{uuid.uuid4()}",
            user_id=user_id,
            describe_changes=describe,
        )
        logger.success(
            "Entity restored",
            entity_id=entity_id,
            source_event_id=entry["id"],
            removed=snapshot is None,
            version=result.version,
        )
        return result

    async def restore_backup(self, backup_id: int, user_id: Optional[str] = None) -> WriteResult:
        """
        Replace the whole board with the snapshot held by backup `backup_id`.

        Every project that differs from the current board gets a restore history row.

        Raises:
            NotFound: The backup does not exist
        """
        with translate_storage_errors("load backup"):
            backup = await self.backups.get(backup_id)
        if backup is None:
            raise NotFound(f"Backup {backup_id} not found")

        target = normalize_document(backup["snapshot"]) or empty_document()

        result = await self.store.apply(
            lambda current: target,
            client_request_id=f"restore-backup-{backup_id}-{uuid.uuid4()}",
            user_id=user_id,
            describe_changes=lambda previous, current: as_restore_changes(
                diff_entities(previous, current), backup_id=backup["id"]
            ),
        )
        logger.success(
            "Board restored from backup",
            backup_id=backup["id"],
            backup_version=backup["version"],
            version=result.version,
            changed_entities=len(result.changes),
        )
        return result
