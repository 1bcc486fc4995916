"""
Backup Scheduler

Point-in-time snapshots of the board document:
- a 'startup' snapshot when the backup table is empty
- recurring 'hourly' and 'daily' snapshots on independent asyncio tasks
- on-demand 'manual' snapshots through the API

Snapshots read the committed document without taking the row lock and bypass the cache.
"""

import asyncio
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import Optional

from loguru import logger

from boardstate_api.enums import BackupKind
from boardstate_api.store.document import VersionedDocument
from boardstate_api.store.document import empty_document
from boardstate_api.store.document_store import translate_storage_errors
from boardstate_api.store.repository_backup import BackupRepository
from boardstate_api.store.repository_state import DocumentRepository


class BackupScheduler:
    """Creates board snapshots on startup, on a schedule and on demand."""

    def __init__(
        self,
        documents: DocumentRepository,
        backups: BackupRepository,
        source: str = "scheduler",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            documents: Repository used for the unlocked read of the current document
            backups: Repository the snapshots are written to
            source: Value recorded in the backup 'source' column for scheduled snapshots
            sleep: Awaitable sleep, injectable for tests
        """
        self.documents = documents
        self.backups = backups
        self.source = source
        self._sleep = sleep
        self._tasks: Dict[BackupKind, asyncio.Task] = {}

    @property
    def running(self) -> Dict[str, bool]:
        return {kind.value: not task.done() for kind, task in self._tasks.items()}

    async def create_snapshot(self, kind: BackupKind, source: Optional[str] = None) -> Dict[str, Any]:
        """
        Snapshot the current document.

        When no document exists yet the snapshot is the empty document at version 0.

        Returns:
            Summary row of the new backup (id, version, kind, source, created_at)
        """
        kind = BackupKind(kind)
        with translate_storage_errors(f"create {kind.value} backup"):
            current = await self.documents.fetch_current()
            if current is None:
                current = VersionedDocument(document=empty_document(), version=0)

            backup = await self.backups.create(
                snapshot=current.to_payload(),
                version=current.version,
                kind=kind,
                source=source or self.source,
            )

        logger.success(
            "Board backup created",
            backup_id=backup["id"],
            kind=kind.value,
            version=current.version,
            source=backup.get("source"),
        )
        return backup

    async def ensure_initial_backup(self) -> Optional[Dict[str, Any]]:
        """Create a 'startup' snapshot when no backup exists yet."""
        with translate_storage_errors("count backups"):
            existing = await self.backups.count()
        if existing:
            logger.info("Backups already present - skipping startup snapshot", backups=existing)
            return None
        return await self.create_snapshot(BackupKind.STARTUP)

    def schedule_recurring(self, hourly_interval_minutes: float = 60, daily_interval_hours: float = 24) -> None:
        """
        Start the recurring snapshot tasks. An interval of 0 disables that cadence.

        Must be called from a running event loop.
        """
        for kind, interval_seconds in (
            (BackupKind.HOURLY, hourly_interval_minutes * 60),
            (BackupKind.DAILY, daily_interval_hours * 3600),
        ):
            if interval_seconds <= 0:
                logger.info("Backup cadence disabled", kind=kind.value)
                continue

            existing = self._tasks.get(kind)
            if existing is not None and not existing.done():
                logger.debug("Backup cadence already running", kind=kind.value)
                continue

            self._tasks[kind] = asyncio.create_task(
                self._run_cadence(kind, interval_seconds),
                name=f"backup-{kind.value}",
            )
            logger.info("Backup cadence scheduled", kind=kind.value, interval_seconds=interval_seconds)

    async def _run_cadence(self, kind: BackupKind, interval_seconds: float) -> None:
        while True:
            try:
                await self._sleep(interval_seconds)
                await self.create_snapshot(kind)
            except asyncio.CancelledError:
                logger.info("Backup cadence cancelled - shutting down", kind=kind.value)
                raise
            except Exception as e:
                # The next tick runs regardless
                logger.error(f"Scheduled {kind.value} backup failed: {e}", kind=kind.value, exc_info=True)

    async def stop(self) -> None:
        """Cancel the recurring tasks and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("Backup scheduler stopped", tasks=len(tasks))
