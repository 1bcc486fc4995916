"""Backup listing, export, on-demand snapshot and whole-document restore."""

from typing import List
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Path
from fastapi import Query
from fastapi import status

from boardstate_api.dependencies import get_backup_repository
from boardstate_api.dependencies import get_backup_scheduler
from boardstate_api.dependencies import get_restore_engine
from boardstate_api.dependencies import get_user_id
from boardstate_api.enums import BackupKind
from boardstate_api.errors import NotFound
from boardstate_api.jobs.backup_scheduler import BackupScheduler
from boardstate_api.schemas.schemas_state import BackupDetail
from boardstate_api.schemas.schemas_state import BackupSummary
from boardstate_api.schemas.schemas_state import RestoreBackupRequest
from boardstate_api.schemas.schemas_state import RestoreResponse
from boardstate_api.store.document_store import translate_storage_errors
from boardstate_api.store.repository_backup import BackupRepository
from boardstate_api.store.restore import RestoreEngine

ROUTER_BACKUPS = APIRouter(tags=["Backups"])


@ROUTER_BACKUPS.get(
    "/backups",
    summary="List backups",
    description="Backup metadata, newest first",
    response_model=List[BackupSummary],
)
async def list_backups(
    limit: Optional[int] = Query(default=None, gt=0, le=1000, description="Maximum number of backups"),
    backups: BackupRepository = Depends(get_backup_repository),
) -> List[BackupSummary]:
    with translate_storage_errors("list backups"):
        rows = await backups.list_backups(limit=limit)
    return [BackupSummary(**row) for row in rows]


@ROUTER_BACKUPS.post(
    "/backups",
    summary="Create a manual backup",
    description="Snapshot the current board document on demand",
    response_model=BackupSummary,
    status_code=status.HTTP_201_CREATED,
)
async def create_backup(
    scheduler: BackupScheduler = Depends(get_backup_scheduler),
    user_id: Optional[str] = Depends(get_user_id),
) -> BackupSummary:
    backup = await scheduler.create_snapshot(BackupKind.MANUAL, source=user_id or "api")
    return BackupSummary(**backup)


@ROUTER_BACKUPS.post(
    "/backups/restore",
    summary="Restore the board from a backup",
    description="Write the backup's snapshot as the next version of the board",
    response_model=RestoreResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"description": "backupId missing or invalid"},
        status.HTTP_404_NOT_FOUND: {"description": "Backup not found"},
    },
)
async def restore_backup(
    request_body: RestoreBackupRequest,
    engine: RestoreEngine = Depends(get_restore_engine),
    user_id: Optional[str] = Depends(get_user_id),
) -> RestoreResponse:
    result = await engine.restore_backup(request_body.backup_id, user_id=user_id)
    return RestoreResponse(success=True, data=result.to_payload())


@ROUTER_BACKUPS.get(
    "/backups/{backup_id}",
    summary="Export a backup",
    description="One backup including its snapshot body",
    response_model=BackupDetail,
    responses={status.HTTP_404_NOT_FOUND: {"description": "Backup not found"}},
)
async def get_backup(
    backup_id: int = Path(..., gt=0),
    backups: BackupRepository = Depends(get_backup_repository),
) -> BackupDetail:
    with translate_storage_errors("load backup"):
        backup = await backups.get(backup_id)
    if backup is None:
        raise NotFound(f"Backup {backup_id} not found")
    return BackupDetail(**backup)
