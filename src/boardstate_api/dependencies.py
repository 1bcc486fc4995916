"""FastAPI dependencies for accessing app state."""

from typing import Optional

from fastapi import Header
from fastapi import HTTPException
from fastapi import Request
from fastapi import status
from loguru import logger

from boardstate_api.jobs.backup_scheduler import BackupScheduler
from boardstate_api.settings import Settings
from boardstate_api.store.document_store import DocumentStore
from boardstate_api.store.repository_backup import BackupRepository
from boardstate_api.store.repository_event import EventRepository
from boardstate_api.store.restore import RestoreEngine

STATE_STORE_UNAVAILABLE = "Board state storage is not configured or failed to start"


def get_settings(request: Request) -> Settings:
    """
    Get application settings from request state.

    Parameters
    ----------
    request : Request
        FastAPI request object

    Returns
    -------
    Settings
        Application settings instance
    """
    return request.app.state.settings


def _require_state(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        logger.warning("State store component unavailable", component=name, url_path=str(request.url.path))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=STATE_STORE_UNAVAILABLE)
    return component


def get_document_store(request: Request) -> DocumentStore:
    """Document store created at startup; 503 when the state database is not available."""
    return _require_state(request, "document_store")


def get_event_repository(request: Request) -> EventRepository:
    return _require_state(request, "event_repository")


def get_backup_repository(request: Request) -> BackupRepository:
    return _require_state(request, "backup_repository")


def get_backup_scheduler(request: Request) -> BackupScheduler:
    return _require_state(request, "backup_scheduler")


def get_restore_engine(request: Request) -> RestoreEngine:
    return _require_state(request, "restore_engine")


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """
    Caller identity forwarded by the authentication layer in the X-User-Id header.

    Returns None for anonymous callers.
    """
    if x_user_id is None:
        return None
    x_user_id = x_user_id.strip()
    return x_user_id or None
