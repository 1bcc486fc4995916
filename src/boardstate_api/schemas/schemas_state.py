####################################
# --- Request/response schemas --- #
####################################

from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import StrictInt
from pydantic import field_validator

from boardstate_api.enums import ActionType
from boardstate_api.enums import BackupKind


# write (cRud)
class SaveStateRequest(BaseModel):
    """Request body for a versioned save of the board document."""

    data: Union[Dict[str, Any], List[Any]] = Field(
        ...,
        description="Full next document. A bare list is accepted as the legacy projects-only form.",
    )
    version: StrictInt = Field(..., ge=0, description="Version the client last read (0 when no document existed)")
    client_request_id: str = Field(..., min_length=1, description="Idempotency token, reused on retries")

    @field_validator("client_request_id")
    @classmethod
    def validate_client_request_id(cls, v: str) -> str:
        """Reject whitespace-only tokens."""
        if not v.strip():
            raise ValueError("client_request_id must not be blank")
        return v


class SaveStateResponse(BaseModel):
    """Response for an accepted or replayed save."""

    ok: bool = True
    version: int


class ConflictResponse(BaseModel):
    """Response for a save rejected by optimistic concurrency."""

    error: str = "conflict"
    currentVersion: int
    detail: Optional[str] = None


# ledger
class EventRecord(BaseModel):
    """One accepted write as recorded in the ledger."""

    id: int
    client_request_id: str
    data: Any
    version: Optional[int] = None
    user_id: Optional[str] = None
    created_at: datetime


# backups
class BackupSummary(BaseModel):
    """Backup metadata without the snapshot body."""

    id: int
    version: int
    kind: BackupKind
    source: Optional[str] = None
    created_at: datetime


class BackupDetail(BackupSummary):
    """Backup including the snapshot body, for export."""

    snapshot: Union[Dict[str, Any], List[Any]]


class RestoreBackupRequest(BaseModel):
    """Request body for a whole-document restore."""

    model_config = ConfigDict(populate_by_name=True)

    backup_id: int = Field(..., alias="backupId", gt=0)


# per-entity history
class EntityEventRecord(BaseModel):
    """One per-project history entry."""

    id: int
    ledger_event_id: int
    project_id: str
    user_id: Optional[str] = None
    action_type: ActionType
    payload: Dict[str, Any] = Field(default_factory=dict)
    snapshot_after: Optional[Dict[str, Any]] = None
    created_at: datetime


class RestoreEntityRequest(BaseModel):
    """Request body for an entity-scoped restore."""

    model_config = ConfigDict(populate_by_name=True)

    event_id: int = Field(..., alias="eventId", gt=0)


class RestoreResponse(BaseModel):
    """Response for a restore: the document as written, including its new version."""

    success: bool = True
    data: Dict[str, Any]
