"""Per-project history and entity-scoped restore."""

from typing import List
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Query
from fastapi import status

from boardstate_api.dependencies import get_event_repository
from boardstate_api.dependencies import get_restore_engine
from boardstate_api.dependencies import get_user_id
from boardstate_api.schemas.schemas_state import EntityEventRecord
from boardstate_api.schemas.schemas_state import RestoreEntityRequest
from boardstate_api.schemas.schemas_state import RestoreResponse
from boardstate_api.store.document_store import translate_storage_errors
from boardstate_api.store.repository_event import EventRepository
from boardstate_api.store.restore import RestoreEngine

ROUTER_ENTITIES = APIRouter(tags=["Entities"])


@ROUTER_ENTITIES.get(
    "/entities/{entity_id}/history",
    summary="Project history",
    description="Changes recorded for one project, newest first",
    response_model=List[EntityEventRecord],
)
async def get_entity_history(
    entity_id: str,
    limit: Optional[int] = Query(default=None, gt=0, le=1000, description="Maximum number of entries"),
    events: EventRepository = Depends(get_event_repository),
) -> List[EntityEventRecord]:
    with translate_storage_errors("load project history"):
        rows = await events.history_for(entity_id, limit=limit)
    return [EntityEventRecord(**row) for row in rows]


@ROUTER_ENTITIES.post(
    "/entities/{entity_id}/restore",
    summary="Restore a project",
    description="Put one project back to how it looked right after the given history entry",
    response_model=RestoreResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"description": "eventId missing or invalid"},
        status.HTTP_404_NOT_FOUND: {"description": "History entry not found for this project"},
    },
)
async def restore_entity(
    entity_id: str,
    request_body: RestoreEntityRequest,
    engine: RestoreEngine = Depends(get_restore_engine),
    user_id: Optional[str] = Depends(get_user_id),
) -> RestoreResponse:
    result = await engine.restore_entity(entity_id, request_body.event_id, user_id=user_id)
    return RestoreResponse(success=True, data=result.to_payload())
