"""Board document read/save endpoints and the ledger replay feed."""

from typing import List
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Query
from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from loguru import logger

from boardstate_api.dependencies import get_document_store
from boardstate_api.dependencies import get_event_repository
from boardstate_api.dependencies import get_user_id
from boardstate_api.schemas.schemas_state import ConflictResponse
from boardstate_api.schemas.schemas_state import EventRecord
from boardstate_api.schemas.schemas_state import SaveStateRequest
from boardstate_api.schemas.schemas_state import SaveStateResponse
from boardstate_api.store.document_store import DocumentStore
from boardstate_api.store.document_store import translate_storage_errors
from boardstate_api.store.repository_event import EventRepository

ROUTER_STATE = APIRouter(tags=["State"])


@ROUTER_STATE.get(
    "/state",
    summary="Read the board document",
    description="Latest board document with its version, or null when nothing has been saved yet",
    responses={
        status.HTTP_200_OK: {
            "description": "Current document (or null)",
            "content": {
                "application/json": {
                    "example": {
                        "projects": [{"id": "p1", "name": "Launch"}],
                        "version": 3,
                    }
                }
            },
        }
    },
)
async def get_state(store: DocumentStore = Depends(get_document_store)) -> JSONResponse:
    """Return `{...document, version}` or `null`."""
    current = await store.read()
    if current is None:
        logger.debug("Board state requested before first save")
        return JSONResponse(status_code=status.HTTP_200_OK, content=None)

    return JSONResponse(status_code=status.HTTP_200_OK, content=jsonable_encoder(current.to_payload()))


@ROUTER_STATE.post(
    "/state",
    summary="Save the board document",
    description=(
        "Compare-and-swap save. The request carries the version the client last read and an idempotency "
        "token; retries must reuse the token."
    ),
    response_model=SaveStateResponse,
    responses={
        status.HTTP_200_OK: {"description": "Saved (or replayed) with the resulting version"},
        status.HTTP_400_BAD_REQUEST: {"description": "Malformed body"},
        status.HTTP_409_CONFLICT: {
            "description": "Another writer saved first",
            "model": ConflictResponse,
        },
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"description": "Storage failure"},
    },
)
async def save_state(
    request_body: SaveStateRequest,
    store: DocumentStore = Depends(get_document_store),
    user_id: Optional[str] = Depends(get_user_id),
) -> SaveStateResponse:
    """Save the next document if the stored version still equals `version`."""
    result = await store.write(
        request_body.data,
        expected_version=request_body.version,
        client_request_id=request_body.client_request_id,
        user_id=user_id,
    )
    return SaveStateResponse(ok=True, version=result.version)


@ROUTER_STATE.get(
    "/events",
    summary="Ledger replay feed",
    description="Accepted writes in replay order (oldest first)",
    response_model=List[EventRecord],
)
async def list_events(
    since_id: Optional[int] = Query(default=None, ge=0, description="Only events with a larger id"),
    limit: Optional[int] = Query(default=None, gt=0, le=10000, description="Maximum number of events"),
    events: EventRepository = Depends(get_event_repository),
) -> List[EventRecord]:
    """List ledger events ordered by (created_at, id)."""
    with translate_storage_errors("list ledger events"):
        rows = await events.list_events(since_id=since_id, limit=limit)
    return [EventRecord(**row) for row in rows]
