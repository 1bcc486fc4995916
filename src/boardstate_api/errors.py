"""Error taxonomy for the board state store and the FastAPI handlers that render it."""

from typing import Any
from typing import Dict
from typing import Optional

import pydantic
from fastapi import Request
from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from boardstate_api.monitoring.logger import log_response_info

__all__ = [
    "StateStoreError",
    "StateValidationError",
    "VersionConflict",
    "DuplicateIdempotencyKey",
    "NotFound",
    "StorageError",
    "handle_broad_exceptions",
    "handle_state_store_errors",
    "handle_request_validation_errors",
    "handle_pydantic_validation_errors",
]


class StateStoreError(Exception):
    """Base class for every error raised by the state store."""

    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "state_store_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_response_body(self) -> Dict[str, Any]:
        return {"error": self.error_code, "detail": self.detail}


class StateValidationError(StateStoreError):
    """Malformed request shape or missing required field. Client-fixable, never retried."""

    http_status = status.HTTP_400_BAD_REQUEST
    error_code = "validation_error"


class VersionConflict(StateStoreError):
    """The writer's expected version no longer matches the stored one."""

    http_status = status.HTTP_409_CONFLICT
    error_code = "conflict"

    def __init__(self, current_version: int, expected_version: Optional[int] = None):
        detail = f"Version conflict: expected {expected_version}, current is {current_version}"
        super().__init__(detail)
        self.current_version = current_version
        self.expected_version = expected_version

    def to_response_body(self) -> Dict[str, Any]:
        return {"error": self.error_code, "currentVersion": self.current_version, "detail": self.detail}


class DuplicateIdempotencyKey(StateStoreError):
    """
    The idempotency token is already in the ledger.

    Internal signal only: the store answers it with the previously recorded result.
    """

    error_code = "duplicate_request"

    def __init__(self, client_request_id: str):
        super().__init__(f"client_request_id '{client_request_id}' was already applied")
        self.client_request_id = client_request_id


class NotFound(StateStoreError):
    """Referenced document, event, backup or entity does not exist."""

    http_status = status.HTTP_404_NOT_FOUND
    error_code = "not_found"


class StorageError(StateStoreError):
    """The database is unreachable or the transaction failed for a reason other than a version mismatch."""

    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "storage_error"


# fastapi docs on middlewares: https://fastapi.tiangolo.com/tutorial/middleware/
async def handle_broad_exceptions(request: Request, call_next):
    """Handle any exception that goes unhandled by a more specific exception handler."""
    try:
        return await call_next(request)
    except Exception as err:  # pylint: disable=broad-except
        error_response = {"detail": "Internal server error", "error_type": type(err).__name__}

        logger.error(
            f"Unhandled exception: {type(err).__name__}: {str(err)}",
            http_status=500,
            http_method=request.method,
            url_path=str(request.url.path),
            error_type=type(err).__name__,
            error_message=str(err),
            response_body=error_response,
            exc_info=True,
        )

        response = JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_response,
        )
        log_response_info(response)
        return response


async def handle_state_store_errors(request: Request, exc: StateStoreError) -> JSONResponse:
    """
    Convert state store errors to HTTP responses.

    - StateValidationError -> 400 Bad Request
    - NotFound -> 404 Not Found
    - VersionConflict -> 409 Conflict (with the authoritative currentVersion)
    - StorageError / anything else -> 500 Internal Server Error
    """
    error_response = exc.to_response_body()
    http_status = exc.http_status

    log_fields = dict(
        http_status=http_status,
        http_method=request.method,
        url_path=str(request.url.path),
        error_type=type(exc).__name__,
        response_body=error_response,
    )
    if http_status >= 500:
        logger.error(f"State store failure: {exc.detail}", **log_fields)
    elif isinstance(exc, VersionConflict):
        # Routine outcome of optimistic concurrency
        logger.info(f"Version conflict: {exc.detail}", **log_fields)
    else:
        logger.warning(f"State store request rejected: {exc.detail}", **log_fields)

    response = JSONResponse(status_code=http_status, content=error_response)
    log_response_info(response)
    return response


async def handle_request_validation_errors(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Answer malformed request bodies with 400 and the list of failing fields."""
    errors = exc.errors()
    error_response = {
        "error": "validation_error",
        "detail": [
            {
                "loc": [str(part) for part in error.get("loc", ())],
                "msg": error.get("msg"),
            }
            for error in errors
        ],
    }

    logger.warning(
        f"Request validation error: {len(errors)} validation errors",
        http_status=400,
        http_method=request.method,
        url_path=str(request.url.path),
        error_type="RequestValidationError",
        response_body=error_response,
    )

    response = JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_response)
    log_response_info(response)
    return response


# fastapi docs on error handlers: https://fastapi.tiangolo.com/tutorial/handling-errors/
async def handle_pydantic_validation_errors(request: Request, exc: pydantic.ValidationError) -> JSONResponse:
    """Handle Pydantic validation errors raised outside request parsing."""
    errors = exc.errors()
    error_response = {
        "detail": [
            {
                "msg": error["msg"],
                "input": error["input"],
            }
            for error in errors
        ]
    }

    logger.warning(
        f"Validation error: {len(errors)} validation errors",
        http_status=422,
        http_method=request.method,
        url_path=str(request.url.path),
        error_type="ValidationError",
        validation_errors=errors,
        response_body=error_response,
    )

    response = JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=jsonable_errors(error_response),
    )
    log_response_info(response)
    return response


def jsonable_errors(body: Dict[str, Any]) -> Dict[str, Any]:
    """Pydantic error inputs can hold arbitrary objects; keep the response JSON-serializable."""
    for item in body.get("detail", []):
        if not isinstance(item.get("input"), (str, int, float, bool, type(None), list, dict)):
            item["input"] = str(item["input"])
    return body
