"""
Per-request log context for the board state API.

Every request is tagged with a correlation id, the caller's address and the
board user taken from ``X-User-Id``. The tags are bound to loguru for the
duration of the request, so store and scheduler logs emitted while serving it
carry them too. One ``http_request`` line is written when the response is ready.
"""
import time
import uuid
from contextvars import ContextVar
from typing import Any
from typing import Callable

from fastapi import Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"
USER_ID_HEADER = "X-User-Id"
ANONYMOUS_USER = "anonymous"

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")
client_ip_ctx: ContextVar[str] = ContextVar("client_ip", default="")
user_identity_ctx: ContextVar[str] = ContextVar("user_identity", default="")
request_path_ctx: ContextVar[str] = ContextVar("request_path", default="")


def client_ip_of(request: Request) -> str:
    # behind the ingress the peer is the proxy; the caller is the first forwarded hop
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded_for.split(",")[0].strip()
    if first_hop:
        return first_hop
    return request.client.host if request.client else "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with a correlation id and the acting board user."""

    async def dispatch(self, request: Request, call_next: Callable) -> Any:
        """
        Bind the request tags to the log context, serve the request, log the outcome.

        A caller-supplied ``X-Request-ID`` is reused so retried saves can be traced
        across attempts; otherwise a fresh uuid4 is issued. Either way it is echoed
        in the response. Board documents are never logged.
        """
        context = {
            "request_id": request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4()),
            "client_ip": client_ip_of(request),
            "user_identity": request.headers.get(USER_ID_HEADER) or ANONYMOUS_USER,
            "request_path": f"{request.method} {request.url.path}",
        }
        request_id_ctx.set(context["request_id"])
        client_ip_ctx.set(context["client_ip"])
        user_identity_ctx.set(context["user_identity"])
        request_path_ctx.set(context["request_path"])

        with logger.contextualize(**context):
            started = time.perf_counter()
            response = await call_next(request)
            elapsed_ms = (time.perf_counter() - started) * 1000

            logger.info(
                f"{context['request_path']} -> {response.status_code}",
                event_type="http_request",
                http_method=request.method,
                url_path=request.url.path,
                url_query=str(request.query_params) or None,
                status_code=response.status_code,
                response_time_ms=round(elapsed_ms, 2),
                request_bytes=request.headers.get("Content-Length"),
            )

        response.headers[REQUEST_ID_HEADER] = context["request_id"]
        return response


def get_request_context() -> dict:
    """Tags of the request being served (empty strings outside a request)."""
    return {
        "request_id": request_id_ctx.get(),
        "client_ip": client_ip_ctx.get(),
        "user_identity": user_identity_ctx.get(),
        "request_path": request_path_ctx.get(),
    }
