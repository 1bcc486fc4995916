"""Test suite for logger configuration and the request context middleware."""

import json
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from loguru import logger

from boardstate_api.monitoring.logger import configure_logger
from boardstate_api.monitoring.logger import get_formatted_stacktrace
from boardstate_api.monitoring.logger import process_log_record
from boardstate_api.monitoring.request_context import RequestContextMiddleware
from boardstate_api.monitoring.request_context import get_request_context


class TestProcessLogRecord:
    """Tests for process_log_record filter."""

    def test_extra_serialized_to_json(self):
        """Extra fields are rendered as one JSON string."""
        record = {"extra": {"version": 3, "client_request_id": "r1"}, "exception": None}

        result = process_log_record(record)

        assert json.loads(result["extra"]) == {"version": 3, "client_request_id": "r1"}
        assert result["stacktrace"] == ""

    def test_stacktrace_on_one_line(self):
        """Tracebacks use carriage returns so collectors keep them in one event."""
        try:
            raise RuntimeError("boom")
        except RuntimeError as e:
            exc_info = (type(e), e, e.__traceback__)

        record = {"extra": {}, "exception": exc_info}
        result = process_log_record(record)

        assert "RuntimeError: boom" in result["stacktrace"]
        assert "\n" not in result["stacktrace"]

    def test_get_formatted_stacktrace_keeps_newlines_when_asked(self):
        """Newlines survive when replacement is disabled."""
        try:
            raise ValueError("bad value")
        except ValueError as e:
            exc_info = (type(e), e, e.__traceback__)

        stacktrace = get_formatted_stacktrace(exc_info, replace_newline_character_with_carriage_return=False)

        assert "\n" in stacktrace
        assert "ValueError: bad value" in stacktrace


class TestConfigureLogger:
    """Tests for configure_logger."""

    def test_replaces_existing_handlers(self):
        """configure_logger removes earlier sinks and installs one stdout sink."""
        with patch.object(logger, "remove") as mock_remove, patch.object(logger, "add") as mock_add:
            configure_logger(level="INFO", colorize=False)

        mock_remove.assert_called_once_with()
        mock_add.assert_called_once()
        kwargs = mock_add.call_args.kwargs
        assert kwargs["level"] == "INFO"
        assert kwargs["colorize"] is False
        assert kwargs["filter"] is process_log_record


class TestRequestContextMiddleware:
    """Tests for RequestContextMiddleware."""

    @staticmethod
    def _app() -> FastAPI:
        app = FastAPI()
        app.add_middleware(RequestContextMiddleware)

        @app.get("/ctx")
        async def ctx():
            return get_request_context()

        return app

    def test_request_id_generated_and_returned(self):
        """A request without X-Request-ID gets a generated one echoed back."""
        with TestClient(self._app()) as client:
            response = client.get("/ctx")

        assert response.status_code == 200
        request_id = response.headers["X-Request-ID"]
        assert request_id
        assert response.json()["request_id"] == request_id

    def test_identity_and_forwarded_ip(self):
        """X-User-Id and the first X-Forwarded-For hop land in the context."""
        with TestClient(self._app()) as client:
            response = client.get(
                "/ctx",
                headers={
                    "X-Request-ID": "req-42",
                    "X-User-Id": "alice",
                    "X-Forwarded-For": "10.0.0.1, 10.0.0.2",
                },
            )

        body = response.json()
        assert body["request_id"] == "req-42"
        assert body["user_identity"] == "alice"
        assert body["client_ip"] == "10.0.0.1"
        assert body["request_path"] == "GET /ctx"

    def test_anonymous_identity(self):
        """Missing X-User-Id is logged as anonymous."""
        with TestClient(self._app()) as client:
            response = client.get("/ctx")

        assert response.json()["user_identity"] == "anonymous"

    def test_peer_address_without_forwarded_header(self):
        """Without X-Forwarded-For the direct peer is recorded and the supplied request id is echoed."""
        with TestClient(self._app()) as client:
            response = client.get("/ctx", headers={"X-Request-ID": "retry-7", "X-Forwarded-For": " "})

        assert response.headers["X-Request-ID"] == "retry-7"
        assert response.json()["client_ip"] == "testclient"
