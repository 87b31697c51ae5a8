# =============================================================================
# tests/test_pipeline.py - Request Pipeline Behaviour
# =============================================================================
# End-to-end checks of the ordered middleware chain: sanitization, body
# parsing, header hardening, cross-origin handling, dispatch and the terminal
# error handler.
# =============================================================================

import json
import logging
from urllib.parse import parse_qsl

import pytest
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError

from app.exceptions import PortalException


def inspecting_router():
    """Stub group whose handlers fail loudly if they ever see unsanitized input."""
    router = APIRouter()

    @router.post("/inspect")
    async def inspect(request: Request):
        body = await request.json()
        raw = json.dumps(body)
        assert "$" not in raw
        assert "<" not in raw
        return {"body": body, "parsed": request.state.json}

    @router.get("/query")
    async def query(request: Request):
        return dict(request.query_params)

    @router.post("/form")
    async def form(request: Request):
        body = await request.body()
        return dict(parse_qsl(body.decode()))

    return router


class Rejection(Exception):
    status = 403


def failing_router():
    router = APIRouter()

    async def load_applications():
        raise HTTPException(status_code=403, detail="Not authorized to view these applications")

    @router.get("/forbidden")
    async def forbidden():
        return await load_applications()

    @router.get("/rejected")
    async def rejected():
        raise Rejection("Employer account suspended")

    @router.get("/explode")
    async def explode():
        raise RuntimeError("connection string mongodb://admin:hunter2@db")

    @router.get("/duplicate")
    async def duplicate():
        raise DuplicateKeyError(
            "E11000 duplicate key error",
            code=11000,
            details={"keyValue": {"email": "a@example.com"}},
        )

    @router.get("/teapot")
    async def teapot():
        raise PortalException("No coffee here", status_code=418, code="TEAPOT")

    @router.get("/powered")
    async def powered():
        return JSONResponse({"ok": True}, headers={"X-Powered-By": "Express", "Server": "gunicorn"})

    return router


@pytest.fixture
def stub_client(make_client):
    return make_client(
        route_groups={"/api/v1/test": inspecting_router(), "/api/v1/job": failing_router()}
    )


# =============================================================================
# Body parsing
# =============================================================================

class TestBodyParsing:

    def test_invalid_json_is_structured_400(self, client):
        response = client.post(
            "/api/v1/test/test-post",
            content=b'{"name": ',
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["code"] == "PARSE_ERROR"
        assert "Traceback" not in response.text

    def test_invalid_json_with_markup_is_still_rejected(self, client):
        response = client.post(
            "/api/v1/test/test-post",
            content=b'{"name": <script>}',
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "PARSE_ERROR"

    def test_oversized_body_is_413(self, make_client, settings):
        small = settings.model_copy(update={"json_body_limit": 64})
        client = make_client(settings_override=small)

        response = client.post("/api/v1/test/test-post", json={"name": "x" * 200})

        assert response.status_code == 413
        assert response.json()["code"] == "PAYLOAD_TOO_LARGE"

    def test_deeply_nested_json_is_400(self, client):
        response = client.post(
            "/api/v1/test/test-post",
            content=b"[" * 50000,
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "PARSE_ERROR"

    def test_oversized_nested_json_is_413(self, client):
        response = client.post(
            "/api/v1/test/test-post",
            content=b"[" * 300000,
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 413
        assert response.json()["details"]["limit"] == 102400

    def test_body_without_declared_length_is_limited(self, client):
        chunks = iter([b"[" * 40000] * 10)

        response = client.post(
            "/api/v1/test/test-post",
            content=chunks,
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 413
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_valid_json_reaches_handler(self, client):
        response = client.post("/api/v1/test/test-post", json={"name": "Ada"})

        assert response.status_code == 200
        assert response.json() == {"message": "Your name is Ada"}

    def test_missing_field_is_422(self, client):
        response = client.post("/api/v1/test/test-post", json={})

        assert response.status_code == 422
        data = response.json()
        assert data["success"] is False
        assert "name" in data["message"]


# =============================================================================
# Sanitization
# =============================================================================

class TestSanitization:

    def test_script_tags_are_not_echoed(self, client):
        response = client.post(
            "/api/v1/test/test-post", json={"name": "<script>alert(1)</script>"}
        )

        assert response.status_code == 200
        message = response.json()["message"]
        assert "<script" not in message
        assert "&lt;script>" in message

    def test_unicode_escaped_markup_is_neutralized(self, client):
        response = client.post(
            "/api/v1/test/test-post",
            content=b'{"name": "\\u003cimg src=x onerror=alert(1)>"}',
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 200
        assert "<img" not in response.json()["message"]

    def test_operator_keys_are_stripped_before_handler(self, stub_client):
        payload = {
            "email": "a@example.com",
            "password": {"$gt": ""},
            "profile": {"name": "<b>Ada</b>", "$where": "sleep(1000)", "a.b": 1},
            "tags": [{"$ne": None, "label": "ok"}],
        }

        response = stub_client.post("/api/v1/test/inspect", json=payload)

        assert response.status_code == 200
        body = response.json()["body"]
        assert body == {
            "email": "a@example.com",
            "password": {},
            "profile": {"name": "&lt;b>Ada&lt;/b>"},
            "tags": [{"label": "ok"}],
        }
        assert response.json()["parsed"] == body

    def test_query_string_is_sanitized(self, stub_client):
        response = stub_client.get(
            "/api/v1/test/query",
            params={"role[$ne]": "employer", "$where": "1", "name": "<i>x</i>"},
        )

        assert response.status_code == 200
        assert response.json() == {"name": "&lt;i>x&lt;/i>"}

    def test_form_body_is_sanitized(self, stub_client):
        response = stub_client.post(
            "/api/v1/test/form",
            data={"comment": "<script>", "$set": "x"},
        )

        assert response.status_code == 200
        assert response.json() == {"comment": "&lt;script>"}


# =============================================================================
# Header hardening and cross-origin
# =============================================================================

class TestHeaders:

    def test_hardened_headers_present(self, client):
        response = client.post("/api/v1/test/test-post", json={"name": "Ada"})

        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "SAMEORIGIN"
        assert "default-src 'self'" in response.headers["content-security-policy"]
        assert "strict-transport-security" in response.headers
        assert "x-powered-by" not in response.headers

    def test_error_responses_are_hardened(self, client):
        response = client.get("/nowhere")

        assert response.status_code == 404
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_stack_headers_are_removed(self, stub_client):
        response = stub_client.get("/api/v1/job/powered")

        assert response.status_code == 200
        assert "x-powered-by" not in response.headers
        assert "server" not in response.headers

    def test_cross_origin_headers(self, client):
        response = client.post(
            "/api/v1/test/test-post",
            json={"name": "Ada"},
            headers={"Origin": "https://app.example.com"},
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    def test_preflight_answered_without_handler(self, client, fake_db):
        response = client.options(
            "/api/v1/job/",
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            },
        )

        assert response.status_code == 200
        assert "POST" in response.headers["access-control-allow-methods"]
        fake_db.jobs.find.assert_not_called()
        fake_db.jobs.insert_one.assert_not_called()

    def test_restricted_origins(self, make_client, settings):
        restricted = settings.model_copy(update={"cors_origins": ("https://app.example.com",)})
        client = make_client(settings_override=restricted)

        allowed = client.post(
            "/api/v1/test/test-post",
            json={"name": "Ada"},
            headers={"Origin": "https://app.example.com"},
        )
        denied = client.post(
            "/api/v1/test/test-post",
            json={"name": "Ada"},
            headers={"Origin": "https://evil.example.com"},
        )

        assert allowed.headers["access-control-allow-origin"] == "https://app.example.com"
        assert "access-control-allow-origin" not in denied.headers

    def test_preflight_from_denied_origin_is_structured(self, make_client, settings, fake_db):
        restricted = settings.model_copy(update={"cors_origins": ("https://app.example.com",)})
        client = make_client(settings_override=restricted)

        response = client.options(
            "/api/v1/job/",
            headers={
                "Origin": "https://evil.example.com",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 400
        assert response.headers["content-type"] == "application/json"
        data = response.json()
        assert data["code"] == "CORS_ORIGIN_DENIED"
        assert "origin" in data["message"]
        fake_db.jobs.insert_one.assert_not_called()


# =============================================================================
# Dispatch and terminal error handling
# =============================================================================

class TestDispatchAndErrors:

    @pytest.mark.parametrize("path", ["/", "/nowhere", "/api/v1/jobs", "/api/v2/job", "/api-docs"])
    def test_unregistered_prefix_is_404(self, client, path):
        response = client.get(path)

        assert response.status_code == 404
        data = response.json()
        assert data["success"] is False
        assert data["code"] == "NOT_FOUND"

    def test_unknown_path_inside_group_is_404(self, client):
        response = client.get("/api/v1/test/does/not/exist")

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_handler_403_propagates_exactly(self, stub_client):
        response = stub_client.get("/api/v1/job/forbidden")

        assert response.status_code == 403
        assert response.json()["message"] == "Not authorized to view these applications"

    def test_error_carrying_status_is_respected(self, stub_client):
        response = stub_client.get("/api/v1/job/rejected")

        assert response.status_code == 403
        assert response.json()["message"] == "Employer account suspended"

    def test_portal_exception_status(self, stub_client):
        response = stub_client.get("/api/v1/job/teapot")

        assert response.status_code == 418
        assert response.json()["code"] == "TEAPOT"

    def test_unexpected_error_is_generic_500(self, stub_client):
        response = stub_client.get("/api/v1/job/explode")

        assert response.status_code == 500
        assert response.json()["message"] == "Internal Server Error"
        assert "hunter2" not in response.text

    def test_duplicate_key_is_400(self, stub_client):
        response = stub_client.get("/api/v1/job/duplicate")

        assert response.status_code == 400
        assert response.json()["message"] == "email field has to be unique"

    def test_method_not_allowed(self, client):
        response = client.get("/api/v1/test/test-post")

        assert response.status_code == 405
        assert response.json()["code"] == "METHOD_NOT_ALLOWED"


# =============================================================================
# Access logging
# =============================================================================

class TestAccessLog:

    def test_access_line_written(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="app.access"):
            client.post("/api/v1/test/test-post", json={"name": "Ada"})

        lines = [r.getMessage() for r in caplog.records if r.name == "app.access"]
        assert any(line.startswith("POST /api/v1/test/test-post 200 ") for line in lines)

    def test_error_responses_are_logged(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="app.access"):
            client.get("/nowhere")

        lines = [r.getMessage() for r in caplog.records if r.name == "app.access"]
        assert any(line.startswith("GET /nowhere 404 ") for line in lines)

    def test_logging_failure_does_not_fail_request(self, client, monkeypatch):
        def broken(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(logging.getLogger("app.access"), "info", broken)

        response = client.post("/api/v1/test/test-post", json={"name": "Ada"})

        assert response.status_code == 200


# =============================================================================
# Startup
# =============================================================================

class TestStartup:

    def test_database_connected_on_startup(self, client, fake_db):
        fake_db.connect.assert_awaited_once()

    def test_connection_failure_is_fatal(self, settings, fake_db):
        from fastapi.testclient import TestClient

        from app.context import AppContext
        from app.main import create_app

        fake_db.connect.side_effect = ConnectionError("mongo unreachable")
        app = create_app(AppContext(settings=settings, db=fake_db))

        with pytest.raises(ConnectionError):
            with TestClient(app):
                pass
