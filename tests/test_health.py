"""Health endpoint, error envelope, unhandled error log."""
from fastapi.testclient import TestClient
from sqlmodel import select

from fitlife.api.deps import get_notification_service
from fitlife.core.config import Settings
from fitlife.main import app
from fitlife.models import ErrorLog


def test_health_returns_ok(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    j = r.json()
    assert j.get("status") == "ok"
    assert j.get("database") in ("ok", "error")
    assert j.get("push_configured") is True


def test_request_id_header(client: TestClient):
    r = client.get("/health")
    assert r.headers.get("X-Request-ID")


def test_http_errors_use_error_envelope(client: TestClient):
    r = client.get("/notifications")
    assert r.status_code == 401
    j = r.json()
    assert j["status_code"] == 401
    assert j["error"] == "Bạn cần đăng nhập."
    assert r.headers.get("WWW-Authenticate") == "Bearer"


def _broken_service():
    raise RuntimeError("inbox backend exploded")


def test_unhandled_error_is_logged_with_caller(db, member, auth_headers):
    app.dependency_overrides[get_notification_service] = _broken_service
    try:
        with TestClient(app, raise_server_exceptions=False) as c:
            r = c.get("/notifications/unread-count", headers=auth_headers)
    finally:
        app.dependency_overrides.pop(get_notification_service, None)
    assert r.status_code == 500
    assert r.json() == {"error": "Unexpected server error."}

    rows = db.exec(
        select(ErrorLog).where(
            ErrorLog.endpoint == "/notifications/unread-count",
            ErrorLog.error_message == "inbox backend exploded",
        )
    ).all()
    assert member.id in [row.member_id for row in rows]
    assert all(row.method == "GET" for row in rows)


def test_settings_carry_no_unused_knobs():
    fields = set(Settings.model_fields)
    assert "rate_limit_test_push_per_minute" in fields
    assert not fields & {"rate_limit_per_minute", "environment"}
