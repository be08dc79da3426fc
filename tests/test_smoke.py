import logging
from datetime import timedelta

import pytest

from app.hrms import create_app
from app.hrms.auth import issue_token
from app.hrms.db import session_scope
from app.hrms.models import Base, DeductionType, User

SECRET = "test-secret"


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("JWT_SECRET", SECRET)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("PORT", "8005")
    for k in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()

    engine = app.extensions["database"].engine
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(User(id=1, name="HR User", email="hr@example.com"))
        s.add_all(
            [
                DeductionType(id=1, code="PF", name="Provident Fund", calculation_method="percentage"),
                DeductionType(id=2, code="TDS", name="Income Tax", calculation_method="percentage", is_mandatory=True),
                DeductionType(id=3, code="OLD", name="Archived Levy", calculation_method="fixed", is_active=False),
            ]
        )

    return app.test_client()


def _auth(role: str = "hr", user_id: int = 1, branch_id: int | None = 1, secret: str = SECRET, **kwargs) -> dict:
    token = issue_token(secret, user_id=user_id, role=role, branch_id=branch_id, **kwargs)
    return {"Authorization": f"Bearer {token}"}


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["status"] == "HRMS Service is running"
    assert r.json["service"] == "HRMSService"
    assert r.json["port"] == 8005


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_unknown_route_returns_json_404(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.json["error"] == "Not found"
    assert r.json["message"] == "Route /api/nope not found in HRMSService"


def test_404_message_keeps_query_string(client):
    r = client.get("/api/nope?page=2")
    assert r.status_code == 404
    assert r.json["message"] == "Route /api/nope?page=2 not found in HRMSService"


def test_unhandled_error_is_json_500_logged_once(client, caplog):
    def _boom():
        raise RuntimeError("boom")

    client.application.add_url_rule("/boom", "boom", _boom)

    with caplog.at_level(logging.ERROR):
        r = client.get("/boom")
    assert r.status_code == 500
    assert r.json == {"success": False, "error": "Internal server error", "message": "boom"}
    assert len([rec for rec in caplog.records if rec.exc_info]) == 1
    assert any("Unhandled 500" in rec.getMessage() for rec in caplog.records)


def test_missing_token_is_401(client):
    r = client.get("/api/deduction-types")
    assert r.status_code == 401
    assert r.json == {"success": False, "error": "Access token required"}


def test_bearer_without_token_is_401(client):
    r = client.get("/api/deduction-types", headers={"Authorization": "Bearer"})
    assert r.status_code == 401


def test_bad_signature_is_403(client):
    r = client.get("/api/deduction-types", headers=_auth(secret="someone-else"))
    assert r.status_code == 403
    assert r.json["error"] == "Invalid or expired token"


def test_expired_token_is_403(client):
    r = client.get("/api/deduction-types", headers=_auth(expires_in=timedelta(seconds=-30)))
    assert r.status_code == 403
    assert r.json["error"] == "Invalid or expired token"


def test_garbage_token_is_403(client):
    r = client.get("/api/deduction-types", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 403


def test_deduction_types_active_only_ordered_by_name(client):
    r = client.get("/api/deduction-types", headers=_auth(role="driver"))
    assert r.status_code == 200
    assert r.json["success"] is True
    names = [t["name"] for t in r.json["data"]]
    assert names == ["Income Tax", "Provident Fund"]
    tds = r.json["data"][0]
    assert tds["code"] == "TDS"
    assert tds["is_mandatory"] is True


def test_role_not_in_allow_list_is_403(client):
    # any authenticated role can list types, but "driver" may not read templates
    r = client.get("/api/deduction-templates", headers=_auth(role="driver"))
    assert r.status_code == 403
    assert r.json == {"success": False, "error": "Insufficient permissions"}


def test_read_only_role_cannot_write(client):
    r = client.post("/api/deduction-templates", json={}, headers=_auth(role="teacher"))
    assert r.status_code == 403
    assert r.json["error"] == "Insufficient permissions"


def test_cors_headers_on_api(client):
    r = client.get("/api/deduction-types", headers={**_auth(), "Origin": "http://hr.example.com"})
    assert r.status_code == 200
    assert r.headers.get("Access-Control-Allow-Origin") in ("*", "http://hr.example.com")


def test_production_requires_real_jwt_secret(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg2://u:p@db.local:5432/hrms")
    monkeypatch.delenv("JWT_SECRET", raising=False)
    with pytest.raises(RuntimeError, match="JWT_SECRET"):
        create_app()


def test_production_rejects_sqlite(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("JWT_SECRET", "a-long-random-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app()
