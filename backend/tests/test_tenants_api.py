import os
from datetime import datetime

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SKIP_MIGRATIONS", "1")
os.environ.setdefault("USAGE_API_KEY", "test-usage-key")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("INTEGRATION_ENCRYPTION_KEY", "0123456789abcdef0123456789abcdef")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

from quotaflow.main import app  # noqa: E402
import quotaflow.core.db as db_module  # noqa: E402
from quotaflow.core.config import settings  # noqa: E402
from quotaflow.core.crypto import decrypt_secret  # noqa: E402
from quotaflow.crud.tenants import get_tenant_by_slug, get_tenant_limits  # noqa: E402
from quotaflow.models.usage_events import DocumentUsageEvent  # noqa: E402
from factories import add_usage, make_tenant  # noqa: E402
from make_stubs import FakeMakeApi  # noqa: E402


client = TestClient(app)

SCENARIOS = [{"id": 101, "name": "Invoices"}, {"id": 102, "name": "Receipts"}]


def _setup_db(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'tenants.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.engine = engine
    db_module.SessionLocal = SessionLocal
    db_module.Base.metadata.create_all(bind=engine)
    return SessionLocal


def _admin():
    return {"X-Admin-Key": settings.ADMIN_API_KEY}


def test_register_tenant_applies_plan_limits(tmp_path):
    _setup_db(tmp_path)
    resp = client.post("/api/v1/tenants", json={"name": "Acme Corp", "plan_key": "starter"}, headers=_admin())
    assert resp.status_code == 201
    body = resp.json()
    assert body["slug"] == "acme-corp"
    assert body["plan_key"] == "starter"
    assert (body["pages_limit"], body["rows_limit"]) == (1000, 1000)
    assert body["scenarios_paused"] is False
    assert body["has_make_api_key"] is False

    second = client.post("/api/v1/tenants", json={"name": "Acme Corp"}, headers=_admin())
    assert second.json()["slug"] == "acme-corp-2"
    assert second.json()["pages_limit"] == 5000


def test_register_tenant_rejects_taken_slug_and_unknown_plan(tmp_path):
    _setup_db(tmp_path)
    assert client.post("/api/v1/tenants", json={"name": "One", "slug": "shared"}, headers=_admin()).status_code == 201
    assert client.post("/api/v1/tenants", json={"name": "Two", "slug": "shared"}, headers=_admin()).status_code == 409
    assert client.post("/api/v1/tenants", json={"name": "Three", "plan_key": "gold"}, headers=_admin()).status_code == 400
    assert client.post("/api/v1/tenants", json={"name": "Four", "slug": "12345"}, headers=_admin()).status_code == 400


def test_tenant_routes_require_admin_key(tmp_path):
    _setup_db(tmp_path)
    assert client.post("/api/v1/tenants", json={"name": "Acme"}).status_code == 401
    assert client.get("/api/v1/tenants/acme", headers={"X-Admin-Key": "nope"}).status_code == 401


def test_tenant_is_addressable_by_slug_or_id(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        tenant_id = make_tenant(db, name="Acme", slug="acme").id

    by_slug = client.get("/api/v1/tenants/acme", headers=_admin())
    by_id = client.get(f"/api/v1/tenants/{tenant_id}", headers=_admin())
    assert by_slug.status_code == by_id.status_code == 200
    assert by_slug.json()["id"] == by_id.json()["id"] == tenant_id

    missing = client.get("/api/v1/tenants/nobody", headers=_admin())
    assert missing.status_code == 404
    assert missing.headers["X-Error-Code"] == "tenant_not_found"

    for ref in ("\u00b2", "99999999999999999999"):
        response = client.get(f"/api/v1/tenants/{ref}/quota", headers=_admin())
        assert response.status_code == 404


def test_workflow_credentials_are_stored_encrypted(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        make_tenant(db, name="Acme", slug="acme")

    resp = client.patch(
        "/api/v1/tenants/acme/workflow-credentials",
        json={"api_key": "make-secret-key", "org_id": "321", "folder_id": "42"},
        headers=_admin(),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["has_make_api_key"] is True
    assert body["make_org_id"] == "321"
    assert body["make_folder_id"] == "42"
    assert "make-secret-key" not in resp.text

    with SessionLocal() as db:
        tenant = get_tenant_by_slug(db, "acme")
        assert tenant.make_api_key_encrypted != "make-secret-key"
        assert decrypt_secret(tenant.make_api_key_encrypted) == "make-secret-key"

    cleared = client.patch(
        "/api/v1/tenants/acme/workflow-credentials",
        json={"clear_api_key": True, "folder_id": ""},
        headers=_admin(),
    )
    assert cleared.json()["has_make_api_key"] is False
    assert cleared.json()["make_folder_id"] is None

    blank = client.patch("/api/v1/tenants/acme/workflow-credentials", json={"api_key": "  "}, headers=_admin())
    assert blank.status_code == 400


def test_quota_route_reports_current_period(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        tenant = make_tenant(db, name="Acme", slug="acme", plan_key="starter")
        add_usage(db, tenant=tenant, pages=250, rows=40)

    resp = client.get("/api/v1/tenants/acme/quota", headers=_admin())
    assert resp.status_code == 200
    body = resp.json()
    assert (body["pages_used"], body["rows_used"]) == (250, 40)
    assert (body["pages_remaining"], body["rows_remaining"]) == (750, 960)
    assert body["exceeded"] is False
    assert body["last_reset_at"] is not None


def test_operator_pause_and_resume(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    FakeMakeApi(scenarios=SCENARIOS, failing_actions={"102": 500}).install(monkeypatch)
    with SessionLocal() as db:
        tenant_id = make_tenant(db, name="Acme", slug="acme", api_key="make-key", org_id="321").id

    paused = client.post("/api/v1/tenants/acme/scenarios/pause", headers=_admin())
    assert paused.json() == {"succeeded": 1, "failed": 1}
    with SessionLocal() as db:
        assert get_tenant_limits(db, tenant_id).scenarios_paused is True

    resumed = client.post("/api/v1/tenants/acme/scenarios/resume", headers=_admin())
    assert resumed.json() == {"succeeded": 1, "failed": 1}
    with SessionLocal() as db:
        assert get_tenant_limits(db, tenant_id).scenarios_paused is False


def test_usage_reset_route(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    FakeMakeApi(scenarios=SCENARIOS).install(monkeypatch)
    with SessionLocal() as db:
        tenant = make_tenant(db, name="Acme", slug="acme", api_key="make-key", org_id="321", scenarios_paused=True)
        add_usage(db, tenant=tenant, pages=10, rows=10)
        add_usage(db, tenant=tenant, pages=10, rows=10)
        tenant_id = tenant.id

    resp = client.post("/api/v1/tenants/acme/usage/reset", headers=_admin())
    assert resp.status_code == 200
    body = resp.json()
    assert body["events_deleted"] == 2
    assert body["aggregates_deleted"] == 1
    assert body["resume"] == {"succeeded": 2, "failed": 0}
    reset_at = datetime.fromisoformat(body["last_reset_at"])
    assert (reset_at.hour, reset_at.minute, reset_at.second) == (0, 0, 0)

    with SessionLocal() as db:
        assert db.query(DocumentUsageEvent).filter_by(tenant_id=tenant_id).count() == 0
        assert get_tenant_limits(db, tenant_id).scenarios_paused is False
