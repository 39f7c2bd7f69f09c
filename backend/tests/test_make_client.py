import os
from datetime import date, datetime
from decimal import Decimal

import pytest
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
from quotaflow.core.errors import WorkflowCredentialsMissing, WorkflowOrganizationUnresolved  # noqa: E402
from quotaflow.crud.tenants import get_tenant_limits  # noqa: E402
from quotaflow.crud.usage import list_workflow_usage  # noqa: E402
from quotaflow.integrations.make import (  # noqa: E402
    MakeClient,
    client_for_tenant,
    list_tenant_scenarios,
    pause_all_scenarios,
    resolve_organization_id,
    resume_all_scenarios,
)
from quotaflow.integrations.sync import parse_usage_date, sync_scenario_usage  # noqa: E402
from quotaflow.models.workflow_usage import WorkflowUsageDaily  # noqa: E402
from factories import make_tenant  # noqa: E402
from make_stubs import FakeMakeApi  # noqa: E402


client = TestClient(app)

NOW = datetime(2026, 10, 18, 12, 0)
SCENARIOS = [{"id": 101, "name": "Invoices"}, {"id": 102, "name": "Receipts"}, {"id": 103, "name": "Payroll"}]


def _setup_db(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'make.db'}",
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


def test_stored_org_id_wins_without_lookups(monkeypatch):
    fake = FakeMakeApi().install(monkeypatch)
    lookup = resolve_organization_id(MakeClient("key"), "999")
    assert (lookup.org_id, lookup.source) == ("999", "stored")
    assert fake.calls == []


def test_org_id_from_profile(monkeypatch):
    FakeMakeApi().install(monkeypatch)
    lookup = resolve_organization_id(MakeClient("key"))
    assert (lookup.org_id, lookup.source) == ("321", "profile")


def test_org_id_from_nested_profile_organization(monkeypatch):
    FakeMakeApi(user={"user": {"id": 1, "organization": {"id": 55}}}).install(monkeypatch)
    assert resolve_organization_id(MakeClient("key")).org_id == "55"


def test_org_listing_used_when_profile_fails(monkeypatch):
    fake = FakeMakeApi(
        errors={"/users/me": 500},
        organizations=[{"id": 777, "name": "Main"}, {"id": 778, "name": "Other"}],
    ).install(monkeypatch)
    lookup = resolve_organization_id(MakeClient("key"))
    assert (lookup.org_id, lookup.source) == ("777", "organizations")
    assert [path for _, path, _, _ in fake.calls] == ["/users/me", "/organizations"]


def test_org_unresolved_when_every_source_is_empty(monkeypatch):
    FakeMakeApi(user={"authUser": {"id": 1}}, errors={"/organizations": "timeout"}).install(monkeypatch)
    assert resolve_organization_id(MakeClient("key")).found is False


def test_client_sends_token_header(monkeypatch):
    fake = FakeMakeApi().install(monkeypatch)
    MakeClient("secret-token").get_current_user()
    headers = fake.calls[0][3]
    assert headers["Authorization"] == "Token secret-token"


def test_listing_falls_back_to_default_folder(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    fake = FakeMakeApi(scenarios=SCENARIOS).install(monkeypatch)
    with SessionLocal() as db:
        tenant = make_tenant(db, api_key="make-key", org_id="321")
        scenarios = list_tenant_scenarios(tenant)

    assert [scenario.id for scenario in scenarios] == ["101", "102", "103"]
    params = fake.requested("/scenarios")[0]
    assert params == {"organizationId": "321", "limit": 200, "folderId": "449625"}


def test_listing_uses_tenant_folder(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    fake = FakeMakeApi(scenarios=SCENARIOS).install(monkeypatch)
    with SessionLocal() as db:
        tenant = make_tenant(db, api_key="make-key", org_id="321", folder_id="42")
        list_tenant_scenarios(tenant)
    assert fake.requested("/scenarios")[0]["folderId"] == "42"


def test_listing_is_empty_without_key_or_on_failure(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    fake = FakeMakeApi(scenarios=SCENARIOS, errors={"/scenarios": 503}).install(monkeypatch)
    with SessionLocal() as db:
        keyless = make_tenant(db)
        assert list_tenant_scenarios(keyless) == []
        assert fake.calls == []

        connected = make_tenant(db, api_key="make-key", org_id="321")
        assert list_tenant_scenarios(connected) == []

        with pytest.raises(WorkflowCredentialsMissing):
            client_for_tenant(keyless, required=True)


def test_partial_pause_sets_flag(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    fake = FakeMakeApi(scenarios=SCENARIOS, failing_actions={"102": 500}).install(monkeypatch)
    with SessionLocal() as db:
        tenant = make_tenant(db, api_key="make-key", org_id="321")
        result = pause_all_scenarios(db, tenant.id)
        assert result.to_dict() == {"succeeded": 2, "failed": 1}
        assert get_tenant_limits(db, tenant.id).scenarios_paused is True
    assert fake.actions("stop") == ["/scenarios/101/stop", "/scenarios/102/stop", "/scenarios/103/stop"]


def test_failed_pause_leaves_flag_unset(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    FakeMakeApi(
        scenarios=SCENARIOS,
        failing_actions={"101": 500, "102": "timeout", "103": 404},
    ).install(monkeypatch)
    with SessionLocal() as db:
        tenant = make_tenant(db, api_key="make-key", org_id="321")
        result = pause_all_scenarios(db, tenant.id)
        assert result.to_dict() == {"succeeded": 0, "failed": 3}
        assert get_tenant_limits(db, tenant.id).scenarios_paused is False


def test_resume_clears_flag(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    FakeMakeApi(scenarios=SCENARIOS).install(monkeypatch)
    with SessionLocal() as db:
        tenant = make_tenant(db, api_key="make-key", org_id="321", scenarios_paused=True)
        assert resume_all_scenarios(db, tenant.id).succeeded == 3
        assert get_tenant_limits(db, tenant.id).scenarios_paused is False


def test_check_connection_reports_user(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    FakeMakeApi().install(monkeypatch)
    with SessionLocal() as db:
        make_tenant(db, slug="acme", api_key="make-key")

    response = client.get("/api/v1/tenants/acme/integrations/make/check", headers=_admin())
    assert response.status_code == 200
    assert response.json() == {
        "status": "connected",
        "user": {
            "id": 7,
            "name": "Ops Bot",
            "email": "ops@example.com",
            "organization_id": "321",
            "timezone_id": 113,
        },
        "zone": "eu2",
    }


@pytest.mark.parametrize("upstream_status", [401, 403])
def test_check_connection_maps_auth_failures(tmp_path, monkeypatch, upstream_status):
    SessionLocal = _setup_db(tmp_path)
    FakeMakeApi(errors={"/users/me": upstream_status}).install(monkeypatch)
    with SessionLocal() as db:
        make_tenant(db, slug="acme", api_key="bad-key")

    response = client.get("/api/v1/tenants/acme/integrations/make/check", headers=_admin())
    assert response.status_code == 401
    assert response.json()["code"] == "workflow_invalid_key"


def test_check_connection_without_key(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        make_tenant(db, slug="acme")
    response = client.get("/api/v1/tenants/acme/integrations/make/check", headers=_admin())
    assert response.status_code == 400
    assert response.json()["code"] == "workflow_api_key_missing"


def test_scenarios_route_lists_tenant_scenarios(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    FakeMakeApi(scenarios=SCENARIOS[:2]).install(monkeypatch)
    with SessionLocal() as db:
        make_tenant(db, slug="acme", api_key="make-key", org_id="321")

    response = client.get("/api/v1/tenants/acme/integrations/make/scenarios", headers=_admin())
    assert response.status_code == 200
    assert response.json() == {
        "scenarios": [{"id": "101", "name": "Invoices"}, {"id": "102", "name": "Receipts"}],
        "count": 2,
    }


@pytest.mark.parametrize(
    "value, expected",
    [
        ("16-10-2026", date(2026, 10, 16)),
        ("2026-10-16", date(2026, 10, 16)),
        ("2026-10-16T00:00:00Z", date(2026, 10, 16)),
        ("31-02-2026", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_usage_date(value, expected):
    assert parse_usage_date(value) == expected


def test_sync_replaces_days_from_earliest_point(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    fake = FakeMakeApi(
        scenarios=SCENARIOS,
        usage={
            "101": [
                {"date": "16-10-2026", "operations": 10, "dataTransfer": 2048, "centicredits": 250},
                {"date": "17-10-2026", "operations": 0, "dataTransfer": 0, "centicredits": 0},
            ],
            "102": [{"date": "16-10-2026", "operations": 5, "dataTransfer": 0, "centicredits": 50}],
        },
        errors={"/scenarios/103/usage": 500},
    ).install(monkeypatch)
    with SessionLocal() as db:
        tenant = make_tenant(db, api_key="make-key", org_id="321")
        db.add_all(
            [
                WorkflowUsageDaily(tenant_id=tenant.id, date=date(2026, 10, 1), operations=1, credits=Decimal("0.01")),
                WorkflowUsageDaily(tenant_id=tenant.id, date=date(2026, 10, 16), operations=999, credits=Decimal("9.99")),
                WorkflowUsageDaily(tenant_id=tenant.id, date=date(2026, 10, 17), operations=3, credits=Decimal("0.03")),
            ]
        )
        db.commit()

        summary = sync_scenario_usage(db, tenant.id, days=7, now=NOW)
        rows = list_workflow_usage(db, tenant.id)

    assert summary.to_dict() == {
        "status": "success",
        "scenarios_processed": 3,
        "days_synced": 2,
        "records_written": 1,
        "total_credits": 3.0,
        "total_operations": 15,
        "folder_filtered": False,
        "scenarios_paused": False,
    }
    assert [(row.date, row.operations, row.data_transfer, row.credits) for row in rows] == [
        (date(2026, 10, 1), 1, 0, Decimal("0.01")),
        (date(2026, 10, 16), 15, 2048, Decimal("3.00")),
    ]
    # Syncing covers the whole organization unless the tenant picked a folder.
    assert "folderId" not in fake.requested("/scenarios")[0]
    assert fake.requested("/scenarios/101/usage")[0] == {
        "from": "2026-10-11",
        "to": "2026-10-18",
        "interval": "daily",
    }


def test_synced_usage_route_filters_by_date(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        tenant = make_tenant(db, slug="acme")
        other = make_tenant(db)
        db.add_all(
            [
                WorkflowUsageDaily(tenant_id=tenant.id, date=date(2026, 10, 1), operations=4, data_transfer=10, credits=Decimal("0.04")),
                WorkflowUsageDaily(tenant_id=tenant.id, date=date(2026, 10, 16), operations=15, data_transfer=2048, credits=Decimal("3.00")),
                WorkflowUsageDaily(tenant_id=tenant.id, date=date(2026, 10, 17), operations=2, data_transfer=0, credits=Decimal("0.25")),
                WorkflowUsageDaily(tenant_id=other.id, date=date(2026, 10, 16), operations=99, credits=Decimal("9.99")),
            ]
        )
        db.commit()
        tenant_id = tenant.id
        assert [row.date for row in list_workflow_usage(db, tenant_id, to_date=date(2026, 10, 16))] == [
            date(2026, 10, 1),
            date(2026, 10, 16),
        ]

    response = client.get(
        "/api/v1/tenants/acme/integrations/make/usage",
        params={"from": "2026-10-10", "to": "2026-10-31"},
        headers=_admin(),
    )
    assert response.status_code == 200
    assert response.json() == {
        "tenant_id": tenant_id,
        "days": [
            {"date": "2026-10-16", "operations": 15, "data_transfer": 2048, "credits": 3.0},
            {"date": "2026-10-17", "operations": 2, "data_transfer": 0, "credits": 0.25},
        ],
        "total_operations": 17,
        "total_data_transfer": 2048,
        "total_credits": 3.25,
    }

    inverted = client.get(
        "/api/v1/tenants/acme/integrations/make/usage",
        params={"from": "2026-10-20", "to": "2026-10-01"},
        headers=_admin(),
    )
    assert inverted.status_code == 400

def test_sync_route_reports_unresolved_organization(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    FakeMakeApi(user={"authUser": {"id": 1}}, organizations=[]).install(monkeypatch)
    with SessionLocal() as db:
        tenant = make_tenant(db, slug="acme", api_key="make-key")
        with pytest.raises(WorkflowOrganizationUnresolved):
            sync_scenario_usage(db, tenant.id, now=NOW)

    response = client.post("/api/v1/tenants/acme/integrations/make/sync", headers=_admin())
    assert response.status_code == 502
    assert response.json()["code"] == "workflow_organization_unresolved"


def test_sync_route_validates_days(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        make_tenant(db, slug="acme", api_key="make-key")
    response = client.post("/api/v1/tenants/acme/integrations/make/sync?days=91", headers=_admin())
    assert response.status_code == 400
