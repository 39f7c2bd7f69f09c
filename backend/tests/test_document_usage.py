import os
from datetime import date, datetime

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
import quotaflow.api.usage as usage_api  # noqa: E402
import quotaflow.core.db as db_module  # noqa: E402
import quotaflow.core.quota as quota_module  # noqa: E402
from quotaflow.core.config import settings  # noqa: E402
from quotaflow.core.errors import TenantNotFound, UsageValidationError  # noqa: E402
from quotaflow.core.usage import ingest_document_usage, query_document_usage  # noqa: E402
from quotaflow.models.usage_aggregates import DocumentUsageAggregate  # noqa: E402
from quotaflow.models.usage_events import DocumentUsageEvent  # noqa: E402
from factories import make_tenant  # noqa: E402


client = TestClient(app)


def _setup_db(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'usage.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.engine = engine
    db_module.SessionLocal = SessionLocal
    db_module.Base.metadata.create_all(bind=engine)
    return SessionLocal


def _headers():
    return {"X-API-Key": settings.USAGE_API_KEY}


def _post(payload, headers=None):
    return client.post("/api/v1/usage/document", json=payload, headers=headers or _headers())


def test_duplicate_key_is_counted_once(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        tenant = make_tenant(db, name="T1", slug="t1")
        tenant_id = tenant.id

    payload = {"tenantId": "t1", "pagesSpent": 20, "rowsUsed": 150, "idempotencyKey": "k1"}
    first = _post(payload)
    assert first.status_code == 201
    assert first.json()["status"] == "created"
    assert first.json()["tenantId"] == tenant_id
    assert isinstance(first.json()["eventId"], int)

    second = _post(payload)
    assert second.status_code == 200
    assert second.json() == {"status": "duplicate", "tenantId": tenant_id}

    with SessionLocal() as db:
        assert db.query(DocumentUsageEvent).filter_by(tenant_id=tenant_id).count() == 1
        aggregate = db.query(DocumentUsageAggregate).filter_by(tenant_id=tenant_id).one()
        assert (aggregate.pages_spent, aggregate.rows_used, aggregate.event_count) == (20, 150, 1)


def test_aggregate_matches_sum_of_events(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        tenant = make_tenant(db, name="Acme")
        tenant_id = tenant.id

    samples = [(3, 10, "08:00"), (7, 0, "12:30"), (0, 25, "23:59")]
    for index, (pages, rows, clock) in enumerate(samples):
        response = _post(
            {
                "tenantId": tenant_id,
                "pagesSpent": pages,
                "rowsUsed": rows,
                "idempotencyKey": f"job-{index}",
                "occurredAt": f"2026-10-18T{clock}:00Z",
            }
        )
        assert response.status_code == 201
    _post({"tenantId": tenant_id, "pagesSpent": 4, "rowsUsed": 4, "occurredAt": "2026-10-19T01:00:00Z"})

    with SessionLocal() as db:
        rows = (
            db.query(DocumentUsageAggregate)
            .filter_by(tenant_id=tenant_id)
            .order_by(DocumentUsageAggregate.date)
            .all()
        )
        assert [(row.date, row.pages_spent, row.rows_used, row.event_count) for row in rows] == [
            (date(2026, 10, 18), 10, 35, 3),
            (date(2026, 10, 19), 4, 4, 1),
        ]


def test_missing_key_generates_distinct_events(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        tenant_id = make_tenant(db, name="Acme").id

    payload = {"tenantId": str(tenant_id), "pagesSpent": 1, "rowsUsed": 1}
    assert _post(payload).status_code == 201
    assert _post(payload).status_code == 201

    with SessionLocal() as db:
        keys = [event.idempotency_key for event in db.query(DocumentUsageEvent).all()]
        assert len(keys) == 2
        assert len(set(keys)) == 2


def test_idempotency_header_is_used_when_body_has_no_key(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        make_tenant(db, name="Acme", slug="acme")

    headers = {**_headers(), "Idempotency-Key": "hdr-1"}
    payload = {"tenantId": "acme", "pagesSpent": 2, "rowsUsed": 0}
    assert _post(payload, headers=headers).status_code == 201
    assert _post(payload, headers=headers).json()["status"] == "duplicate"


def test_same_key_for_different_tenants_is_not_a_duplicate(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        make_tenant(db, name="One", slug="one")
        make_tenant(db, name="Two", slug="two")

    assert _post({"tenantId": "one", "pagesSpent": 1, "rowsUsed": 1, "idempotencyKey": "shared"}).status_code == 201
    assert _post({"tenantId": "two", "pagesSpent": 1, "rowsUsed": 1, "idempotencyKey": "shared"}).status_code == 201


@pytest.mark.parametrize(
    "payload",
    [
        {"tenantId": "acme", "pagesSpent": -1, "rowsUsed": 0},
        {"tenantId": "acme", "pagesSpent": 1.5, "rowsUsed": 0},
        {"tenantId": "acme", "pagesSpent": "20", "rowsUsed": 0},
        {"tenantId": "acme", "pagesSpent": 10**20, "rowsUsed": 1},
        {"tenantId": "acme", "pagesSpent": 1, "rowsUsed": 2**31},
        {"tenantId": "acme", "pagesSpent": 1},
        {"pagesSpent": 1, "rowsUsed": 1},
    ],
)
def test_invalid_payloads_are_rejected(tmp_path, payload):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        make_tenant(db, name="Acme", slug="acme")

    response = _post(payload)
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"
    assert response.headers["X-Error-Code"] == "validation_error"
    with SessionLocal() as db:
        assert db.query(DocumentUsageEvent).count() == 0


@pytest.mark.parametrize("tenant_ref", ["missing", "\u00b2", "99999999999999999999", "2147483648"])
def test_unknown_tenant_returns_404(tmp_path, tenant_ref):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        make_tenant(db, name="Acme", slug="acme")

    response = _post({"tenantId": tenant_ref, "pagesSpent": 1, "rowsUsed": 1})
    assert response.status_code == 404
    assert response.json()["code"] == "tenant_not_found"

    query = client.get("/api/v1/usage/document", params={"tenant_id": tenant_ref}, headers=_headers())
    assert query.status_code == 404
    with SessionLocal() as db:
        assert db.query(DocumentUsageEvent).count() == 0


def test_usage_key_is_required(tmp_path):
    _setup_db(tmp_path)
    payload = {"tenantId": "acme", "pagesSpent": 1, "rowsUsed": 1}
    assert _post(payload, headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.post("/api/v1/usage/document", json=payload).status_code == 401


def test_unconfigured_usage_key_is_a_server_error(tmp_path, monkeypatch):
    _setup_db(tmp_path)
    monkeypatch.setattr(settings, "USAGE_API_KEY", None)
    response = _post({"tenantId": "acme", "pagesSpent": 1, "rowsUsed": 1}, headers={"X-API-Key": "anything"})
    assert response.status_code == 500


def test_quota_check_is_scheduled_only_for_new_events(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        tenant_id = make_tenant(db, name="Acme", slug="acme").id

    checked = []
    monkeypatch.setattr(usage_api, "run_quota_check", lambda tenant_id: checked.append(tenant_id))

    payload = {"tenantId": "acme", "pagesSpent": 1, "rowsUsed": 1, "idempotencyKey": "once"}
    _post(payload)
    _post(payload)
    assert checked == [tenant_id]


def test_failed_quota_check_does_not_fail_ingestion(tmp_path, monkeypatch):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        make_tenant(db, name="Acme", slug="acme")

    def _boom(*args, **kwargs):
        raise RuntimeError("quota store unavailable")

    monkeypatch.setattr(quota_module, "check_and_pause_if_needed", _boom)
    response = _post({"tenantId": "acme", "pagesSpent": 5, "rowsUsed": 5})
    assert response.status_code == 201
    with SessionLocal() as db:
        assert db.query(DocumentUsageEvent).count() == 1


def test_query_returns_days_and_totals(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        tenant = make_tenant(db, name="Acme", slug="acme")
        ingest_document_usage(db, tenant.id, 10, 1, occurred_at=datetime(2026, 10, 6, 9))
        ingest_document_usage(db, tenant.id, 5, 2, occurred_at=datetime(2026, 10, 6, 18))
        ingest_document_usage(db, tenant.id, 7, 3, occurred_at=datetime(2026, 10, 8, 9))
        ingest_document_usage(db, tenant.id, 99, 99, occurred_at=datetime(2026, 9, 30, 9))
        tenant_id = tenant.id

    response = client.get(
        "/api/v1/usage/document",
        params={"tenant_id": "acme", "from": "2026-10-01", "to": "2026-10-31"},
        headers=_headers(),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["tenantId"] == tenant_id
    assert body["days"] == [
        {"date": "2026-10-06", "pagesSpent": 15, "rowsUsed": 3, "eventCount": 2},
        {"date": "2026-10-08", "pagesSpent": 7, "rowsUsed": 3, "eventCount": 1},
    ]
    assert body["totals"] == {"pagesSpent": 22, "rowsUsed": 6, "eventCount": 3}


def test_query_rejects_inverted_range(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        tenant = make_tenant(db, name="Acme")
        with pytest.raises(UsageValidationError):
            query_document_usage(db, tenant.id, from_date=date(2026, 10, 9), to_date=date(2026, 10, 1))
        with pytest.raises(TenantNotFound):
            query_document_usage(db, "nobody")


def test_service_rejects_non_integer_counts(tmp_path):
    SessionLocal = _setup_db(tmp_path)
    with SessionLocal() as db:
        tenant = make_tenant(db, name="Acme")
        with pytest.raises(UsageValidationError):
            ingest_document_usage(db, tenant.id, True, 0)
        with pytest.raises(UsageValidationError):
            ingest_document_usage(db, tenant.id, 0, -3)
        with pytest.raises(UsageValidationError):
            ingest_document_usage(db, tenant.id, 2**31, 0)
