"""
Idempotent document usage ingestion and the per-day read side.

The raw event insert is the first write of the ingestion transaction. The
unique (tenant_id, idempotency_key) constraint is the only duplicate signal:
a violation rolls back the whole transaction, so the daily aggregate is
never touched for a replayed key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quotaflow.core.errors import UsageValidationError
from quotaflow.core.metrics import record_usage_event
from quotaflow.core.time import to_naive_utc, utcnow
from quotaflow.crud.tenants import resolve_tenant_id
from quotaflow.crud.usage import insert_usage_event, list_daily_aggregates, upsert_daily_aggregate


logger = logging.getLogger(__name__)

STATUS_CREATED = "created"
STATUS_DUPLICATE = "duplicate"

# Page and row counts are stored in 32-bit INTEGER columns.
MAX_USAGE_COUNT = 2**31 - 1


@dataclass(frozen=True)
class IngestResult:
    status: str
    tenant_id: int
    event_id: int | None = None

    @property
    def created(self) -> bool:
        return self.status == STATUS_CREATED


@dataclass
class UsageReport:
    tenant_id: int
    days: list[dict] = field(default_factory=list)
    total_pages_spent: int = 0
    total_rows_used: int = 0
    total_events: int = 0


def _require_count(name: str, value) -> int:
    # bool is an int subclass; reject it along with floats and strings.
    if isinstance(value, bool) or not isinstance(value, int):
        raise UsageValidationError(f"{name} must be an integer")
    if value < 0:
        raise UsageValidationError(f"{name} must be >= 0")
    if value > MAX_USAGE_COUNT:
        raise UsageValidationError(f"{name} must be <= {MAX_USAGE_COUNT}")
    return value


def ingest_document_usage(
    db: Session,
    tenant_id: int | str,
    pages_spent: int,
    rows_used: int,
    idempotency_key: str | None = None,
    occurred_at: datetime | None = None,
    job_id: str | None = None,
    scenario_id: str | None = None,
    scenario_name: str | None = None,
) -> IngestResult:
    pages_spent = _require_count("pages_spent", pages_spent)
    rows_used = _require_count("rows_used", rows_used)
    resolved_id = resolve_tenant_id(db, tenant_id)

    key = (idempotency_key or "").strip() or str(uuid4())
    occurred = to_naive_utc(occurred_at) if occurred_at is not None else utcnow()

    try:
        event = insert_usage_event(
            db,
            tenant_id=resolved_id,
            idempotency_key=key,
            pages_spent=pages_spent,
            rows_used=rows_used,
            occurred_at=occurred,
            job_id=job_id,
            scenario_id=scenario_id,
            scenario_name=scenario_name,
        )
        # Captured before commit expires the instance.
        event_id = event.id
    except IntegrityError:
        db.rollback()
        record_usage_event(STATUS_DUPLICATE)
        logger.info(
            "usage.duplicate",
            extra={"tenant_id": resolved_id, "idempotency_key": key},
        )
        return IngestResult(status=STATUS_DUPLICATE, tenant_id=resolved_id)

    try:
        upsert_daily_aggregate(
            db,
            tenant_id=resolved_id,
            day=occurred.date(),
            pages_spent=pages_spent,
            rows_used=rows_used,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    record_usage_event(STATUS_CREATED)
    logger.info(
        "usage.recorded",
        extra={
            "tenant_id": resolved_id,
            "event_id": event_id,
            "pages_spent": pages_spent,
            "rows_used": rows_used,
            "usage_date": occurred.date(),
        },
    )
    return IngestResult(
        status=STATUS_CREATED,
        tenant_id=resolved_id,
        event_id=event_id,
    )


def query_document_usage(
    db: Session,
    tenant_id: int | str,
    from_date: date | None = None,
    to_date: date | None = None,
) -> UsageReport:
    if from_date and to_date and from_date > to_date:
        raise UsageValidationError("from must be on or before to")
    resolved_id = resolve_tenant_id(db, tenant_id)
    report = UsageReport(tenant_id=resolved_id)
    for row in list_daily_aggregates(db, resolved_id, from_date=from_date, to_date=to_date):
        report.days.append(
            {
                "day": row.date,
                "pages_spent": row.pages_spent,
                "rows_used": row.rows_used,
                "event_count": row.event_count,
            }
        )
        report.total_pages_spent += row.pages_spent
        report.total_rows_used += row.rows_used
        report.total_events += row.event_count
    return report
