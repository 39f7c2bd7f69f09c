from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from quotaflow.core.time import utcnow
from quotaflow.models.source_usage import SourceUsageAggregate, SourceUsageEvent
from quotaflow.models.usage_aggregates import DocumentUsageAggregate
from quotaflow.models.usage_events import DocumentUsageEvent
from quotaflow.models.workflow_usage import WorkflowUsageDaily


@dataclass(frozen=True)
class UsageTotals:
    pages: int = 0
    rows: int = 0


@dataclass
class WorkflowDay:
    operations: int = 0
    data_transfer: int = 0
    centicredits: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.operations or self.data_transfer or self.centicredits)


def insert_usage_event(
    db: Session,
    *,
    tenant_id: int,
    idempotency_key: str,
    pages_spent: int,
    rows_used: int,
    occurred_at: datetime,
    job_id: str | None = None,
    scenario_id: str | None = None,
    scenario_name: str | None = None,
) -> DocumentUsageEvent:
    """Stage the raw event and flush it.

    The flush raises IntegrityError when (tenant_id, idempotency_key) already
    exists; callers treat that as the duplicate signal.
    """
    event = DocumentUsageEvent(
        tenant_id=tenant_id,
        idempotency_key=idempotency_key,
        pages_spent=pages_spent,
        rows_used=rows_used,
        job_id=job_id,
        scenario_id=scenario_id,
        scenario_name=scenario_name,
        occurred_at=occurred_at,
        created_at=utcnow(),
    )
    db.add(event)
    db.flush()
    return event


def _dialect_name(db: Session) -> str:
    bind = db.get_bind()
    return str(getattr(getattr(bind, "dialect", None), "name", ""))


def _dialect_insert(db: Session):
    """Return the dialect's ON CONFLICT capable insert(), or None."""
    dialect_name = _dialect_name(db)
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as _insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as _insert
    else:
        return None
    return _insert


def upsert_daily_aggregate(
    db: Session,
    *,
    tenant_id: int,
    day: date,
    pages_spent: int,
    rows_used: int,
) -> None:
    """Add one event's values to the (tenant, day) aggregate without a read."""
    table = DocumentUsageAggregate.__table__
    values: dict[str, Any] = {
        "tenant_id": tenant_id,
        "date": day,
        "pages_spent": pages_spent,
        "rows_used": rows_used,
        "event_count": 1,
        "updated_at": utcnow(),
    }
    insert = _dialect_insert(db)
    if insert is not None:
        stmt = insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "date"],
            set_={
                "pages_spent": table.c.pages_spent + stmt.excluded.pages_spent,
                "rows_used": table.c.rows_used + stmt.excluded.rows_used,
                "event_count": table.c.event_count + stmt.excluded.event_count,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        db.execute(stmt)
        return

    updated = (
        db.query(DocumentUsageAggregate)
        .filter(
            DocumentUsageAggregate.tenant_id == tenant_id,
            DocumentUsageAggregate.date == day,
        )
        .update(
            {
                DocumentUsageAggregate.pages_spent: DocumentUsageAggregate.pages_spent + pages_spent,
                DocumentUsageAggregate.rows_used: DocumentUsageAggregate.rows_used + rows_used,
                DocumentUsageAggregate.event_count: DocumentUsageAggregate.event_count + 1,
                DocumentUsageAggregate.updated_at: values["updated_at"],
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.add(DocumentUsageAggregate(**values))
        db.flush()


def sum_usage_since(db: Session, tenant_id: int, period_start: datetime) -> UsageTotals:
    pages, rows = (
        db.query(
            func.coalesce(func.sum(DocumentUsageAggregate.pages_spent), 0),
            func.coalesce(func.sum(DocumentUsageAggregate.rows_used), 0),
        )
        .filter(
            DocumentUsageAggregate.tenant_id == tenant_id,
            DocumentUsageAggregate.date >= period_start.date(),
        )
        .one()
    )
    return UsageTotals(pages=int(pages or 0), rows=int(rows or 0))


def list_daily_aggregates(
    db: Session,
    tenant_id: int,
    *,
    from_date: date | None = None,
    to_date: date | None = None,
) -> list[DocumentUsageAggregate]:
    query = db.query(DocumentUsageAggregate).filter(DocumentUsageAggregate.tenant_id == tenant_id)
    if from_date is not None:
        query = query.filter(DocumentUsageAggregate.date >= from_date)
    if to_date is not None:
        query = query.filter(DocumentUsageAggregate.date <= to_date)
    return query.order_by(DocumentUsageAggregate.date.asc()).all()


def delete_all_usage(db: Session, tenant_id: int) -> tuple[int, int]:
    events_deleted = (
        db.query(DocumentUsageEvent)
        .filter(DocumentUsageEvent.tenant_id == tenant_id)
        .delete(synchronize_session=False)
    )
    aggregates_deleted = (
        db.query(DocumentUsageAggregate)
        .filter(DocumentUsageAggregate.tenant_id == tenant_id)
        .delete(synchronize_session=False)
    )
    return events_deleted, aggregates_deleted


SOURCE_DIMENSIONS = ("document_type", "file_type", "step", "bank_code")


@dataclass(frozen=True)
class SourceTotals:
    source: str
    event_count: int = 0
    total_cost: Decimal = Decimal("0")
    total_tokens: int = 0


def insert_source_event(
    db: Session,
    *,
    tenant_id: int,
    source: str,
    idempotency_key: str,
    occurred_at: datetime,
    document_type: str | None = None,
    file_type: str | None = None,
    step: str | None = None,
    chunk_start: int | None = None,
    chunk_end: int | None = None,
    bank_code: str | None = None,
    cost: Decimal | None = None,
    tokens: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> SourceUsageEvent:
    """Stage a pipeline event and flush it; IntegrityError marks a replayed key."""
    event = SourceUsageEvent(
        tenant_id=tenant_id,
        source=source,
        idempotency_key=idempotency_key,
        document_type=document_type,
        file_type=file_type,
        step=step,
        chunk_start=chunk_start,
        chunk_end=chunk_end,
        bank_code=bank_code,
        cost=cost,
        tokens=tokens,
        event_metadata=metadata,
        occurred_at=occurred_at,
        created_at=utcnow(),
    )
    db.add(event)
    db.flush()
    return event


def upsert_source_aggregate(
    db: Session,
    *,
    tenant_id: int,
    day: date,
    source: str,
    document_type: str | None = None,
    file_type: str | None = None,
    step: str | None = None,
    bank_code: str | None = None,
    cost: Decimal | None = None,
    tokens: int | None = None,
) -> None:
    table = SourceUsageAggregate.__table__
    values: dict[str, Any] = {
        "tenant_id": tenant_id,
        "date": day,
        "source": source,
        "document_type": document_type or "",
        "file_type": file_type or "",
        "step": step or "",
        "bank_code": bank_code or "",
        "event_count": 1,
        "total_cost": cost or Decimal("0"),
        "total_tokens": tokens or 0,
        "updated_at": utcnow(),
    }
    key_columns = ("tenant_id", "date", "source", *SOURCE_DIMENSIONS)
    insert = _dialect_insert(db)
    if insert is not None:
        stmt = insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(key_columns),
            set_={
                "event_count": table.c.event_count + stmt.excluded.event_count,
                "total_cost": table.c.total_cost + stmt.excluded.total_cost,
                "total_tokens": table.c.total_tokens + stmt.excluded.total_tokens,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        db.execute(stmt)
        return

    updated = (
        db.query(SourceUsageAggregate)
        .filter(*(getattr(SourceUsageAggregate, key) == values[key] for key in key_columns))
        .update(
            {
                SourceUsageAggregate.event_count: SourceUsageAggregate.event_count + 1,
                SourceUsageAggregate.total_cost: SourceUsageAggregate.total_cost + values["total_cost"],
                SourceUsageAggregate.total_tokens: SourceUsageAggregate.total_tokens + values["total_tokens"],
                SourceUsageAggregate.updated_at: values["updated_at"],
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.add(SourceUsageAggregate(**values))
        db.flush()


def summarize_source_usage(db: Session, tenant_id: int, since: date) -> list[SourceTotals]:
    rows = (
        db.query(
            SourceUsageAggregate.source,
            func.coalesce(func.sum(SourceUsageAggregate.event_count), 0),
            func.coalesce(func.sum(SourceUsageAggregate.total_cost), 0),
            func.coalesce(func.sum(SourceUsageAggregate.total_tokens), 0),
        )
        .filter(
            SourceUsageAggregate.tenant_id == tenant_id,
            SourceUsageAggregate.date >= since,
        )
        .group_by(SourceUsageAggregate.source)
        .order_by(SourceUsageAggregate.source.asc())
        .all()
    )
    return [
        SourceTotals(
            source=source,
            event_count=int(events or 0),
            total_cost=Decimal(str(cost or 0)),
            total_tokens=int(tokens or 0),
        )
        for source, events, cost, tokens in rows
    ]


def list_source_aggregates(db: Session, tenant_id: int, since: date) -> list[SourceUsageAggregate]:
    return (
        db.query(SourceUsageAggregate)
        .filter(
            SourceUsageAggregate.tenant_id == tenant_id,
            SourceUsageAggregate.date >= since,
        )
        .order_by(SourceUsageAggregate.date.asc(), SourceUsageAggregate.source.asc())
        .all()
    )


def replace_workflow_usage(
    db: Session,
    tenant_id: int,
    usage_by_date: dict[date, WorkflowDay],
) -> int:
    """Overwrite synced workflow usage from the earliest day in ``usage_by_date`` on."""
    if not usage_by_date:
        return 0
    min_date = min(usage_by_date)
    written = 0
    try:
        (
            db.query(WorkflowUsageDaily)
            .filter(
                WorkflowUsageDaily.tenant_id == tenant_id,
                WorkflowUsageDaily.date >= min_date,
            )
            .delete(synchronize_session=False)
        )
        now = utcnow()
        for day in sorted(usage_by_date):
            stats = usage_by_date[day]
            if stats.is_empty:
                continue
            db.add(
                WorkflowUsageDaily(
                    tenant_id=tenant_id,
                    date=day,
                    operations=stats.operations,
                    data_transfer=stats.data_transfer,
                    credits=Decimal(stats.centicredits) / Decimal(100),
                    synced_at=now,
                )
            )
            written += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    return written


def list_workflow_usage(
    db: Session,
    tenant_id: int,
    *,
    from_date: date | None = None,
    to_date: date | None = None,
) -> list[WorkflowUsageDaily]:
    query = db.query(WorkflowUsageDaily).filter(WorkflowUsageDaily.tenant_id == tenant_id)
    if from_date is not None:
        query = query.filter(WorkflowUsageDaily.date >= from_date)
    if to_date is not None:
        query = query.filter(WorkflowUsageDaily.date <= to_date)
    return query.order_by(WorkflowUsageDaily.date.asc()).all()
