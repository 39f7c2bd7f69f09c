"""
Pipeline event metering: per-step cost and token reports sent by the Make.com
scenarios, Azure OCR and OpenAI calls, plus the per-source summary and daily
series read back from the aggregates.

These events carry spend, not quota. They follow the same idempotency
contract as document usage: the raw insert is the first write and a
(tenant_id, idempotency_key) conflict rolls the whole transaction back.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quotaflow.core.config import settings
from quotaflow.core.errors import MissingIdempotencyKey, UsageValidationError
from quotaflow.core.metrics import record_source_event
from quotaflow.core.periods import normalize_to_midnight
from quotaflow.core.time import to_naive_utc, utcnow
from quotaflow.core.usage import MAX_USAGE_COUNT, STATUS_CREATED, STATUS_DUPLICATE, IngestResult
from quotaflow.crud.tenants import resolve_tenant_id
from quotaflow.crud.usage import (
    SourceTotals,
    insert_source_event,
    list_source_aggregates,
    summarize_source_usage,
    upsert_source_aggregate,
)


logger = logging.getLogger(__name__)

SOURCES = ("make", "azure", "openai")
DOCUMENT_TYPES = ("bank", "vat")
FILE_TYPES = ("pdf", "excel")
STEPS = ("split", "ocr", "classify", "route", "finalize")

DEFAULT_WINDOW_DAYS = 30
MAX_WINDOW_DAYS = 366

_PERIOD_PATTERN = re.compile(r"([0-9]{1,4})d?")
_COST_PLACES = Decimal("0.0001")


@dataclass(frozen=True)
class SourceEvent:
    source: str
    document_type: str | None = None
    file_type: str | None = None
    step: str | None = None
    chunk_start: int | None = None
    chunk_end: int | None = None
    bank_code: str | None = None
    cost: Decimal | None = None
    tokens: int | None = None
    metadata: dict[str, Any] | None = None
    occurred_at: datetime | None = None


@dataclass
class UsageSummary:
    tenant_id: int
    days: int
    from_at: datetime
    to_at: datetime
    currency: str
    sources: list[SourceTotals] = field(default_factory=list)

    @property
    def total_events(self) -> int:
        return sum(item.event_count for item in self.sources)

    @property
    def total_cost(self) -> Decimal:
        return sum((item.total_cost for item in self.sources), Decimal("0"))


def format_cost(value: Decimal) -> str:
    return str(Decimal(value).quantize(_COST_PLACES))


def _check_choice(name: str, value: str | None, choices: tuple[str, ...]) -> None:
    if value is not None and value not in choices:
        raise UsageValidationError(f"{name} must be one of {', '.join(choices)}")


def _check_count(name: str, value: int | None) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise UsageValidationError(f"{name} must be an integer")
    if not 0 <= value <= MAX_USAGE_COUNT:
        raise UsageValidationError(f"{name} must be between 0 and {MAX_USAGE_COUNT}")


def validate_source_event(event: SourceEvent) -> None:
    if event.source not in SOURCES:
        raise UsageValidationError(f"source must be one of {', '.join(SOURCES)}")
    _check_choice("documentType", event.document_type, DOCUMENT_TYPES)
    _check_choice("fileType", event.file_type, FILE_TYPES)
    _check_choice("step", event.step, STEPS)
    _check_count("tokens", event.tokens)
    _check_count("chunkStart", event.chunk_start)
    _check_count("chunkEnd", event.chunk_end)
    if event.cost is not None and event.cost < 0:
        raise UsageValidationError("cost must be >= 0")


def ingest_source_event(
    db: Session,
    tenant_ref: int | str,
    event: SourceEvent,
    idempotency_key: str | None,
) -> IngestResult:
    key = (idempotency_key or "").strip()
    if not key:
        raise MissingIdempotencyKey()
    validate_source_event(event)
    tenant_id = resolve_tenant_id(db, tenant_ref)
    occurred = to_naive_utc(event.occurred_at) if event.occurred_at is not None else utcnow()
    cost = Decimal(event.cost).quantize(_COST_PLACES) if event.cost is not None else None

    try:
        row = insert_source_event(
            db,
            tenant_id=tenant_id,
            source=event.source,
            idempotency_key=key,
            occurred_at=occurred,
            document_type=event.document_type,
            file_type=event.file_type,
            step=event.step,
            chunk_start=event.chunk_start,
            chunk_end=event.chunk_end,
            bank_code=event.bank_code,
            cost=cost,
            tokens=event.tokens,
            metadata=event.metadata,
        )
        event_id = row.id
    except IntegrityError:
        db.rollback()
        record_source_event(event.source, STATUS_DUPLICATE)
        logger.info(
            "events.duplicate",
            extra={"tenant_id": tenant_id, "source": event.source, "idempotency_key": key},
        )
        return IngestResult(status=STATUS_DUPLICATE, tenant_id=tenant_id)

    try:
        upsert_source_aggregate(
            db,
            tenant_id=tenant_id,
            day=occurred.date(),
            source=event.source,
            document_type=event.document_type,
            file_type=event.file_type,
            step=event.step,
            bank_code=event.bank_code,
            cost=cost,
            tokens=event.tokens,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    record_source_event(event.source, STATUS_CREATED)
    logger.info(
        "events.recorded",
        extra={
            "tenant_id": tenant_id,
            "event_id": event_id,
            "source": event.source,
            "step": event.step,
            "cost": cost,
            "tokens": event.tokens,
        },
    )
    return IngestResult(status=STATUS_CREATED, tenant_id=tenant_id, event_id=event_id)


def parse_period(value: str | None) -> int:
    """Turn a ``30d`` style window into a day count."""
    if value is None or not value.strip():
        return DEFAULT_WINDOW_DAYS
    match = _PERIOD_PATTERN.fullmatch(value.strip().lower())
    if match is None:
        raise UsageValidationError("period must look like 30d")
    return _check_window(int(match.group(1)))


def _check_window(days: int) -> int:
    if not 1 <= days <= MAX_WINDOW_DAYS:
        raise UsageValidationError(f"window must be between 1 and {MAX_WINDOW_DAYS} days")
    return days


def window_start(days: int, now: datetime | None = None) -> datetime:
    return normalize_to_midnight((now or utcnow()) - timedelta(days=days))


def summarize_usage(
    db: Session,
    tenant_ref: int | str,
    days: int = DEFAULT_WINDOW_DAYS,
    now: datetime | None = None,
) -> UsageSummary:
    days = _check_window(days)
    tenant_id = resolve_tenant_id(db, tenant_ref)
    now = now or utcnow()
    start = window_start(days, now)
    return UsageSummary(
        tenant_id=tenant_id,
        days=days,
        from_at=start,
        to_at=now,
        currency=settings.USAGE_CURRENCY,
        sources=summarize_source_usage(db, tenant_id, start.date()),
    )


def usage_timeseries(
    db: Session,
    tenant_ref: int | str,
    days: int = DEFAULT_WINDOW_DAYS,
    now: datetime | None = None,
) -> tuple[int, list[dict[str, Any]]]:
    """Daily events and cost per source, oldest day first; days without events are omitted."""
    days = _check_window(days)
    tenant_id = resolve_tenant_id(db, tenant_ref)
    start = window_start(days, now)

    by_day: dict[date, dict[str, Any]] = {}
    for row in list_source_aggregates(db, tenant_id, start.date()):
        point = by_day.get(row.date)
        if point is None:
            point = {"date": row.date}
            for bucket in (*SOURCES, "total"):
                point[bucket] = {"events": 0, "cost": Decimal("0")}
            by_day[row.date] = point
        cost = Decimal(str(row.total_cost or 0))
        if row.source in SOURCES:
            point[row.source]["events"] += row.event_count
            point[row.source]["cost"] += cost
        point["total"]["events"] += row.event_count
        point["total"]["cost"] += cost
    return tenant_id, [by_day[day] for day in sorted(by_day)]
