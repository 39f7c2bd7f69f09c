from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Response, status

from quotaflow.api.dependencies import require_usage_api_key
from quotaflow.core.db import get_db
from quotaflow.core.events import (
    DEFAULT_WINDOW_DAYS,
    MAX_WINDOW_DAYS,
    SOURCES,
    format_cost,
    parse_period,
    summarize_usage,
    usage_timeseries,
)
from quotaflow.core.quota import run_quota_check
from quotaflow.core.usage import ingest_document_usage, query_document_usage
from quotaflow.schemas.events import (
    SeriesBucket,
    SourceTotalsRead,
    SummaryTotalsRead,
    TimeseriesPoint,
    TimeseriesRead,
    UsageSummaryRead,
)
from quotaflow.schemas.usage import (
    DocumentUsageCreate,
    DocumentUsageDay,
    DocumentUsageReport,
    DocumentUsageResult,
    DocumentUsageTotals,
)


router = APIRouter(prefix="/usage", tags=["usage"], dependencies=[Depends(require_usage_api_key)])


@router.post(
    "/document",
    response_model=DocumentUsageResult,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def record_document_usage(
    payload: DocumentUsageCreate,
    background_tasks: BackgroundTasks,
    response: Response,
    db=Depends(get_db),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    result = ingest_document_usage(
        db,
        payload.tenant_id,
        payload.pages_spent,
        payload.rows_used,
        idempotency_key=payload.idempotency_key or idempotency_key,
        occurred_at=payload.occurred_at,
        job_id=payload.job_id,
        scenario_id=payload.scenario_id,
        scenario_name=payload.scenario_name,
    )
    if result.created:
        # Runs after the response is sent; the check owns its own session.
        background_tasks.add_task(run_quota_check, result.tenant_id)
    else:
        response.status_code = status.HTTP_200_OK
    return DocumentUsageResult(
        status=result.status,
        event_id=result.event_id,
        tenant_id=result.tenant_id,
    )


@router.get("/document", response_model=DocumentUsageReport)
def read_document_usage(
    tenant_id: str = Query(..., min_length=1),
    from_date: Optional[date] = Query(None, alias="from"),
    to_date: Optional[date] = Query(None, alias="to"),
    db=Depends(get_db),
):
    report = query_document_usage(db, tenant_id, from_date=from_date, to_date=to_date)
    return DocumentUsageReport(
        tenant_id=report.tenant_id,
        days=[DocumentUsageDay(**day) for day in report.days],
        totals=DocumentUsageTotals(
            pages_spent=report.total_pages_spent,
            rows_used=report.total_rows_used,
            event_count=report.total_events,
        ),
    )


@router.get("/summary", response_model=UsageSummaryRead)
def read_usage_summary(
    tenant_id: str = Query(..., min_length=1),
    period: Optional[str] = Query(None, max_length=8),
    db=Depends(get_db),
):
    summary = summarize_usage(db, tenant_id, days=parse_period(period))
    return UsageSummaryRead(
        tenant_id=summary.tenant_id,
        period=f"{summary.days}d",
        from_at=summary.from_at,
        to_at=summary.to_at,
        summary={
            item.source: SourceTotalsRead(
                event_count=item.event_count,
                total_cost=format_cost(item.total_cost),
                total_tokens=item.total_tokens,
            )
            for item in summary.sources
        },
        totals=SummaryTotalsRead(
            events=summary.total_events,
            cost=format_cost(summary.total_cost),
            currency=summary.currency,
        ),
    )


def _series_point(point: dict) -> TimeseriesPoint:
    buckets = {
        name: SeriesBucket(events=point[name]["events"], cost=round(float(point[name]["cost"]), 4))
        for name in (*SOURCES, "total")
    }
    return TimeseriesPoint(day=point["date"], **buckets)


@router.get("/timeseries", response_model=TimeseriesRead)
def read_usage_timeseries(
    tenant_id: str = Query(..., min_length=1),
    days: int = Query(DEFAULT_WINDOW_DAYS, ge=1, le=MAX_WINDOW_DAYS),
    db=Depends(get_db),
):
    resolved_id, points = usage_timeseries(db, tenant_id, days=days)
    return TimeseriesRead(
        tenant_id=resolved_id,
        days=days,
        data=[_series_point(point) for point in points],
    )
