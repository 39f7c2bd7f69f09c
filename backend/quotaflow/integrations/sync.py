from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

import requests
from sqlalchemy.orm import Session

from quotaflow.core.config import settings
from quotaflow.core.errors import TenantNotFound, WorkflowOrganizationUnresolved, WorkflowPlatformError
from quotaflow.core.quota import check_and_pause_if_needed
from quotaflow.core.time import utcnow
from quotaflow.crud.tenants import get_tenant_by_id
from quotaflow.crud.usage import WorkflowDay, replace_workflow_usage
from quotaflow.integrations.make import (
    CALL_ERRORS,
    MakeApiError,
    client_for_tenant,
    platform_error,
    resolve_organization_id,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncSummary:
    scenarios_processed: int
    days_synced: int
    records_written: int
    total_credits: float
    total_operations: int
    folder_filtered: bool
    scenarios_paused: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "success",
            "scenarios_processed": self.scenarios_processed,
            "days_synced": self.days_synced,
            "records_written": self.records_written,
            "total_credits": self.total_credits,
            "total_operations": self.total_operations,
            "folder_filtered": self.folder_filtered,
            "scenarios_paused": self.scenarios_paused,
        }


def parse_usage_date(value: Any) -> date | None:
    """Parse a usage data point date; Make.com reports ``DD-MM-YYYY``."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    parts = text.split("-")
    if len(parts) == 3 and len(parts[0]) <= 2 and parts[2][:4].isdigit():
        try:
            return date(int(parts[2][:4]), int(parts[1]), int(parts[0]))
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def sync_scenario_usage(
    db: Session,
    tenant_id: int,
    *,
    days: int | None = None,
    now: datetime | None = None,
) -> SyncSummary:
    """Pull daily scenario usage from Make.com into ``workflow_usage_daily``.

    Unlike the background paths this is operator-initiated, so missing
    credentials or an unresolvable organization are raised to the caller.
    Individual scenario fetch failures are logged and skipped.
    """
    tenant = get_tenant_by_id(db, tenant_id)
    if tenant is None:
        raise TenantNotFound(tenant_id)
    client = client_for_tenant(tenant, required=True)

    lookup = resolve_organization_id(client, tenant.make_org_id)
    if not lookup.found:
        raise WorkflowOrganizationUnresolved()

    # Only narrow to a folder the tenant chose; syncing covers the whole org otherwise.
    folder_id = tenant.make_folder_id
    try:
        scenarios = client.list_scenarios(lookup.org_id, folder_id=folder_id)
    except MakeApiError as exc:
        raise platform_error(exc) from exc
    except (requests.RequestException, ValueError) as exc:
        raise WorkflowPlatformError(f"Sync failed: {exc}") from exc

    to_day = (now or utcnow()).date()
    from_day = to_day - timedelta(days=days or settings.MAKE_SYNC_DAYS)
    logger.info(
        "make.sync_started",
        extra={
            "tenant_id": tenant_id,
            "org_id": lookup.org_id,
            "org_source": lookup.source,
            "folder_id": folder_id,
            "scenario_count": len(scenarios),
            "from_date": from_day,
            "to_date": to_day,
        },
    )

    usage_by_date: dict[date, WorkflowDay] = {}
    for scenario in scenarios:
        try:
            history = client.get_scenario_usage(scenario.id, from_day, to_day)
        except CALL_ERRORS as exc:
            logger.warning(
                "make.sync_scenario_failed",
                extra={"tenant_id": tenant_id, "scenario_id": scenario.id, "error": str(exc)},
            )
            continue
        if not isinstance(history, list):
            logger.warning(
                "make.sync_unexpected_history",
                extra={"tenant_id": tenant_id, "scenario_id": scenario.id},
            )
            continue
        for point in history:
            if not isinstance(point, dict):
                continue
            day = parse_usage_date(point.get("date"))
            if day is None:
                continue
            stats = usage_by_date.setdefault(day, WorkflowDay())
            stats.operations += _as_int(point.get("operations"))
            stats.data_transfer += _as_int(point.get("dataTransfer"))
            stats.centicredits += _as_int(point.get("centicredits"))

    records_written = replace_workflow_usage(db, tenant.id, usage_by_date)
    total_centicredits = sum(stats.centicredits for stats in usage_by_date.values())
    total_operations = sum(stats.operations for stats in usage_by_date.values())
    newly_paused = check_and_pause_if_needed(db, tenant.id, now=now, trigger="sync")

    logger.info(
        "make.sync_completed",
        extra={
            "tenant_id": tenant_id,
            "scenario_count": len(scenarios),
            "days_synced": len(usage_by_date),
            "records_written": records_written,
            "total_operations": total_operations,
        },
    )
    return SyncSummary(
        scenarios_processed=len(scenarios),
        days_synced=len(usage_by_date),
        records_written=records_written,
        total_credits=float(Decimal(total_centicredits) / Decimal(100)),
        total_operations=total_operations,
        folder_filtered=bool(folder_id),
        scenarios_paused=newly_paused,
    )
