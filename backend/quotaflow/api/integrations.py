from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from quotaflow.api.dependencies import get_tenant_from_path, require_admin_api_key
from quotaflow.core.db import get_db
from quotaflow.core.errors import UsageValidationError
from quotaflow.crud.usage import list_workflow_usage
from quotaflow.integrations.make import check_connection, client_for_tenant, list_tenant_scenarios
from quotaflow.integrations.sync import sync_scenario_usage
from quotaflow.schemas.integrations import (
    MakeConnectionRead,
    MakeSyncRead,
    ScenarioListRead,
    WorkflowUsageDayRead,
    WorkflowUsageRead,
)


router = APIRouter(
    prefix="/tenants/{tenant_ref}/integrations/make",
    tags=["integrations"],
    dependencies=[Depends(require_admin_api_key)],
)


@router.get("/scenarios", response_model=ScenarioListRead)
def list_scenarios(tenant=Depends(get_tenant_from_path)):
    client = client_for_tenant(tenant, required=True)
    scenarios = list_tenant_scenarios(tenant, client=client)
    return {"scenarios": [scenario.to_dict() for scenario in scenarios], "count": len(scenarios)}


@router.get("/check", response_model=MakeConnectionRead)
def check_make_connection(tenant=Depends(get_tenant_from_path)):
    return check_connection(tenant)


@router.post("/sync", response_model=MakeSyncRead)
def sync_make_usage(
    days: Optional[int] = Query(None, ge=1, le=90),
    tenant=Depends(get_tenant_from_path),
    db=Depends(get_db),
):
    return sync_scenario_usage(db, tenant.id, days=days).to_dict()


@router.get("/usage", response_model=WorkflowUsageRead)
def read_synced_usage(
    from_date: Optional[date] = Query(None, alias="from"),
    to_date: Optional[date] = Query(None, alias="to"),
    tenant=Depends(get_tenant_from_path),
    db=Depends(get_db),
):
    if from_date and to_date and from_date > to_date:
        raise UsageValidationError("from must be on or before to")
    rows = list_workflow_usage(db, tenant.id, from_date=from_date, to_date=to_date)
    days = [
        WorkflowUsageDayRead(
            day=row.date,
            operations=row.operations,
            data_transfer=row.data_transfer,
            credits=float(row.credits),
        )
        for row in rows
    ]
    return WorkflowUsageRead(
        tenant_id=tenant.id,
        days=days,
        total_operations=sum(day.operations for day in days),
        total_data_transfer=sum(day.data_transfer for day in days),
        total_credits=round(sum(float(row.credits) for row in rows), 2),
    )
