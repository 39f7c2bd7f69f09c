from fastapi import APIRouter, Depends

from quotaflow.api.dependencies import get_tenant_from_path, require_admin_api_key
from quotaflow.core.db import get_db
from quotaflow.core.metrics import record_quota_transition
from quotaflow.core.quota import get_quota_status, reset_tenant_usage
from quotaflow.integrations.make import pause_all_scenarios, resume_all_scenarios
from quotaflow.schemas.quota import QuotaStatusRead, ScenarioActionRead, UsageResetRead


router = APIRouter(prefix="/tenants", tags=["quota"], dependencies=[Depends(require_admin_api_key)])


@router.get("/{tenant_ref}/quota", response_model=QuotaStatusRead)
def read_quota(tenant=Depends(get_tenant_from_path), db=Depends(get_db)):
    return get_quota_status(db, tenant.id)


@router.post("/{tenant_ref}/scenarios/pause", response_model=ScenarioActionRead)
def pause_scenarios(tenant=Depends(get_tenant_from_path), db=Depends(get_db)):
    result = pause_all_scenarios(db, tenant.id)
    if result.succeeded:
        record_quota_transition("pause", "operator")
    return result.to_dict()


@router.post("/{tenant_ref}/scenarios/resume", response_model=ScenarioActionRead)
def resume_scenarios(tenant=Depends(get_tenant_from_path), db=Depends(get_db)):
    result = resume_all_scenarios(db, tenant.id)
    if result.succeeded:
        record_quota_transition("resume", "operator")
    return result.to_dict()


@router.post("/{tenant_ref}/usage/reset", response_model=UsageResetRead)
def reset_usage(tenant=Depends(get_tenant_from_path), db=Depends(get_db)):
    summary = reset_tenant_usage(db, tenant.id)
    return UsageResetRead(
        tenant_id=summary.tenant_id,
        events_deleted=summary.events_deleted,
        aggregates_deleted=summary.aggregates_deleted,
        last_reset_at=summary.last_reset_at,
        resume=summary.resume.to_dict() if summary.resume else None,
    )
