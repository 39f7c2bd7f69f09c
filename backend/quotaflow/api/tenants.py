from fastapi import APIRouter, Depends, HTTPException, status

from quotaflow.api.dependencies import get_tenant_from_path, require_admin_api_key
from quotaflow.billing.catalog import get_plan_limits
from quotaflow.core.db import get_db
from quotaflow.crud.tenants import create_tenant, update_workflow_credentials
from quotaflow.schemas.tenants import TenantCreate, TenantRead, WorkflowCredentialsUpdate


router = APIRouter(prefix="/tenants", tags=["tenants"], dependencies=[Depends(require_admin_api_key)])


@router.post("", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
def register_tenant(payload: TenantCreate, db=Depends(get_db)):
    if payload.plan_key and get_plan_limits(payload.plan_key) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported plan key")
    try:
        tenant = create_tenant(db, payload.name, slug=payload.slug, plan_key=payload.plan_key)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return TenantRead.from_tenant(tenant)


@router.get("/{tenant_ref}", response_model=TenantRead)
def read_tenant(tenant=Depends(get_tenant_from_path)):
    return TenantRead.from_tenant(tenant)


@router.patch("/{tenant_ref}/workflow-credentials", response_model=TenantRead)
def update_credentials(
    payload: WorkflowCredentialsUpdate,
    tenant=Depends(get_tenant_from_path),
    db=Depends(get_db),
):
    try:
        tenant = update_workflow_credentials(
            db,
            tenant,
            api_key=payload.api_key,
            org_id=payload.org_id,
            folder_id=payload.folder_id,
            clear_api_key=payload.clear_api_key,
        )
    except ValueError as exc:
        # Raised by the secret store when no encryption key is configured.
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return TenantRead.from_tenant(tenant)
