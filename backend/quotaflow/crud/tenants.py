from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quotaflow.billing.catalog import (
    DEFAULT_PAGES_LIMIT,
    DEFAULT_ROWS_LIMIT,
    addon_field,
    get_plan_limits,
    normalize_plan_key,
)
from quotaflow.core.config import settings
from quotaflow.core.crypto import encrypt_secret
from quotaflow.core.errors import TenantNotFound
from quotaflow.models.tenants import Tenant


# Ids are plain ASCII digits; str.isdigit also accepts superscripts.
_TENANT_ID_PATTERN = re.compile(r"[0-9]+")

# Largest value a 32-bit INTEGER primary key holds.
MAX_TENANT_ID = 2**31 - 1

_LIMIT_FIELDS = {
    "pages_limit",
    "rows_limit",
    "addon_pages_limit",
    "addon_rows_limit",
    "scenarios_paused",
    "last_reset_at",
}


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower())
    slug = re.sub(r"-{2,}", "-", slug).strip("-") or "tenant"
    # Purely numeric refs resolve as ids, so slugs never are.
    if _TENANT_ID_PATTERN.fullmatch(slug):
        slug = f"tenant-{slug}"
    return slug


def ensure_unique_slug(db: Session, base_slug: str) -> str:
    slug = base_slug
    suffix = 2
    while db.query(Tenant.id).filter(Tenant.slug == slug).first() is not None:
        slug = f"{base_slug}-{suffix}"
        suffix += 1
    return slug


@dataclass
class TenantLimits:
    tenant_id: int
    pages_limit: int
    rows_limit: int
    addon_pages_limit: int
    addon_rows_limit: int
    scenarios_paused: bool
    last_reset_at: datetime | None

    @property
    def total_pages_limit(self) -> int:
        return self.pages_limit + self.addon_pages_limit

    @property
    def total_rows_limit(self) -> int:
        return self.rows_limit + self.addon_rows_limit


def create_tenant(
    db: Session,
    name: str,
    slug: str | None = None,
    plan_key: str | None = None,
) -> Tenant:
    plan_key = normalize_plan_key(plan_key) or settings.DEFAULT_PLAN_KEY
    limits = get_plan_limits(plan_key)
    if limits is None:
        raise ValueError(f"Unknown plan key: {plan_key}")
    if slug:
        unique_slug = slugify(slug)
        if get_tenant_by_slug(db, unique_slug) is not None:
            raise ValueError("Tenant slug already exists.")
    else:
        unique_slug = ensure_unique_slug(db, slugify(name))
    tenant = Tenant(
        name=name,
        slug=unique_slug,
        plan_key=plan_key,
        pages_limit=limits["pages"],
        rows_limit=limits["rows"],
        addon_pages_limit=0,
        addon_rows_limit=0,
        scenarios_paused=False,
    )
    db.add(tenant)
    try:
        db.commit()
        db.refresh(tenant)
        return tenant
    except IntegrityError as exc:
        db.rollback()
        raise ValueError("Tenant slug already exists.") from exc


def get_tenant_by_id(db: Session, tenant_id: int) -> Tenant | None:
    return db.query(Tenant).filter(Tenant.id == tenant_id).first()


def get_tenant_by_slug(db: Session, slug: str) -> Tenant | None:
    return db.query(Tenant).filter(Tenant.slug == slug).first()


def _parse_tenant_ref(tenant_ref: str | int) -> tuple[int | None, str]:
    """Split a reference into (numeric id, slug); exactly one side is used."""
    value = str(tenant_ref).strip() if tenant_ref is not None else ""
    if not value:
        raise TenantNotFound(tenant_ref)
    if not _TENANT_ID_PATTERN.fullmatch(value):
        return None, value
    tenant_id = int(value)
    # No row can carry an id the column cannot store; skip the query.
    if tenant_id > MAX_TENANT_ID:
        raise TenantNotFound(tenant_ref)
    return tenant_id, value


def resolve_tenant(db: Session, tenant_ref: str | int) -> Tenant:
    tenant_id, slug = _parse_tenant_ref(tenant_ref)
    tenant = get_tenant_by_id(db, tenant_id) if tenant_id is not None else get_tenant_by_slug(db, slug)
    if tenant is None:
        raise TenantNotFound(tenant_ref)
    return tenant


def resolve_tenant_id(db: Session, tenant_ref: str | int) -> int:
    # Only touches id/slug so ingestion keeps working while quota columns
    # are still being migrated.
    tenant_id, slug = _parse_tenant_ref(tenant_ref)
    query = db.query(Tenant.id)
    if tenant_id is not None:
        row = query.filter(Tenant.id == tenant_id).first()
    else:
        row = query.filter(Tenant.slug == slug).first()
    if row is None:
        raise TenantNotFound(tenant_ref)
    return row[0]


def update_workflow_credentials(
    db: Session,
    tenant: Tenant,
    *,
    api_key: str | None = None,
    org_id: str | None = None,
    folder_id: str | None = None,
    clear_api_key: bool = False,
) -> Tenant:
    if clear_api_key:
        tenant.make_api_key_encrypted = None
    elif api_key:
        tenant.make_api_key_encrypted = encrypt_secret(api_key)
    if org_id is not None:
        tenant.make_org_id = org_id.strip() or None
    if folder_id is not None:
        tenant.make_folder_id = folder_id.strip() or None
    db.commit()
    db.refresh(tenant)
    return tenant


def get_tenant_limits(db: Session, tenant_id: int) -> TenantLimits | None:
    row = (
        db.query(
            Tenant.pages_limit,
            Tenant.rows_limit,
            Tenant.addon_pages_limit,
            Tenant.addon_rows_limit,
            Tenant.scenarios_paused,
            Tenant.last_reset_at,
        )
        .filter(Tenant.id == tenant_id)
        .first()
    )
    if row is None:
        return None
    pages_limit, rows_limit, addon_pages, addon_rows, paused, last_reset_at = row
    return TenantLimits(
        tenant_id=tenant_id,
        pages_limit=pages_limit if pages_limit is not None else DEFAULT_PAGES_LIMIT,
        rows_limit=rows_limit if rows_limit is not None else DEFAULT_ROWS_LIMIT,
        addon_pages_limit=addon_pages or 0,
        addon_rows_limit=addon_rows or 0,
        scenarios_paused=bool(paused),
        last_reset_at=last_reset_at,
    )


def update_tenant_limits(db: Session, tenant_id: int, **fields) -> int:
    unknown = set(fields) - _LIMIT_FIELDS
    if unknown:
        raise ValueError(f"Unsupported tenant limit fields: {sorted(unknown)}")
    if not fields:
        return 0
    updated = (
        db.query(Tenant)
        .filter(Tenant.id == tenant_id)
        .update(
            {getattr(Tenant, key): value for key, value in fields.items()},
            synchronize_session=False,
        )
    )
    db.commit()
    return updated


def increment_addon_limit(db: Session, tenant_id: int, addon_type: str, quantity: int) -> int:
    field = addon_field(addon_type)
    if field is None:
        raise ValueError(f"Unsupported add-on type: {addon_type}")
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    column = getattr(Tenant, field)
    updated = (
        db.query(Tenant)
        .filter(Tenant.id == tenant_id)
        .update({column: column + quantity}, synchronize_session=False)
    )
    db.commit()
    return updated


def apply_plan_limits(db: Session, tenant_id: int, plan_key: str) -> bool:
    limits = get_plan_limits(plan_key)
    if limits is None:
        return False
    updated = (
        db.query(Tenant)
        .filter(Tenant.id == tenant_id)
        .update(
            {
                Tenant.plan_key: normalize_plan_key(plan_key),
                Tenant.pages_limit: limits["pages"],
                Tenant.rows_limit: limits["rows"],
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return bool(updated)
