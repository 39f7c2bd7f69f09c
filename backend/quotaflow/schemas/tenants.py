from datetime import datetime
import re
from typing import Optional

from pydantic import BaseModel, constr, field_validator

NameStr = constr(min_length=2, max_length=80, strip_whitespace=True)
_SLUG_RE = re.compile(r"^[a-z0-9-]{2,50}$")


class TenantCreate(BaseModel):
    name: NameStr
    slug: Optional[str] = None
    plan_key: Optional[str] = None

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        normalized = value.strip().lower()
        if not _SLUG_RE.fullmatch(normalized) or normalized.startswith("-") or normalized.endswith("-"):
            raise ValueError("slug must be 2-50 chars, lowercase letters/numbers/hyphens, no leading/trailing hyphen")
        if normalized.isdigit():
            raise ValueError("slug cannot be purely numeric")
        return normalized


class TenantRead(BaseModel):
    id: int
    name: str
    slug: str
    plan_key: Optional[str] = None
    pages_limit: int
    rows_limit: int
    addon_pages_limit: int
    addon_rows_limit: int
    scenarios_paused: bool
    last_reset_at: Optional[datetime] = None
    has_make_api_key: bool = False
    make_org_id: Optional[str] = None
    make_folder_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_tenant(cls, tenant) -> "TenantRead":
        return cls(
            id=tenant.id,
            name=tenant.name,
            slug=tenant.slug,
            plan_key=tenant.plan_key,
            pages_limit=tenant.pages_limit,
            rows_limit=tenant.rows_limit,
            addon_pages_limit=tenant.addon_pages_limit,
            addon_rows_limit=tenant.addon_rows_limit,
            scenarios_paused=bool(tenant.scenarios_paused),
            last_reset_at=tenant.last_reset_at,
            has_make_api_key=bool(tenant.make_api_key_encrypted),
            make_org_id=tenant.make_org_id,
            make_folder_id=tenant.make_folder_id,
            created_at=tenant.created_at,
        )


class WorkflowCredentialsUpdate(BaseModel):
    api_key: Optional[str] = None
    org_id: Optional[str] = None
    folder_id: Optional[str] = None
    clear_api_key: bool = False

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("api_key cannot be blank; use clear_api_key to remove it")
        return value
