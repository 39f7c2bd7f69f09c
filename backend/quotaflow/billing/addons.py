from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from quotaflow.billing.catalog import addon_field
from quotaflow.core.errors import TenantNotFound
from quotaflow.core.quota import apply_monthly_reset_if_needed, check_and_resume_if_possible
from quotaflow.crud.tenants import increment_addon_limit, resolve_tenant_id


logger = logging.getLogger(__name__)

_QUANTITY_PATTERN = re.compile(r"[0-9]+")

# Add-on columns are 32-bit integers.
MAX_ADDON_QUANTITY = 2**31 - 1


@dataclass(frozen=True)
class AddonPurchase:
    tenant_id: int
    addon_type: str
    quantity: int


def _parse_quantity(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        quantity = value
    elif isinstance(value, str) and _QUANTITY_PATTERN.fullmatch(value.strip()):
        quantity = int(value.strip())
    else:
        return None
    return quantity if 0 < quantity <= MAX_ADDON_QUANTITY else None


def parse_addon_metadata(db: Session, metadata: Any) -> AddonPurchase | None:
    """Validate checkout metadata; ``None`` means "not an add-on purchase we can apply"."""
    if not isinstance(metadata, dict):
        return None
    addon_type = metadata.get("addon_type")
    if not isinstance(addon_type, str) or addon_field(addon_type) is None:
        return None
    quantity = _parse_quantity(metadata.get("addon_quantity"))
    if quantity is None:
        return None
    tenant_hint = metadata.get("tenant_id")
    if tenant_hint is None:
        return None
    try:
        tenant_id = resolve_tenant_id(db, str(tenant_hint))
    except TenantNotFound:
        return None
    return AddonPurchase(tenant_id=tenant_id, addon_type=addon_type.strip().lower(), quantity=quantity)


def apply_addon_purchase(db: Session, purchase: AddonPurchase, now: datetime | None = None) -> bool:
    """Credit purchased capacity, then resume the tenant if that brings it back under its limits.

    A pending period rollover is applied first so the rollover cannot wipe
    the add-on just bought. Returns True when scenarios were resumed.
    """
    apply_monthly_reset_if_needed(db, purchase.tenant_id, now=now)
    increment_addon_limit(db, purchase.tenant_id, purchase.addon_type, purchase.quantity)
    logger.info(
        "billing.addon_applied",
        extra={
            "tenant_id": purchase.tenant_id,
            "addon_type": purchase.addon_type,
            "addon_quantity": purchase.quantity,
        },
    )
    return check_and_resume_if_possible(db, purchase.tenant_id, now=now, trigger="addon")
