from typing import Optional


DEFAULT_PAGES_LIMIT = 5000
DEFAULT_ROWS_LIMIT = 5000

# Base monthly allowance per plan (pages, rows).
PLAN_LIMITS = {
    "trial": {"pages": DEFAULT_PAGES_LIMIT, "rows": DEFAULT_ROWS_LIMIT},
    "starter": {"pages": 1000, "rows": 1000},
    "professional": {"pages": 5000, "rows": 5000},
    "enterprise": {"pages": 15000, "rows": 15000},
}

# Add-on purchases map onto these tenant columns.
ADDON_FIELDS = {
    "pages": "addon_pages_limit",
    "rows": "addon_rows_limit",
}


def normalize_plan_key(value: str | None) -> Optional[str]:
    if not value:
        return None
    return value.strip().lower()


def get_plan_limits(plan_key: str | None) -> Optional[dict[str, int]]:
    limits = PLAN_LIMITS.get(normalize_plan_key(plan_key) or "")
    if not limits:
        return None
    return dict(limits)


def addon_field(addon_type: str | None) -> Optional[str]:
    if not addon_type:
        return None
    return ADDON_FIELDS.get(addon_type.strip().lower())
