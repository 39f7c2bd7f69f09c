"""
Quota engine.

Each tenant is either RUNNING or PAUSED (``tenants.scenarios_paused``).
Evaluation compares usage since the start of the tenant's billing period
with base plus add-on limits; reaching a limit exactly counts as exceeded.
Transitions go through the workflow client, and the stored flag only
changes when at least one scenario call succeeded.

Any ``SQLAlchemyError`` (typically quota columns not migrated yet) turns an
evaluation into a logged no-op so callers such as ingestion keep working.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quotaflow.core import db as db_module
from quotaflow.core.errors import TenantNotFound
from quotaflow.core.metrics import record_monthly_reset, record_quota_transition
from quotaflow.core.periods import (
    current_period_start,
    next_period_start,
    normalize_to_midnight,
    period_start_for,
)
from quotaflow.core.time import utcnow
from quotaflow.crud.subscriptions import tenant_has_active_subscription
from quotaflow.crud.tenants import TenantLimits, get_tenant_limits, update_tenant_limits
from quotaflow.crud.usage import UsageTotals, delete_all_usage, sum_usage_since
from quotaflow.integrations.make import (
    ScenarioActionResult,
    pause_all_scenarios,
    resume_all_scenarios,
)


logger = logging.getLogger(__name__)


@dataclass
class QuotaStatus:
    tenant_id: int
    pages_used: int
    rows_used: int
    pages_limit: int
    rows_limit: int
    addon_pages_limit: int
    addon_rows_limit: int
    total_pages_limit: int
    total_rows_limit: int
    addon_pages_used: int
    addon_rows_used: int
    pages_remaining: int
    rows_remaining: int
    exceeded: bool
    scenarios_paused: bool
    period_start: datetime
    last_reset_at: datetime | None
    next_reset_at: datetime

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ResetSummary:
    tenant_id: int
    events_deleted: int
    aggregates_deleted: int
    last_reset_at: datetime
    resume: ScenarioActionResult | None


def is_exceeded(usage: UsageTotals, limits: TenantLimits) -> bool:
    return usage.pages >= limits.total_pages_limit or usage.rows >= limits.total_rows_limit


def addon_used(usage: int, base_limit: int) -> int:
    # Add-on capacity is only drawn once the base allowance is gone.
    return max(0, usage - base_limit)


def _short_error(exc: Exception) -> str:
    text = str(exc)
    return text.splitlines()[0] if text else exc.__class__.__name__


def _period_usage(db: Session, limits: TenantLimits, now: datetime | None) -> tuple[datetime, UsageTotals]:
    period_start = period_start_for(limits.last_reset_at, now)
    return period_start, sum_usage_since(db, limits.tenant_id, period_start)


def apply_monthly_reset_if_needed(db: Session, tenant_id: int, now: datetime | None = None) -> bool:
    """Roll the tenant into the current billing period if it has not been yet.

    Clears add-on limits and stamps ``last_reset_at`` with the period start.
    Paused tenants with an active subscription are resumed as a follow-up
    step; that step failing never undoes the reset.
    """
    try:
        limits = get_tenant_limits(db, tenant_id)
        if limits is None:
            return False
        expected_reset = current_period_start(now)
        if limits.last_reset_at is not None and limits.last_reset_at >= expected_reset:
            return False

        subscribed = tenant_has_active_subscription(db, tenant_id)
        auto_resume = subscribed and limits.scenarios_paused
        fields = {
            "addon_pages_limit": 0,
            "addon_rows_limit": 0,
            "last_reset_at": expected_reset,
        }
        if auto_resume:
            fields["scenarios_paused"] = False
        update_tenant_limits(db, tenant_id, **fields)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "quota.monthly_reset_skipped",
            extra={"tenant_id": tenant_id, "error": _short_error(exc)},
        )
        return False

    record_monthly_reset()
    logger.info(
        "quota.monthly_reset_applied",
        extra={
            "tenant_id": tenant_id,
            "period_start": expected_reset,
            "subscribed": subscribed,
            "auto_resume": auto_resume,
        },
    )

    if auto_resume:
        try:
            resume = resume_all_scenarios(db, tenant_id)
        except Exception:
            logger.exception("quota.monthly_reset_resume_failed", extra={"tenant_id": tenant_id})
        else:
            if resume.succeeded > 0:
                record_quota_transition("resume", "monthly_reset")
    return True


def check_and_pause_if_needed(
    db: Session,
    tenant_id: int,
    now: datetime | None = None,
    *,
    trigger: str = "usage",
) -> bool:
    """Pause the tenant's scenarios when period usage reaches a limit.

    Returns True only when scenarios were newly paused.
    """
    apply_monthly_reset_if_needed(db, tenant_id, now=now)
    try:
        limits = get_tenant_limits(db, tenant_id)
        if limits is None:
            return False
        period_start, usage = _period_usage(db, limits, now)
        if not is_exceeded(usage, limits) or limits.scenarios_paused:
            return False

        logger.info(
            "quota.limit_exceeded",
            extra={
                "tenant_id": tenant_id,
                "pages_used": usage.pages,
                "pages_limit": limits.total_pages_limit,
                "rows_used": usage.rows,
                "rows_limit": limits.total_rows_limit,
                "period_start": period_start,
            },
        )
        result = pause_all_scenarios(db, tenant_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "quota.limit_check_skipped",
            extra={"tenant_id": tenant_id, "error": _short_error(exc)},
        )
        return False

    if result.succeeded > 0:
        record_quota_transition("pause", trigger)
        return True
    return False


def check_and_resume_if_possible(
    db: Session,
    tenant_id: int,
    now: datetime | None = None,
    *,
    trigger: str = "addon",
) -> bool:
    """Resume a paused tenant whose usage is strictly under both limits again."""
    try:
        limits = get_tenant_limits(db, tenant_id)
        if limits is None or not limits.scenarios_paused:
            return False
        period_start, usage = _period_usage(db, limits, now)
        if is_exceeded(usage, limits):
            return False

        logger.info(
            "quota.within_limits",
            extra={
                "tenant_id": tenant_id,
                "pages_used": usage.pages,
                "pages_limit": limits.total_pages_limit,
                "rows_used": usage.rows,
                "rows_limit": limits.total_rows_limit,
                "period_start": period_start,
            },
        )
        result = resume_all_scenarios(db, tenant_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "quota.auto_resume_skipped",
            extra={"tenant_id": tenant_id, "error": _short_error(exc)},
        )
        return False

    if result.succeeded > 0:
        record_quota_transition("resume", trigger)
        return True
    return False


def get_quota_status(db: Session, tenant_id: int, now: datetime | None = None) -> QuotaStatus:
    apply_monthly_reset_if_needed(db, tenant_id, now=now)
    limits = get_tenant_limits(db, tenant_id)
    if limits is None:
        raise TenantNotFound(tenant_id)
    period_start, usage = _period_usage(db, limits, now)
    return QuotaStatus(
        tenant_id=tenant_id,
        pages_used=usage.pages,
        rows_used=usage.rows,
        pages_limit=limits.pages_limit,
        rows_limit=limits.rows_limit,
        addon_pages_limit=limits.addon_pages_limit,
        addon_rows_limit=limits.addon_rows_limit,
        total_pages_limit=limits.total_pages_limit,
        total_rows_limit=limits.total_rows_limit,
        addon_pages_used=addon_used(usage.pages, limits.pages_limit),
        addon_rows_used=addon_used(usage.rows, limits.rows_limit),
        pages_remaining=max(0, limits.total_pages_limit - usage.pages),
        rows_remaining=max(0, limits.total_rows_limit - usage.rows),
        exceeded=is_exceeded(usage, limits),
        scenarios_paused=limits.scenarios_paused,
        period_start=period_start,
        last_reset_at=limits.last_reset_at,
        next_reset_at=next_period_start(now),
    )


def reset_tenant_usage(db: Session, tenant_id: int, now: datetime | None = None) -> ResetSummary:
    """Administrative reset: wipe all usage and start a fresh period today."""
    limits = get_tenant_limits(db, tenant_id)
    if limits is None:
        raise TenantNotFound(tenant_id)
    reset_at = normalize_to_midnight(now or utcnow())
    try:
        events_deleted, aggregates_deleted = delete_all_usage(db, tenant_id)
        update_tenant_limits(db, tenant_id, last_reset_at=reset_at, scenarios_paused=False)
    except Exception:
        db.rollback()
        raise
    logger.info(
        "quota.usage_reset",
        extra={
            "tenant_id": tenant_id,
            "events_deleted": events_deleted,
            "aggregates_deleted": aggregates_deleted,
            "last_reset_at": reset_at,
        },
    )
    resume = None
    try:
        resume = resume_all_scenarios(db, tenant_id)
    except Exception:
        logger.exception("quota.usage_reset_resume_failed", extra={"tenant_id": tenant_id})
    if limits.scenarios_paused and resume is not None and resume.succeeded > 0:
        record_quota_transition("resume", "admin_reset")
    return ResetSummary(
        tenant_id=tenant_id,
        events_deleted=events_deleted,
        aggregates_deleted=aggregates_deleted,
        last_reset_at=reset_at,
        resume=resume,
    )


def run_quota_check(tenant_id: int) -> None:
    """Fire-and-forget evaluation scheduled after ingestion; owns its session."""
    db = db_module.SessionLocal()
    try:
        check_and_pause_if_needed(db, tenant_id)
    except Exception:
        logger.exception("quota.background_check_failed", extra={"tenant_id": tenant_id})
    finally:
        db.close()
