from datetime import datetime

from sqlalchemy.orm import Session

from quotaflow.models.subscriptions import Subscription

# Only a paid-up subscription earns an automatic resume at period rollover.
AUTO_RESUME_STATUSES = {"active"}


def get_subscription_for_tenant(db: Session, tenant_id: int) -> Subscription | None:
    return (
        db.query(Subscription)
        .filter(Subscription.tenant_id == tenant_id)
        .order_by(Subscription.id.desc())
        .first()
    )


def tenant_has_active_subscription(db: Session, tenant_id: int) -> bool:
    subscription = get_subscription_for_tenant(db, tenant_id)
    return subscription is not None and subscription.status in AUTO_RESUME_STATUSES


def get_subscription_by_stripe_ids(
    db: Session,
    *,
    stripe_subscription_id: str | None = None,
    stripe_customer_id: str | None = None,
) -> Subscription | None:
    if not stripe_subscription_id and not stripe_customer_id:
        return None
    query = db.query(Subscription)
    if stripe_subscription_id:
        query = query.filter(Subscription.stripe_subscription_id == stripe_subscription_id)
    if stripe_customer_id:
        query = query.filter(Subscription.stripe_customer_id == stripe_customer_id)
    return query.order_by(Subscription.id.desc()).first()


def upsert_stripe_subscription(
    db: Session,
    *,
    tenant_id: int,
    plan_key: str | None,
    stripe_customer_id: str | None,
    stripe_subscription_id: str | None,
    status: str,
    current_period_start: datetime | None = None,
    current_period_end: datetime | None = None,
    cancel_at_period_end: bool | None = None,
) -> Subscription:
    subscription = get_subscription_by_stripe_ids(
        db,
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id=stripe_customer_id,
    )
    if not subscription:
        subscription = get_subscription_for_tenant(db, tenant_id)
    if not subscription:
        subscription = Subscription(tenant_id=tenant_id, status=status)
        db.add(subscription)

    subscription.plan_key = plan_key or subscription.plan_key
    subscription.stripe_subscription_id = stripe_subscription_id or subscription.stripe_subscription_id
    subscription.stripe_customer_id = stripe_customer_id or subscription.stripe_customer_id
    subscription.status = status
    if current_period_start is not None:
        subscription.current_period_start = current_period_start
    if current_period_end is not None:
        subscription.current_period_end = current_period_end
    if cancel_at_period_end is not None:
        subscription.cancel_at_period_end = cancel_at_period_end

    db.commit()
    db.refresh(subscription)
    return subscription
