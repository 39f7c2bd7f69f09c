import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

import stripe

from quotaflow.billing.addons import apply_addon_purchase, parse_addon_metadata
from quotaflow.billing.catalog import get_plan_limits, normalize_plan_key
from quotaflow.core.config import settings
from quotaflow.core.db import get_db
from quotaflow.core.errors import TenantNotFound
from quotaflow.crud.subscriptions import get_subscription_by_stripe_ids, upsert_stripe_subscription
from quotaflow.crud.tenants import apply_plan_limits, resolve_tenant_id


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

ALLOWED_STATUSES = {
    "active",
    "trialing",
    "past_due",
    "canceled",
    "incomplete",
    "incomplete_expired",
    "unpaid",
    "paused",
}

SUBSCRIPTION_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
}


def _require_webhook_secret() -> str:
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Stripe webhook secret is not configured",
        )
    return settings.STRIPE_WEBHOOK_SECRET


def _unix_to_datetime(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def _resolve_tenant_id_from_payload(
    db: Session,
    *,
    tenant_hint: str | None,
    stripe_subscription_id: str | None,
    stripe_customer_id: str | None,
) -> int | None:
    if tenant_hint:
        try:
            return resolve_tenant_id(db, str(tenant_hint))
        except TenantNotFound:
            pass
    existing = get_subscription_by_stripe_ids(
        db,
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id=stripe_customer_id,
    )
    return existing.tenant_id if existing else None


def _handle_checkout_completed(db: Session, data_object: dict) -> None:
    metadata = data_object.get("metadata") or {}
    if not isinstance(metadata, dict) or "addon_type" not in metadata:
        logger.info("billing.checkout_not_addon", extra={"session_id": data_object.get("id")})
        return
    purchase = parse_addon_metadata(db, metadata)
    if purchase is None:
        logger.warning(
            "billing.addon_metadata_invalid",
            extra={"session_id": data_object.get("id"), "metadata": metadata},
        )
        return
    resumed = apply_addon_purchase(db, purchase)
    logger.info(
        "billing.addon_processed",
        extra={"tenant_id": purchase.tenant_id, "resumed": resumed},
    )


def _handle_subscription_event(db: Session, event_type: str, data_object: dict) -> None:
    metadata = data_object.get("metadata") or {}
    stripe_customer_id = data_object.get("customer")
    stripe_subscription_id = data_object.get("id")
    tenant_id = _resolve_tenant_id_from_payload(
        db,
        tenant_hint=metadata.get("tenant_id"),
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id=stripe_customer_id,
    )
    if tenant_id is None:
        logger.warning(
            "billing.subscription_tenant_unknown",
            extra={"event_type": event_type, "stripe_subscription_id": stripe_subscription_id},
        )
        return

    status_value = data_object.get("status", "active")
    if event_type == "customer.subscription.deleted" or status_value not in ALLOWED_STATUSES:
        status_value = "canceled"
    plan_key = normalize_plan_key(metadata.get("plan_key"))
    upsert_stripe_subscription(
        db,
        tenant_id=tenant_id,
        plan_key=plan_key,
        stripe_customer_id=stripe_customer_id,
        stripe_subscription_id=stripe_subscription_id,
        status=status_value,
        current_period_start=_unix_to_datetime(data_object.get("current_period_start")),
        current_period_end=_unix_to_datetime(data_object.get("current_period_end")),
        cancel_at_period_end=bool(data_object.get("cancel_at_period_end")),
    )
    if plan_key and get_plan_limits(plan_key) is not None and status_value in {"active", "trialing"}:
        apply_plan_limits(db, tenant_id, plan_key)
    logger.info(
        "billing.subscription_synced",
        extra={"tenant_id": tenant_id, "event_type": event_type, "status": status_value, "plan_key": plan_key},
    )


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    secret = _require_webhook_secret()
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe signature")
    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(
            body,
            sig_header,
            secret,
            stripe.Webhook.DEFAULT_TOLERANCE,
        )
        event = json.loads(body)
    except stripe.SignatureVerificationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature") from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload") from exc
    if not isinstance(event, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    event_type = event.get("type")
    data_object = (event.get("data") or {}).get("object") or {}
    logger.info("billing.webhook_received", extra={"event_type": event_type, "event_id": event.get("id")})

    if event_type == "checkout.session.completed":
        _handle_checkout_completed(db, data_object)
    elif event_type in SUBSCRIPTION_EVENTS:
        _handle_subscription_event(db, event_type, data_object)

    return {"received": True}
