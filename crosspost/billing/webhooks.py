"""Stripe webhook endpoint mapping billing events onto tenant gating fields."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crosspost.billing.credits import add_credits
from crosspost.billing.plans import get_plan, load_plans
from crosspost.billing.stripe_client import StripeWebhookError, event_object, parse_event, verify_signature
from crosspost.core.config import get_settings
from crosspost.core.logger import get_logger
from crosspost.schemas.billing import StripeWebhookResponse
from crosspost.storage.db import get_session
from crosspost.storage.models import StripeEvent, Tenant
from crosspost.tenants.service import change_plan, pause_connections, resume_connections


router = APIRouter(prefix="/billing", tags=["billing"])
logger = get_logger("crosspost.billing")

Outcome = Tuple[str, str]


def _metadata_tenant(session: Session, obj: Dict[str, Any]) -> Optional[Tenant]:
    metadata = obj.get("metadata") or {}
    tenant_id = metadata.get("tenant_id") if isinstance(metadata, dict) else None
    if isinstance(tenant_id, str) and tenant_id:
        return session.scalar(select(Tenant).where(Tenant.id == tenant_id))
    return None


def _subscription_tenant(session: Session, obj: Dict[str, Any]) -> Optional[Tenant]:
    subscription_id = obj.get("subscription")
    if isinstance(subscription_id, str) and subscription_id:
        tenant = session.scalar(select(Tenant).where(Tenant.subscription_id == subscription_id))
        if tenant is not None:
            return tenant
    customer_id = obj.get("customer")
    if isinstance(customer_id, str) and customer_id:
        return session.scalar(select(Tenant).where(Tenant.stripe_customer_id == customer_id))
    return None


def _tenant_for_subscription(session: Session, subscription: Dict[str, Any]) -> Optional[Tenant]:
    return _metadata_tenant(session, subscription) or _subscription_tenant(
        session,
        {"subscription": subscription.get("id"), "customer": subscription.get("customer")},
    )


def _checkout_completed(session: Session, stripe_event: StripeEvent, obj: Dict[str, Any]) -> Outcome:
    tenant = _metadata_tenant(session, obj)
    if tenant is None:
        return "ignored", "Checkout session has no known tenant"
    plan_name = (obj.get("metadata") or {}).get("plan")
    if plan_name not in load_plans():
        return "ignored", f"Unknown plan in checkout metadata: {plan_name}"

    customer_id = obj.get("customer")
    if isinstance(customer_id, str) and customer_id:
        tenant.stripe_customer_id = customer_id
    subscription_id = obj.get("subscription")
    change_plan(
        session,
        tenant_id=tenant.id,
        plan_name=plan_name,
        subscription_id=subscription_id if isinstance(subscription_id, str) else None,
    )
    resume_connections(session, tenant_id=tenant.id, from_status="paused_subscription")
    stripe_event.tenant_id = tenant.id
    session.commit()

    grant = int(get_plan(plan_name).get("monthly_credits", 0))
    if grant > 0:
        add_credits(
            session,
            user_id=tenant.owner_user_id,
            amount=grant,
            source="subscription",
            metadata={"tenant_id": tenant.id, "plan": plan_name, "event_id": stripe_event.event_id},
        )
    return "processed", f"Tenant upgraded to {plan_name}"


def _subscription_updated(session: Session, stripe_event: StripeEvent, obj: Dict[str, Any]) -> Outcome:
    tenant = _tenant_for_subscription(session, obj)
    if tenant is None:
        return "ignored", "Subscription has no known tenant"

    provider_status = obj.get("status")
    if obj.get("cancel_at_period_end"):
        new_status = "canceling"
    elif provider_status in {"past_due", "unpaid"}:
        new_status = str(provider_status)
    else:
        new_status = "active"

    tenant.subscription_status = new_status
    tenant.updated_at = datetime.now(timezone.utc)
    stripe_event.tenant_id = tenant.id
    return "processed", f"Subscription status set to {new_status}"


def _subscription_deleted(session: Session, stripe_event: StripeEvent, obj: Dict[str, Any]) -> Outcome:
    tenant = _tenant_for_subscription(session, obj)
    if tenant is None:
        return "ignored", "Subscription has no known tenant"

    now = datetime.now(timezone.utc)
    grace_days = get_settings().data_retention_grace_days
    tenant.plan = "expired"
    tenant.subscription_status = "canceled"
    tenant.subscription_id = None
    tenant.paused_at = now
    tenant.data_deletion_scheduled_at = now + timedelta(days=grace_days)
    tenant.max_platforms = 0
    tenant.max_posts_per_month = 0
    tenant.max_ai_generations = 0
    tenant.updated_at = now
    paused = pause_connections(session, tenant_id=tenant.id, status="paused_subscription")
    stripe_event.tenant_id = tenant.id
    return "processed", f"Subscription canceled, {paused} connections paused"


def _payment_failed(session: Session, stripe_event: StripeEvent, obj: Dict[str, Any]) -> Outcome:
    tenant = _subscription_tenant(session, obj)
    if tenant is None:
        return "ignored", "Invoice has no known tenant"
    tenant.subscription_status = "past_due"
    tenant.updated_at = datetime.now(timezone.utc)
    stripe_event.tenant_id = tenant.id
    return "processed", "Payment failure applied"


def _payment_succeeded(session: Session, stripe_event: StripeEvent, obj: Dict[str, Any]) -> Outcome:
    tenant = _subscription_tenant(session, obj)
    if tenant is None:
        return "ignored", "Invoice has no known tenant"
    tenant.subscription_status = "active"
    tenant.paused_at = None
    tenant.updated_at = datetime.now(timezone.utc)
    resumed = resume_connections(session, tenant_id=tenant.id, from_status="paused_subscription")
    stripe_event.tenant_id = tenant.id
    return "processed", f"Payment applied, {resumed} connections resumed"


EVENT_HANDLERS: Dict[str, Callable[[Session, StripeEvent, Dict[str, Any]], Outcome]] = {
    "checkout.session.completed": _checkout_completed,
    "customer.subscription.updated": _subscription_updated,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.payment_failed": _payment_failed,
    "invoice.payment_succeeded": _payment_succeeded,
}


def _insert_stripe_event(session: Session, *, event_id: str, event_type: str, payload_json: str) -> Optional[StripeEvent]:
    stripe_event = StripeEvent(event_id=event_id, event_type=event_type, status="received", payload_json=payload_json)
    session.add(stripe_event)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return None
    return stripe_event


def process_stripe_event(session: Session, *, event: Dict[str, Any], payload_bytes: bytes) -> StripeWebhookResponse:
    event_id = str(event["id"])
    event_type = str(event["type"])

    stripe_event = _insert_stripe_event(
        session,
        event_id=event_id,
        event_type=event_type,
        payload_json=payload_bytes.decode("utf-8"),
    )
    if stripe_event is None:
        return StripeWebhookResponse(
            status="duplicate",
            duplicate=True,
            event_id=event_id,
            event_type=event_type,
            message="Event already processed",
        )

    handler = EVENT_HANDLERS.get(event_type)
    try:
        if handler is None:
            final_status, message = "ignored", "Unsupported Stripe event type"
        else:
            final_status, message = handler(session, stripe_event, event_object(event))
        stripe_event.status = final_status
        stripe_event.error_message = message[:255] if final_status == "ignored" else None
        stripe_event.processed_at = datetime.now(timezone.utc)
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.error("stripe_event_failed", event_id=event_id, event_type=event_type, error=str(exc))
        failed = session.scalar(select(StripeEvent).where(StripeEvent.event_id == event_id))
        if failed is not None:
            failed.status = "failed"
            failed.error_message = str(exc)[:255]
            failed.processed_at = datetime.now(timezone.utc)
            session.commit()
        return StripeWebhookResponse(
            status="failed",
            duplicate=False,
            event_id=event_id,
            event_type=event_type,
            message="Processing failed",
        )

    logger.info("stripe_event_processed", event_id=event_id, event_type=event_type, status=final_status)
    return StripeWebhookResponse(
        status=final_status,
        duplicate=False,
        event_id=event_id,
        event_type=event_type,
        message=message,
    )


@router.post("/webhook", response_model=StripeWebhookResponse)
async def stripe_webhook(request: Request, session: Session = Depends(get_session)) -> StripeWebhookResponse:
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe webhook secret is not configured",
        )

    payload_bytes = await request.body()
    try:
        verify_signature(
            payload=payload_bytes,
            header=request.headers.get("stripe-signature", ""),
            secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.stripe_signature_tolerance_seconds,
        )
        event = parse_event(payload_bytes)
    except StripeWebhookError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return process_stripe_event(session, event=event, payload_bytes=payload_bytes)
