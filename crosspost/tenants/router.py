"""Tenant signup, profile and plan routes."""

from __future__ import annotations

from datetime import datetime, timezone
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from crosspost.auth.dependencies import require_auth_context
from crosspost.auth.tokens import AuthContext, create_access_token
from crosspost.billing.credits import get_balance
from crosspost.billing.plans import (
    check_tenant_eligibility,
    count_active_connections,
    get_monthly_usage,
    load_plans,
)
from crosspost.core.config import get_settings
from crosspost.schemas.tenants import (
    PlanChangeRequest,
    PlanChangeResponse,
    TenantCreateRequest,
    TenantCreateResponse,
    TenantResponse,
)
from crosspost.storage.db import get_session
from crosspost.storage.models import UserProfile
from crosspost.tenants.service import TenantNotFoundError, change_plan, create_tenant, get_tenant


router = APIRouter(prefix="/tenants", tags=["tenants"])


def _enforce_internal_key(internal_key: Optional[str]) -> None:
    expected = get_settings().cron_secret.strip()
    if not expected:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="internal_key_not_configured")
    received = (internal_key or "").strip()
    if not received or not secrets.compare_digest(received, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="invalid_internal_key")


@router.post("", response_model=TenantCreateResponse, status_code=201)
def create_tenant_endpoint(
    payload: TenantCreateRequest,
    session: Session = Depends(get_session),
) -> TenantCreateResponse:
    try:
        tenant = create_tenant(session, name=payload.name, owner_email=str(payload.owner_email))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    owner = session.get(UserProfile, tenant.owner_user_id)
    token, expires_in = create_access_token(
        AuthContext(
            user_id=tenant.owner_user_id,
            tenant_id=tenant.id,
            role="owner",
            email=owner.email if owner is not None else "",
        )
    )
    return TenantCreateResponse(
        tenant_id=tenant.id,
        slug=tenant.slug,
        owner_user_id=tenant.owner_user_id,
        plan=tenant.plan,
        trial_ends_at=tenant.trial_ends_at,
        credits_balance=get_balance(session, tenant.owner_user_id),
        access_token=token,
        expires_in=expires_in,
    )


@router.get("/me", response_model=TenantResponse)
def get_my_tenant(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> TenantResponse:
    try:
        tenant = get_tenant(session, auth.tenant_id)
    except TenantNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    decision = check_tenant_eligibility(tenant)
    usage = get_monthly_usage(session, tenant.id, datetime.now(timezone.utc).date())
    return TenantResponse(
        id=tenant.id,
        name=tenant.name,
        slug=tenant.slug,
        plan=tenant.plan,
        subscription_status=tenant.subscription_status,
        trial_ends_at=tenant.trial_ends_at,
        max_platforms=tenant.max_platforms,
        max_posts_per_month=tenant.max_posts_per_month,
        posts_this_month=int(usage.posts_count) if usage is not None else 0,
        active_connections=count_active_connections(session, tenant.id),
        can_post=decision.allowed,
        blocked_reason=decision.message,
    )


@router.post("/{tenant_id}/plan", response_model=PlanChangeResponse)
def change_plan_endpoint(
    tenant_id: str,
    payload: PlanChangeRequest,
    session: Session = Depends(get_session),
    internal_key: Optional[str] = Header(default=None, alias="X-Internal-Key"),
) -> PlanChangeResponse:
    _enforce_internal_key(internal_key)
    if payload.plan not in load_plans():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown plan: {payload.plan}")
    try:
        result = change_plan(session, tenant_id=tenant_id, plan_name=payload.plan)
    except TenantNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return PlanChangeResponse(
        tenant_id=tenant_id,
        previous_plan=result.previous_plan,
        plan=result.tenant.plan,
        is_downgrade=result.is_downgrade,
        paused_connections=result.paused_connections,
    )
