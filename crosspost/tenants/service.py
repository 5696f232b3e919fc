"""Tenant lifecycle: trial signup, plan changes and connection pausing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import re
from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from crosspost.billing.credits import add_credits
from crosspost.billing.plans import DEFAULT_TRIAL_DAYS, apply_plan_limits, get_plan
from crosspost.core.logger import get_logger
from crosspost.storage.models import Connection, Tenant, UserProfile


logger = get_logger("crosspost.tenants")


class TenantNotFoundError(LookupError):
    """Raised when a tenant id does not resolve."""


@dataclass(frozen=True)
class PlanChangeResult:
    tenant: Tenant
    previous_plan: str
    is_downgrade: bool
    paused_connections: int


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "tenant"


def _unique_slug(session: Session, name: str) -> str:
    base = _slugify(name)[:120]
    slug = base
    while session.scalar(select(Tenant.id).where(Tenant.slug == slug)) is not None:
        slug = f"{base}-{uuid.uuid4().hex[:6]}"
    return slug


def get_tenant(session: Session, tenant_id: str) -> Tenant:
    tenant = session.scalar(select(Tenant).where(Tenant.id == tenant_id))
    if tenant is None:
        raise TenantNotFoundError("Tenant not found")
    return tenant


def get_or_create_profile(session: Session, *, email: str, user_id: Optional[str] = None) -> UserProfile:
    profile = session.scalar(select(UserProfile).where(UserProfile.email == email))
    if profile is None:
        profile = UserProfile(id=user_id or str(uuid.uuid4()), email=email, credits_balance=0)
        session.add(profile)
        session.flush()
    return profile


def create_tenant(
    session: Session,
    *,
    name: str,
    owner_email: str,
    owner_user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tenant:
    """Create a trialing tenant and grant the owner the trial credit allowance."""

    if not name.strip():
        raise ValueError("Tenant name is required")
    if not owner_email.strip():
        raise ValueError("Owner email is required")

    reference = now or datetime.now(timezone.utc)
    trial_plan = get_plan("trial")
    trial_days = trial_plan.get("trial_duration_days") or DEFAULT_TRIAL_DAYS

    profile = get_or_create_profile(session, email=owner_email.strip().lower(), user_id=owner_user_id)
    tenant = Tenant(
        id=str(uuid.uuid4()),
        name=name.strip(),
        slug=_unique_slug(session, name),
        owner_user_id=profile.id,
        subscription_status="trialing",
        trial_ends_at=reference + timedelta(days=trial_days),
    )
    apply_plan_limits(tenant, "trial")
    session.add(tenant)
    session.commit()

    grant = int(trial_plan.get("monthly_credits", 0))
    if grant > 0:
        add_credits(
            session,
            user_id=profile.id,
            amount=grant,
            source="bonus",
            metadata={"reason": "trial_signup", "tenant_id": tenant.id},
        )

    logger.info("tenant_created", tenant_id=tenant.id, plan=tenant.plan, trial_days=trial_days)
    return tenant


def pause_connections(session: Session, *, tenant_id: str, status: str, keep: int = 0) -> int:
    """Move active connections beyond the first ``keep`` to ``status``. Caller commits."""

    active = session.scalars(
        select(Connection)
        .where(Connection.tenant_id == tenant_id, Connection.status == "active")
        .order_by(Connection.last_used_at.desc(), Connection.created_at.asc())
    ).all()
    now = datetime.now(timezone.utc)
    paused = 0
    for connection in active[max(keep, 0):]:
        connection.status = status
        connection.updated_at = now
        paused += 1
    return paused


def resume_connections(session: Session, *, tenant_id: str, from_status: str) -> int:
    """Reactivate connections paused with ``from_status``. Caller commits."""

    rows = session.scalars(
        select(Connection).where(Connection.tenant_id == tenant_id, Connection.status == from_status)
    ).all()
    now = datetime.now(timezone.utc)
    for connection in rows:
        connection.status = "active"
        connection.updated_at = now
    return len(rows)


def change_plan(
    session: Session,
    *,
    tenant_id: str,
    plan_name: str,
    subscription_id: Optional[str] = None,
) -> PlanChangeResult:
    tenant = get_tenant(session, tenant_id)
    target = get_plan(plan_name)
    previous_plan = tenant.plan

    is_downgrade = _is_smaller(target.get("max_platforms"), tenant.max_platforms) or _is_smaller(
        target.get("max_posts_per_month"), tenant.max_posts_per_month
    )

    apply_plan_limits(tenant, plan_name)
    tenant.subscription_status = "trialing" if plan_name == "trial" else "active"
    if subscription_id:
        tenant.subscription_id = subscription_id
    if plan_name != "trial":
        tenant.trial_ends_at = None
        tenant.paused_at = None
        tenant.data_deletion_scheduled_at = None
    tenant.updated_at = datetime.now(timezone.utc)

    paused = 0
    if is_downgrade and tenant.max_platforms >= 0:
        paused = pause_connections(
            session,
            tenant_id=tenant.id,
            status="paused_downgrade",
            keep=tenant.max_platforms,
        )
    session.commit()

    logger.info(
        "tenant_plan_changed",
        tenant_id=tenant.id,
        previous_plan=previous_plan,
        plan=plan_name,
        is_downgrade=is_downgrade,
        paused_connections=paused,
    )
    return PlanChangeResult(
        tenant=tenant,
        previous_plan=previous_plan,
        is_downgrade=is_downgrade,
        paused_connections=paused,
    )


def _is_smaller(new_limit: Optional[int], current_limit: int) -> bool:
    if new_limit is None:
        return False
    # Negative limits mean unlimited.
    if new_limit < 0:
        return False
    if current_limit < 0:
        return True
    return new_limit < current_limit
