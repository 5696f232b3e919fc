"""Plan loading, tenant eligibility and plan-limit enforcement primitives."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import yaml
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crosspost.core.config import get_settings
from crosspost.storage.models import Connection, Tenant, UsageTracking


ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing", "canceling"})
PLAN_LIMIT_FIELDS = ("max_platforms", "max_posts_per_month", "max_ai_generations", "max_campaigns")
DEFAULT_TRIAL_DAYS = 14

_REPO_ROOT = Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class EligibilityDecision:
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class LimitDecision:
    allowed: bool
    current: int
    limit: int
    message: Optional[str] = None


def _resolve_plan_path() -> Path:
    configured = Path(get_settings().plans_file_path)
    if configured.is_absolute():
        return configured
    candidate = Path.cwd() / configured
    if candidate.exists():
        return candidate
    return _REPO_ROOT / configured


@lru_cache(maxsize=1)
def load_plans() -> Dict[str, Dict[str, int]]:
    with _resolve_plan_path().open("r", encoding="utf-8") as file:
        content = yaml.safe_load(file) or {}
    if not isinstance(content, dict):
        raise ValueError("Invalid plans file format")

    plans: Dict[str, Dict[str, int]] = {}
    for plan_name, plan_limits in content.items():
        if not isinstance(plan_name, str) or not isinstance(plan_limits, dict):
            continue
        plans[plan_name] = {
            key: value for key, value in plan_limits.items() if isinstance(key, str) and isinstance(value, int)
        }
    return plans


def get_plan(plan_name: str) -> Dict[str, int]:
    plans = load_plans()
    if plan_name not in plans:
        raise ValueError(f"Plan is not configured: {plan_name}")
    return plans[plan_name]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_trial_expired(tenant: Tenant, now: Optional[datetime] = None) -> bool:
    if tenant.subscription_status == "trial_expired":
        return True
    if tenant.plan != "trial" or tenant.trial_ends_at is None:
        return False
    reference = now or datetime.now(timezone.utc)
    return _as_utc(tenant.trial_ends_at) < reference


def check_tenant_eligibility(tenant: Tenant, now: Optional[datetime] = None) -> EligibilityDecision:
    """Decide whether a tenant may publish right now."""

    if not tenant.is_active:
        return EligibilityDecision(
            allowed=False,
            reason="tenant_archived",
            message="Account archived. Contact support to restore it.",
        )
    if is_trial_expired(tenant, now):
        return EligibilityDecision(
            allowed=False,
            reason="trial_expired",
            message="Trial expired. Upgrade to continue posting.",
        )
    if tenant.subscription_status not in ACTIVE_SUBSCRIPTION_STATUSES:
        return EligibilityDecision(
            allowed=False,
            reason="subscription_inactive",
            message=f"Subscription {tenant.subscription_status}. Upgrade to continue posting.",
        )
    return EligibilityDecision(allowed=True)


def count_active_connections(session: Session, tenant_id: str) -> int:
    count = session.scalar(
        select(func.count())
        .select_from(Connection)
        .where(Connection.tenant_id == tenant_id, Connection.status == "active")
    )
    return int(count or 0)


def check_connection_limit(session: Session, tenant: Tenant) -> LimitDecision:
    current = count_active_connections(session, tenant.id)
    limit = int(tenant.max_platforms)
    if limit >= 0 and current >= limit:
        return LimitDecision(
            allowed=False,
            current=current,
            limit=limit,
            message=f"Platform limit reached ({current}/{limit}). Upgrade for more.",
        )
    return LimitDecision(allowed=True, current=current, limit=limit)


def month_start(reference: date) -> date:
    return reference.replace(day=1)


def get_monthly_usage(session: Session, tenant_id: str, reference: date) -> Optional[UsageTracking]:
    return session.scalar(
        select(UsageTracking).where(
            UsageTracking.tenant_id == tenant_id,
            UsageTracking.period_start == month_start(reference),
        )
    )


def check_post_limit(session: Session, tenant: Tenant, now: Optional[datetime] = None) -> LimitDecision:
    reference = (now or datetime.now(timezone.utc)).date()
    usage = get_monthly_usage(session, tenant.id, reference)
    current = int(usage.posts_count) if usage is not None else 0
    limit = int(tenant.max_posts_per_month)
    if limit >= 0 and current >= limit:
        return LimitDecision(
            allowed=False,
            current=current,
            limit=limit,
            message=f"Monthly post limit reached ({current}/{limit}). Upgrade for more.",
        )
    return LimitDecision(allowed=True, current=current, limit=limit)


def record_post_usage(session: Session, tenant_id: str, now: Optional[datetime] = None) -> UsageTracking:
    """Bump the monthly post counter. Caller commits."""

    reference = (now or datetime.now(timezone.utc)).date()
    usage = get_monthly_usage(session, tenant_id, reference)
    if usage is None:
        usage = UsageTracking(tenant_id=tenant_id, period_start=month_start(reference), posts_count=0)
        session.add(usage)
    usage.posts_count = int(usage.posts_count or 0) + 1
    return usage


def apply_plan_limits(tenant: Tenant, plan_name: str) -> Dict[str, int]:
    """Copy a plan's limits onto the tenant row. Caller commits."""

    plan = get_plan(plan_name)
    tenant.plan = plan_name
    for field in PLAN_LIMIT_FIELDS:
        if field in plan:
            setattr(tenant, field, int(plan[field]))
    return plan
