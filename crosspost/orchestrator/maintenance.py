"""Periodic maintenance jobs triggered by cron."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from crosspost.core.config import get_settings
from crosspost.core.logger import get_logger
from crosspost.storage.models import Connection, Post, Tenant


logger = get_logger("crosspost.orchestrator.maintenance")

TRIAL_EXPIRED_MESSAGE = "Trial expired. Upgrade to continue posting."
STALE_PUBLISHING_MESSAGE = "Publishing did not finish; requeued"


@dataclass(frozen=True)
class MaintenanceResult:
    task: str
    affected: int
    details: Dict[str, Any] = field(default_factory=dict)


def check_trials(session: Session, *, now: Optional[datetime] = None) -> MaintenanceResult:
    """Expire lapsed trials: zero the post quota, pause scheduled posts, start the deletion clock."""

    current = now or datetime.now(timezone.utc)
    grace_days = get_settings().data_retention_grace_days
    tenants = session.scalars(
        select(Tenant).where(
            Tenant.plan == "trial",
            Tenant.subscription_status == "trialing",
            Tenant.trial_ends_at.is_not(None),
            Tenant.trial_ends_at < current,
        )
    ).all()

    paused_posts = 0
    for tenant in tenants:
        tenant.subscription_status = "trial_expired"
        tenant.max_posts_per_month = 0
        tenant.paused_at = current
        tenant.data_deletion_scheduled_at = current + timedelta(days=grace_days)
        tenant.updated_at = current
        scheduled = session.scalars(
            select(Post).where(Post.tenant_id == tenant.id, Post.status == "scheduled")
        ).all()
        for post in scheduled:
            post.status = "paused"
            post.last_error = TRIAL_EXPIRED_MESSAGE
            post.updated_at = current
        paused_posts += len(scheduled)
    session.commit()

    logger.info("maintenance_trials_checked", expired=len(tenants), paused_posts=paused_posts)
    return MaintenanceResult(task="check_trials", affected=len(tenants), details={"paused_posts": paused_posts})


def cleanup_old_data(session: Session, *, now: Optional[datetime] = None) -> MaintenanceResult:
    """Archive tenants whose grace period ran out and drop their stored credentials."""

    current = now or datetime.now(timezone.utc)
    tenants = session.scalars(
        select(Tenant).where(
            Tenant.is_active.is_(True),
            Tenant.data_deletion_scheduled_at.is_not(None),
            Tenant.data_deletion_scheduled_at <= current,
        )
    ).all()

    removed_connections = 0
    for tenant in tenants:
        tenant.is_active = False
        tenant.updated_at = current
        result = session.execute(delete(Connection).where(Connection.tenant_id == tenant.id))
        removed_connections += int(result.rowcount or 0)
    session.commit()

    logger.info("maintenance_old_data_cleaned", archived=len(tenants), removed_connections=removed_connections)
    return MaintenanceResult(
        task="cleanup_old_data",
        affected=len(tenants),
        details={"removed_connections": removed_connections},
    )


def reset_daily_limits(session: Session, *, now: Optional[datetime] = None) -> MaintenanceResult:
    current = now or datetime.now(timezone.utc)
    cutoff = current - timedelta(hours=24)
    connections = session.scalars(
        select(Connection).where(
            or_(Connection.posts_today_reset_at.is_(None), Connection.posts_today_reset_at <= cutoff)
        )
    ).all()
    for connection in connections:
        connection.posts_today = 0
        connection.posts_today_reset_at = current
    session.commit()

    logger.info("maintenance_daily_limits_reset", connections=len(connections))
    return MaintenanceResult(task="reset_daily_limits", affected=len(connections))


def requeue_stale_publishing(session: Session, *, now: Optional[datetime] = None) -> MaintenanceResult:
    """Recover posts stuck in ``publishing`` after a crash.

    The dispatch outcome is unknown, so the charge is neither kept nor refunded
    here; the post simply goes back to the retry budget.
    """

    current = now or datetime.now(timezone.utc)
    cutoff = current - timedelta(minutes=get_settings().stale_publishing_minutes)
    stale = session.scalars(
        select(Post).where(
            Post.status == "publishing",
            or_(Post.publishing_started_at.is_(None), Post.publishing_started_at < cutoff),
        )
    ).all()

    failed = 0
    for post in stale:
        post.retry_count = int(post.retry_count or 0) + 1
        if post.retry_count >= int(post.max_retries):
            post.status = "failed"
            failed += 1
        else:
            post.status = "scheduled"
            post.scheduled_for = post.scheduled_for or current
        post.last_error = STALE_PUBLISHING_MESSAGE
        post.updated_at = current
    session.commit()

    if stale:
        logger.warning("maintenance_stale_publishing_requeued", posts=len(stale), failed=failed)
    return MaintenanceResult(
        task="requeue_stale_publishing",
        affected=len(stale),
        details={"requeued": len(stale) - failed, "failed": failed},
    )


MAINTENANCE_TASKS: Dict[str, Callable[..., MaintenanceResult]] = {
    "check_trials": check_trials,
    "cleanup_old_data": cleanup_old_data,
    "reset_daily_limits": reset_daily_limits,
    "requeue_stale_publishing": requeue_stale_publishing,
}


def run_maintenance_task(session: Session, task: str, *, now: Optional[datetime] = None) -> MaintenanceResult:
    job = MAINTENANCE_TASKS.get(task)
    if job is None:
        raise LookupError(f"Unknown maintenance task: {task}")
    return job(session, now=now)
