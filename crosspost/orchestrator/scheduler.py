"""Scheduled-post driver: picks due posts and hands them to the publish orchestrator."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from crosspost.billing.plans import check_tenant_eligibility
from crosspost.channels.registry import DispatcherRegistry
from crosspost.core.config import get_settings
from crosspost.core.logger import get_logger
from crosspost.core.metrics import record_scheduler_run
from crosspost.core.observability import capture_exception, sentry_scope
from crosspost.orchestrator.locks import CronLockManager
from crosspost.publishing.service import PublishOutcome, publish_post
from crosspost.storage.models import Post, Tenant, TenantEvent


SCHEDULER_LOCK_SCOPE = "scheduler"
Publisher = Callable[..., PublishOutcome]

logger = get_logger("crosspost.orchestrator.scheduler")


def _json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True, default=str)


@dataclass(frozen=True)
class PostRunSummary:
    post_id: str
    tenant_id: Optional[str]
    status: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SchedulerRunResult:
    due: int
    published: int
    retried: int
    failed: int
    paused: int
    skipped_locked: bool = False
    runs: List[PostRunSummary] = field(default_factory=list)


class PostScheduler:
    """Publish every due scheduled post once, in due-time order."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        lock_manager: CronLockManager,
        registry: Optional[DispatcherRegistry] = None,
        publisher: Optional[Publisher] = None,
    ) -> None:
        self._session_factory = session_factory
        self._lock_manager = lock_manager
        self._registry = registry
        self._publisher = publisher or publish_post

    def list_due_post_ids(self, *, now: datetime, limit: int) -> List[str]:
        with self._session_factory() as session:
            statement = (
                select(Post.id)
                .where(
                    Post.status == "scheduled",
                    Post.scheduled_for.is_not(None),
                    Post.scheduled_for <= now,
                    Post.retry_count < Post.max_retries,
                )
                .order_by(Post.scheduled_for.asc(), Post.created_at.asc())
                .limit(max(1, limit))
            )
            return [str(post_id) for post_id in session.scalars(statement).all()]

    def run_once(self, *, now: Optional[datetime] = None, limit: Optional[int] = None) -> SchedulerRunResult:
        current = now or datetime.now(timezone.utc)
        batch = limit if limit is not None else get_settings().scheduler_batch_size

        lock = self._lock_manager.acquire(SCHEDULER_LOCK_SCOPE)
        if lock is None:
            record_scheduler_run(outcome="skipped_locked")
            logger.info("scheduler_skipped_locked")
            return SchedulerRunResult(due=0, published=0, retried=0, failed=0, paused=0, skipped_locked=True)

        try:
            post_ids = self.list_due_post_ids(now=current, limit=batch)
            runs = [self._run_post(post_id, current) for post_id in post_ids]
        finally:
            lock.release()

        counts = Counter(run.status for run in runs)
        result = SchedulerRunResult(
            due=len(post_ids),
            published=counts.get("published", 0),
            retried=counts.get("retry_scheduled", 0),
            failed=counts.get("failed", 0),
            paused=counts.get("paused", 0),
            runs=runs,
        )
        record_scheduler_run(outcome="executed")
        logger.info(
            "scheduler_run_finished",
            due=result.due,
            published=result.published,
            retried=result.retried,
            failed=result.failed,
            paused=result.paused,
        )
        return result

    def _run_post(self, post_id: str, now: datetime) -> PostRunSummary:
        with self._session_factory() as session:
            post = session.scalar(select(Post).where(Post.id == post_id))
            if post is None or post.status != "scheduled":
                return PostRunSummary(post_id=post_id, tenant_id=None, status="skipped")

            tenant_id = post.tenant_id
            tenant = session.scalar(select(Tenant).where(Tenant.id == tenant_id))
            if tenant is None:
                post.status = "failed"
                post.last_error = "Tenant not found"
                post.updated_at = now
                session.commit()
                logger.warning("scheduler_post_orphaned", post_id=post_id, tenant_id=tenant_id)
                return PostRunSummary(
                    post_id=post_id,
                    tenant_id=tenant_id,
                    status="failed",
                    details={"error": "Tenant not found"},
                )

            decision = check_tenant_eligibility(tenant, now)
            if not decision.allowed:
                return self._pause(session, post, tenant, decision.reason, decision.message, now)

            with sentry_scope(tenant_id=tenant_id):
                return self._publish(session, post_id=post_id, tenant_id=tenant_id, now=now)

    def _pause(
        self,
        session: Session,
        post: Post,
        tenant: Tenant,
        reason: Optional[str],
        message: Optional[str],
        now: datetime,
    ) -> PostRunSummary:
        post.status = "paused"
        post.last_error = message
        post.updated_at = now
        if reason == "trial_expired" and tenant.subscription_status != "trial_expired":
            tenant.subscription_status = "trial_expired"
            tenant.updated_at = now
        self._record_event(session, post, "paused", {"reason": reason})
        session.commit()
        logger.info("scheduler_post_paused", post_id=post.id, tenant_id=tenant.id, reason=reason)
        return PostRunSummary(post_id=post.id, tenant_id=tenant.id, status="paused", details={"reason": reason})

    def _publish(self, session: Session, *, post_id: str, tenant_id: str, now: datetime) -> PostRunSummary:
        error: Optional[str] = None
        try:
            outcome = self._publisher(
                session,
                tenant_id=tenant_id,
                post_id=post_id,
                registry=self._registry,
                now=now,
            )
        except Exception as exc:
            session.rollback()
            capture_exception(exc)
            logger.error("scheduler_publish_crashed", post_id=post_id, tenant_id=tenant_id, error=str(exc))
            outcome = None
            error = str(exc)

        if outcome is not None and outcome.status == "published":
            return PostRunSummary(
                post_id=post_id,
                tenant_id=tenant_id,
                status="published",
                details={"credits_charged": outcome.credits_charged},
            )
        if outcome is not None and outcome.status in {"already_published", "in_progress"}:
            return PostRunSummary(
                post_id=post_id,
                tenant_id=tenant_id,
                status="skipped",
                details={"reason": outcome.status},
            )

        if outcome is not None:
            error = outcome.message
        return self._retry_or_fail(session, post_id=post_id, tenant_id=tenant_id, error=error, now=now)

    def _retry_or_fail(
        self,
        session: Session,
        *,
        post_id: str,
        tenant_id: str,
        error: Optional[str],
        now: datetime,
    ) -> PostRunSummary:
        post = session.scalar(select(Post).where(Post.id == post_id))
        if post is None:
            return PostRunSummary(post_id=post_id, tenant_id=tenant_id, status="skipped")

        post.retry_count = int(post.retry_count or 0) + 1
        exhausted = post.retry_count >= int(post.max_retries)
        post.status = "failed" if exhausted else "scheduled"
        post.last_error = error
        post.updated_at = now
        status = "failed" if exhausted else "retry_scheduled"
        self._record_event(session, post, status, {"retry_count": post.retry_count, "error": error})
        session.commit()
        logger.warning(
            "scheduler_post_retry" if not exhausted else "scheduler_post_failed",
            post_id=post_id,
            tenant_id=tenant_id,
            retry_count=post.retry_count,
            max_retries=post.max_retries,
        )
        return PostRunSummary(
            post_id=post_id,
            tenant_id=tenant_id,
            status=status,
            details={"retry_count": post.retry_count, "error": error},
        )

    @staticmethod
    def _record_event(session: Session, post: Post, status: str, details: Dict[str, Any]) -> None:
        session.add(
            TenantEvent(
                tenant_id=post.tenant_id,
                event_type="scheduler_post_run",
                post_id=post.id,
                status=status,
                payload_json=_json(details),
            )
        )
