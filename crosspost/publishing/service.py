"""Publish orchestration: charge, dispatch per platform, aggregate, refund."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from crosspost.billing.credits import deduct_credits, get_action_cost, get_balance, refund_credits, select_publish_action
from crosspost.billing.plans import check_tenant_eligibility
from crosspost.channels.base import DispatchResult
from crosspost.channels.registry import DispatcherRegistry, get_registry
from crosspost.connections.service import load_connection_credentials
from crosspost.content.rules import rule_from_model
from crosspost.core.logger import get_logger
from crosspost.core.metrics import record_dispatch, record_post_finalized
from crosspost.core.observability import capture_exception
from crosspost.storage.models import Connection, Platform, Post, PostResult, Tenant, TenantEvent
from crosspost.storage.security import CredentialDecryptError


logger = get_logger("crosspost.publishing")

NO_CONNECTIONS_MESSAGE = "No active connections for target platforms"
DECRYPT_FAILED_MESSAGE = "Credential decrypt failed"


@dataclass(frozen=True)
class PublishOutcome:
    post_id: str
    tenant_id: str
    status: str
    post_status: Optional[str] = None
    results: List[DispatchResult] = field(default_factory=list)
    credits_charged: int = 0
    credits_refunded: int = 0
    new_balance: Optional[int] = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == "published"


def _load_json(raw: Optional[str], default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


def _target_platforms(post: Post) -> List[str]:
    targets = _load_json(post.target_platforms_json, [])
    seen: List[str] = []
    for name in targets:
        key = str(name).strip().lower()
        if key and key not in seen:
            seen.append(key)
    return seen


def _resolve_connections(session: Session, tenant_id: str, targets: List[str]) -> Dict[str, Connection]:
    """Earliest-created active connection per target platform."""

    rows = session.scalars(
        select(Connection)
        .join(Platform, Platform.id == Connection.platform_id)
        .where(
            Connection.tenant_id == tenant_id,
            Connection.status == "active",
            Platform.name.in_(targets),
        )
        .order_by(Connection.created_at.asc(), Connection.id.asc())
    ).all()
    resolved: Dict[str, Connection] = {}
    for connection in rows:
        resolved.setdefault(connection.platform.name, connection)
    return resolved


def _content_for(post: Post, platform: str) -> str:
    adapted = _load_json(post.platform_content_json, {}).get(platform)
    if isinstance(adapted, dict) and adapted.get("content"):
        return str(adapted["content"])
    if isinstance(adapted, str) and adapted:
        return adapted
    return post.original_content


def _dispatch_one(
    connection: Connection,
    *,
    content: str,
    media_urls: List[str],
    registry: DispatcherRegistry,
) -> DispatchResult:
    platform = connection.platform
    rule = rule_from_model(platform)
    if int(connection.posts_today or 0) >= rule.daily_limit:
        return DispatchResult(
            platform=platform.name,
            success=False,
            error=f"Daily rate limit reached for {platform.display_name}. Try again tomorrow.",
        )

    try:
        credentials = load_connection_credentials(connection)
    except CredentialDecryptError:
        logger.warning("credential_decrypt_failed", connection_id=connection.id, platform=platform.name)
        return DispatchResult(platform=platform.name, success=False, error=DECRYPT_FAILED_MESSAGE)

    dispatcher = registry.get(platform.name)
    try:
        return dispatcher.publish(content, credentials, media_urls)
    except Exception as exc:
        # Third-party dispatchers may not honour the no-raise contract.
        logger.error("dispatcher_raised", platform=platform.name, error_type=type(exc).__name__)
        return DispatchResult(platform=platform.name, success=False, error=f"{platform.name} dispatch error: {exc}")


def _record_event(session: Session, post: Post, status: str, payload: Dict[str, Any]) -> None:
    session.add(
        TenantEvent(
            tenant_id=post.tenant_id,
            event_type="post_publish",
            post_id=post.id,
            status=status,
            payload_json=json.dumps(payload, sort_keys=True, default=str),
        )
    )


def _refund(
    session: Session,
    *,
    user_id: str,
    amount: int,
    post_id: str,
    transaction_id: Optional[str],
    reason: str,
) -> int:
    result = refund_credits(
        session,
        user_id=user_id,
        amount=amount,
        reason=reason,
        original_transaction_id=transaction_id,
    )
    if not result.success:
        logger.error("publish_refund_failed", post_id=post_id, error_code=result.error_code)
        return 0
    return amount


def publish_post(
    session: Session,
    *,
    tenant_id: str,
    post_id: str,
    registry: Optional[DispatcherRegistry] = None,
    now: Optional[datetime] = None,
) -> PublishOutcome:
    """Publish one post to every target platform.

    The charge is taken once before any dispatch and given back in full when
    no platform succeeds. A partial success keeps the whole charge.
    """

    registry = registry or get_registry()
    current = now or datetime.now(timezone.utc)

    post = session.scalar(select(Post).where(Post.id == post_id, Post.tenant_id == tenant_id))
    tenant = session.scalar(select(Tenant).where(Tenant.id == tenant_id))
    if post is None or tenant is None:
        return PublishOutcome(post_id=post_id, tenant_id=tenant_id, status="not_found", message="Post not found")
    if post.status == "published":
        return PublishOutcome(
            post_id=post.id,
            tenant_id=tenant_id,
            status="already_published",
            post_status=post.status,
            message="Post already published",
        )
    if post.status == "publishing":
        return PublishOutcome(
            post_id=post.id,
            tenant_id=tenant_id,
            status="in_progress",
            post_status=post.status,
            message="Post is already being published",
        )

    eligibility = check_tenant_eligibility(tenant, current)
    if not eligibility.allowed:
        return PublishOutcome(
            post_id=post.id,
            tenant_id=tenant_id,
            status="blocked",
            post_status=post.status,
            message=eligibility.message or "Tenant is not eligible to publish",
        )

    targets = _target_platforms(post)
    action = select_publish_action(len(targets))
    cost = get_action_cost(action)
    charge = deduct_credits(
        session,
        user_id=tenant.owner_user_id,
        action=action,
        metadata={"post_id": post.id, "tenant_id": tenant_id, "platforms": targets},
    )
    if not charge.success:
        return PublishOutcome(
            post_id=post.id,
            tenant_id=tenant_id,
            status="insufficient_credits",
            post_status=post.status,
            new_balance=get_balance(session, tenant.owner_user_id),
            message=charge.error or "Credit deduction failed",
        )

    post.status = "publishing"
    post.publishing_started_at = current
    post.credits_charged = cost
    post.credits_refunded = 0
    post.updated_at = current
    session.commit()
    logger.info("post_publish_started", post_id=post.id, tenant_id=tenant_id, platforms=targets, cost=cost)

    try:
        return _run_dispatch(
            session,
            post=post,
            tenant=tenant,
            targets=targets,
            cost=cost,
            transaction_id=charge.transaction_id,
            registry=registry,
            now=current,
        )
    except Exception as exc:
        session.rollback()
        logger.error("post_publish_crashed", post_id=post_id, tenant_id=tenant_id, error=str(exc))
        capture_exception(exc)
        _fail_after_crash(
            session,
            post_id=post_id,
            user_id=tenant.owner_user_id,
            cost=cost,
            transaction_id=charge.transaction_id,
            error=str(exc),
        )
        raise


def _run_dispatch(
    session: Session,
    *,
    post: Post,
    tenant: Tenant,
    targets: List[str],
    cost: int,
    transaction_id: Optional[str],
    registry: DispatcherRegistry,
    now: datetime,
) -> PublishOutcome:
    connections = _resolve_connections(session, tenant.id, targets)
    if not connections:
        refunded = _refund(
            session,
            user_id=tenant.owner_user_id,
            amount=cost,
            post_id=post.id,
            transaction_id=transaction_id,
            reason="no_active_connections",
        )
        results = [
            DispatchResult(platform=name, success=False, error=f"No active connection for {name}")
            for name in targets
        ]
        post.status = "failed"
        post.last_error = NO_CONNECTIONS_MESSAGE
        post.credits_refunded = refunded
        post.results_json = json.dumps({r.platform: r.to_dict() for r in results}, sort_keys=True)
        post.updated_at = now
        _record_event(session, post, "no_active_connections", {"refunded": refunded})
        session.commit()
        record_post_finalized(status="failed")
        logger.warning("post_publish_no_connections", post_id=post.id, tenant_id=tenant.id)
        return PublishOutcome(
            post_id=post.id,
            tenant_id=tenant.id,
            status="no_active_connections",
            post_status=post.status,
            results=results,
            credits_charged=cost,
            credits_refunded=refunded,
            new_balance=get_balance(session, tenant.owner_user_id),
            message=NO_CONNECTIONS_MESSAGE,
        )

    media_urls = [str(url) for url in _load_json(post.media_urls_json, [])]
    results: List[DispatchResult] = []
    for platform_name in targets:
        connection = connections.get(platform_name)
        if connection is None:
            result = DispatchResult(
                platform=platform_name,
                success=False,
                error=f"No active connection for {platform_name}",
            )
            results.append(result)
            continue

        content = _content_for(post, platform_name)
        result = _dispatch_one(connection, content=content, media_urls=media_urls, registry=registry)
        if result.success:
            connection.posts_today = int(connection.posts_today or 0) + 1
            connection.last_used_at = now
        session.add(
            PostResult(
                post_id=post.id,
                connection_id=connection.id,
                platform=platform_name,
                status="published" if result.success else "failed",
                platform_post_id=result.platform_post_id,
                platform_url=result.platform_url,
                content_sent=content,
                character_count=len(content),
                error_message=result.error,
                posted_at=now if result.success else None,
            )
        )
        record_dispatch(platform=platform_name, success=result.success)
        results.append(result)
    session.commit()

    succeeded = [result for result in results if result.success]
    refunded = 0
    if succeeded:
        post.status = "published"
        post.published_at = now
        post.last_error = None
        message = f"Published to {len(succeeded)}/{len(results)} platforms"
    else:
        refunded = _refund(
            session,
            user_id=tenant.owner_user_id,
            amount=cost,
            post_id=post.id,
            transaction_id=transaction_id,
            reason="all_platforms_failed",
        )
        post.status = "failed"
        post.last_error = "; ".join(f"{r.platform}: {r.error}" for r in results if r.error)
        message = "All platforms failed"

    post.credits_refunded = refunded
    post.results_json = json.dumps({r.platform: r.to_dict() for r in results}, sort_keys=True)
    post.updated_at = now
    _record_event(
        session,
        post,
        post.status,
        {"succeeded": [r.platform for r in succeeded], "charged": cost, "refunded": refunded},
    )
    session.commit()
    record_post_finalized(status=post.status)
    logger.info(
        "post_publish_finished",
        post_id=post.id,
        tenant_id=tenant.id,
        status=post.status,
        succeeded=len(succeeded),
        attempted=len(results),
        refunded=refunded,
    )
    return PublishOutcome(
        post_id=post.id,
        tenant_id=tenant.id,
        status=post.status,
        post_status=post.status,
        results=results,
        credits_charged=cost,
        credits_refunded=refunded,
        new_balance=get_balance(session, tenant.owner_user_id),
        message=message,
    )


def _fail_after_crash(
    session: Session,
    *,
    post_id: str,
    user_id: str,
    cost: int,
    transaction_id: Optional[str],
    error: str,
) -> None:
    try:
        refunded = _refund(
            session,
            user_id=user_id,
            amount=cost,
            post_id=post_id,
            transaction_id=transaction_id,
            reason="publish_error",
        )
        post = session.scalar(select(Post).where(Post.id == post_id))
        if post is not None:
            post.status = "failed"
            post.last_error = error[:500]
            post.credits_refunded = refunded
            post.updated_at = datetime.now(timezone.utc)
            session.commit()
    except Exception as cleanup_exc:
        session.rollback()
        logger.error("post_publish_cleanup_failed", post_id=post_id, error=str(cleanup_exc))


def get_publish_results(session: Session, *, tenant_id: str, post_id: str) -> List[PostResult]:
    post = session.scalar(select(Post.id).where(Post.id == post_id, Post.tenant_id == tenant_id))
    if post is None:
        raise LookupError("Post not found")
    return list(
        session.scalars(
            select(PostResult).where(PostResult.post_id == post_id).order_by(PostResult.created_at.asc())
        ).all()
    )
