"""Post composition and lifecycle outside of publishing."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crosspost.billing.plans import check_post_limit, check_tenant_eligibility, record_post_usage
from crosspost.brands.service import resolve_brand
from crosspost.content.adapter import AdaptOptions, adapt_for_platforms, brand_from_model
from crosspost.content.rules import rule_from_model
from crosspost.core.config import get_settings
from crosspost.core.logger import get_logger
from crosspost.storage.models import Platform, Post
from crosspost.tenants.service import get_tenant


logger = get_logger("crosspost.posts")

EDITABLE_STATUSES = frozenset({"draft", "scheduled", "paused", "failed"})
POST_STATUSES = frozenset({"draft", "scheduled", "publishing", "published", "failed", "paused"})
MAX_CONTENT_CHARS = 10000


class PostNotFoundError(LookupError):
    """Raised when a post id does not resolve within the tenant."""


class PostNotEditableError(RuntimeError):
    """Raised when a post has left the editable states."""


class PostQuotaError(RuntimeError):
    """Raised when the tenant may not create another post."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def _normalize_targets(platforms: Sequence[str]) -> List[str]:
    targets: List[str] = []
    for name in platforms:
        key = str(name).strip().lower()
        if key and key not in targets:
            targets.append(key)
    if not targets:
        raise ValueError("At least one target platform is required")
    return targets


def _load_platforms(session: Session, targets: List[str]) -> List[Platform]:
    rows = {
        row.name: row
        for row in session.scalars(
            select(Platform).where(Platform.name.in_(targets), Platform.is_active.is_(True))
        ).all()
    }
    unknown = [name for name in targets if name not in rows]
    if unknown:
        raise ValueError(f"Unknown platforms: {', '.join(unknown)}")
    return [rows[name] for name in targets]


def create_post(
    session: Session,
    *,
    tenant_id: str,
    content: str,
    platforms: Sequence[str],
    media_urls: Sequence[str] = (),
    scheduled_for: Optional[datetime] = None,
    brand_id: Optional[str] = None,
    created_by: Optional[str] = None,
    options: Optional[AdaptOptions] = None,
    now: Optional[datetime] = None,
) -> Post:
    """Compose a post and store its adapted text for every target platform."""

    text = content.strip()
    if not text:
        raise ValueError("Post content is required")
    if len(text) > MAX_CONTENT_CHARS:
        raise ValueError(f"Post content exceeds {MAX_CONTENT_CHARS} characters")
    targets = _normalize_targets(platforms)
    platform_rows = _load_platforms(session, targets)

    current = now or datetime.now(timezone.utc)
    tenant = get_tenant(session, tenant_id)
    eligibility = check_tenant_eligibility(tenant, current)
    if not eligibility.allowed:
        raise PostQuotaError(eligibility.message or "Tenant is not eligible")
    limit = check_post_limit(session, tenant, current)
    if not limit.allowed:
        raise PostQuotaError(limit.message or "Monthly post limit reached")

    brand = resolve_brand(session, tenant_id=tenant_id, brand_id=brand_id)
    media = [url.strip() for url in media_urls if url and url.strip()]
    adapted = adapt_for_platforms(
        text,
        [rule_from_model(row) for row in platform_rows],
        brand_from_model(brand),
        options,
        media_count=len(media),
    )

    post = Post(
        tenant_id=tenant_id,
        created_by=created_by,
        brand_id=brand.id if brand is not None else None,
        original_content=text,
        platform_content_json=json.dumps({name: item.to_dict() for name, item in adapted.items()}, sort_keys=True),
        target_platforms_json=json.dumps(targets),
        media_urls_json=json.dumps(media),
        status="scheduled" if scheduled_for is not None else "draft",
        scheduled_for=scheduled_for,
        max_retries=get_settings().scheduler_max_retries,
    )
    session.add(post)
    record_post_usage(session, tenant_id, current)
    session.commit()

    logger.info(
        "post_created",
        post_id=post.id,
        tenant_id=tenant_id,
        status=post.status,
        platforms=targets,
        truncated=[name for name, item in adapted.items() if item.truncated],
    )
    return post


def get_post(session: Session, *, tenant_id: str, post_id: str) -> Post:
    post = session.scalar(select(Post).where(Post.id == post_id, Post.tenant_id == tenant_id))
    if post is None:
        raise PostNotFoundError("Post not found")
    return post


def list_posts(
    session: Session,
    *,
    tenant_id: str,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[List[Post], int]:
    if status is not None and status not in POST_STATUSES:
        raise ValueError(f"Unknown post status: {status}")
    filters = [Post.tenant_id == tenant_id]
    if status is not None:
        filters.append(Post.status == status)
    total = session.scalar(select(func.count()).select_from(Post).where(*filters))
    rows = session.scalars(
        select(Post).where(*filters).order_by(Post.created_at.desc(), Post.id.desc()).limit(limit).offset(offset)
    ).all()
    return list(rows), int(total or 0)


def schedule_post(
    session: Session,
    *,
    tenant_id: str,
    post_id: str,
    scheduled_for: datetime,
) -> Post:
    """Put an editable post (back) on the schedule with a fresh retry budget."""

    post = get_post(session, tenant_id=tenant_id, post_id=post_id)
    if post.status not in EDITABLE_STATUSES:
        raise PostNotEditableError(f"Post in status {post.status} cannot be rescheduled")
    post.status = "scheduled"
    post.scheduled_for = scheduled_for
    post.retry_count = 0
    post.last_error = None
    post.updated_at = datetime.now(timezone.utc)
    session.commit()
    return post


def delete_post(session: Session, *, tenant_id: str, post_id: str) -> None:
    post = get_post(session, tenant_id=tenant_id, post_id=post_id)
    if post.status not in EDITABLE_STATUSES:
        raise PostNotEditableError(f"Post in status {post.status} cannot be deleted")
    session.delete(post)
    session.commit()
    logger.info("post_deleted", post_id=post_id, tenant_id=tenant_id)
