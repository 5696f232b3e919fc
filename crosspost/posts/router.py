"""Post composition routes."""

from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from crosspost.auth.dependencies import require_auth_context, require_role
from crosspost.auth.tokens import AuthContext
from crosspost.brands.service import BrandNotFoundError
from crosspost.content.adapter import AdaptOptions
from crosspost.posts.service import (
    PostNotEditableError,
    PostNotFoundError,
    PostQuotaError,
    create_post,
    delete_post,
    get_post,
    list_posts,
    schedule_post,
)
from crosspost.schemas.posts import PostCreateRequest, PostListResponse, PostResponse, PostScheduleRequest
from crosspost.storage.db import get_session
from crosspost.storage.models import Post
from crosspost.tenants.service import TenantNotFoundError


router = APIRouter(prefix="/posts", tags=["posts"])


def to_post_response(post: Post) -> PostResponse:
    return PostResponse(
        id=post.id,
        status=post.status,
        original_content=post.original_content,
        platforms=json.loads(post.target_platforms_json or "[]"),
        platform_content=json.loads(post.platform_content_json or "{}"),
        media_urls=json.loads(post.media_urls_json or "[]"),
        scheduled_for=post.scheduled_for,
        published_at=post.published_at,
        retry_count=post.retry_count,
        last_error=post.last_error,
        credits_charged=post.credits_charged,
        credits_refunded=post.credits_refunded,
        created_at=post.created_at,
    )


@router.post("", response_model=PostResponse, status_code=201)
def create_post_endpoint(
    payload: PostCreateRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> PostResponse:
    try:
        post = create_post(
            session,
            tenant_id=auth.tenant_id,
            content=payload.content,
            platforms=payload.platforms,
            media_urls=payload.media_urls,
            scheduled_for=payload.scheduled_for,
            brand_id=payload.brand_id,
            created_by=auth.user_id,
            options=AdaptOptions(
                include_hashtags=payload.include_hashtags,
                include_cta=payload.include_cta,
                include_footer=payload.include_footer,
            ),
        )
    except PostQuotaError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message) from exc
    except (BrandNotFoundError, TenantNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return to_post_response(post)


@router.get("", response_model=PostListResponse)
def list_posts_endpoint(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> PostListResponse:
    try:
        rows, total = list_posts(session, tenant_id=auth.tenant_id, status=status_filter, limit=limit, offset=offset)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return PostListResponse(items=[to_post_response(row) for row in rows], total=total, limit=limit, offset=offset)


@router.get("/{post_id}", response_model=PostResponse)
def get_post_endpoint(
    post_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> PostResponse:
    try:
        post = get_post(session, tenant_id=auth.tenant_id, post_id=post_id)
    except PostNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return to_post_response(post)


@router.post("/{post_id}/schedule", response_model=PostResponse)
def schedule_post_endpoint(
    post_id: str,
    payload: PostScheduleRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> PostResponse:
    try:
        post = schedule_post(
            session,
            tenant_id=auth.tenant_id,
            post_id=post_id,
            scheduled_for=payload.scheduled_for,
        )
    except PostNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PostNotEditableError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return to_post_response(post)


@router.delete("/{post_id}", status_code=204)
def delete_post_endpoint(
    post_id: str,
    auth: AuthContext = Depends(require_role("owner", "admin")),
    session: Session = Depends(get_session),
) -> Response:
    try:
        delete_post(session, tenant_id=auth.tenant_id, post_id=post_id)
    except PostNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PostNotEditableError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return Response(status_code=204)
