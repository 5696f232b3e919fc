"""Publish-now and result routes."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from crosspost.auth.dependencies import require_auth_context
from crosspost.auth.tokens import AuthContext
from crosspost.channels.registry import DispatcherRegistry, get_registry
from crosspost.publishing.service import get_publish_results, publish_post
from crosspost.schemas.publishing import PlatformResultResponse, PostResultRecord, PublishResponse
from crosspost.storage.db import get_session


router = APIRouter(prefix="/posts", tags=["publishing"])

# Outcomes that carry per-platform detail are returned with a body; the rest are plain errors.
OUTCOME_STATUS_CODES = {
    "published": status.HTTP_200_OK,
    "already_published": status.HTTP_200_OK,
    "failed": status.HTTP_502_BAD_GATEWAY,
    "no_active_connections": status.HTTP_409_CONFLICT,
}
OUTCOME_ERRORS = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "in_progress": status.HTTP_409_CONFLICT,
    "blocked": status.HTTP_403_FORBIDDEN,
    "insufficient_credits": status.HTTP_402_PAYMENT_REQUIRED,
}


@router.post("/{post_id}/publish", response_model=PublishResponse)
def publish_post_endpoint(
    post_id: str,
    response: Response,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    registry: DispatcherRegistry = Depends(get_registry),
) -> PublishResponse:
    outcome = publish_post(session, tenant_id=auth.tenant_id, post_id=post_id, registry=registry)
    if outcome.status in OUTCOME_ERRORS:
        raise HTTPException(status_code=OUTCOME_ERRORS[outcome.status], detail=outcome.message)

    response.status_code = OUTCOME_STATUS_CODES.get(outcome.status, status.HTTP_200_OK)
    return PublishResponse(
        post_id=outcome.post_id,
        status=outcome.status,
        post_status=outcome.post_status,
        results=[PlatformResultResponse(**result.to_dict()) for result in outcome.results],
        credits_charged=outcome.credits_charged,
        credits_refunded=outcome.credits_refunded,
        new_balance=outcome.new_balance,
        message=outcome.message,
    )


@router.get("/{post_id}/results", response_model=List[PostResultRecord])
def post_results_endpoint(
    post_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> List[PostResultRecord]:
    try:
        rows = get_publish_results(session, tenant_id=auth.tenant_id, post_id=post_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return [
        PostResultRecord(
            id=row.id,
            platform=row.platform,
            status=row.status,
            platform_post_id=row.platform_post_id,
            platform_url=row.platform_url,
            character_count=row.character_count,
            error_message=row.error_message,
            posted_at=row.posted_at,
        )
        for row in rows
    ]
