"""Platform connection routes. Credentials go in, never come back out."""

from __future__ import annotations

from typing import List, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from crosspost.auth.dependencies import require_auth_context, require_role
from crosspost.auth.tokens import AuthContext
from crosspost.connections.service import (
    ConnectionLimitError,
    ConnectionNotFoundError,
    add_connection,
    get_connection,
    list_connections,
    pause_connection,
    refresh_connection_credentials,
    remove_connection,
    resume_connection,
    to_view,
    verify_connection,
)
from crosspost.schemas.connections import ConnectionCreateRequest, ConnectionRefreshRequest, ConnectionResponse
from crosspost.storage.db import get_session
from crosspost.storage.models import Connection


router = APIRouter(prefix="/connections", tags=["connections"])


def _to_response(connection: Connection) -> ConnectionResponse:
    view = to_view(connection)
    return ConnectionResponse(
        id=view.id,
        platform=view.platform,
        platform_username=view.platform_username,
        status=view.status,
        posts_today=view.posts_today,
        last_used_at=view.last_used_at,
        last_verified_at=view.last_verified_at,
        last_error=view.last_error,
    )


def _raise_for(exc: Exception) -> NoReturn:
    if isinstance(exc, ConnectionNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConnectionLimitError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("", response_model=List[ConnectionResponse])
def list_connections_endpoint(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> List[ConnectionResponse]:
    return [_to_response(row) for row in list_connections(session, tenant_id=auth.tenant_id)]


@router.post("", response_model=ConnectionResponse, status_code=201)
def add_connection_endpoint(
    payload: ConnectionCreateRequest,
    auth: AuthContext = Depends(require_role("owner", "admin")),
    session: Session = Depends(get_session),
) -> ConnectionResponse:
    try:
        connection = add_connection(
            session,
            tenant_id=auth.tenant_id,
            platform_name=payload.platform,
            platform_user_id=payload.platform_user_id,
            platform_username=payload.platform_username,
            credentials=payload.credentials.model_dump(exclude_none=True),
            token_expires_at=payload.token_expires_at,
        )
    except (ConnectionLimitError, ValueError) as exc:
        _raise_for(exc)
    return _to_response(connection)


@router.get("/{connection_id}", response_model=ConnectionResponse)
def get_connection_endpoint(
    connection_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> ConnectionResponse:
    try:
        connection = get_connection(session, tenant_id=auth.tenant_id, connection_id=connection_id)
    except ConnectionNotFoundError as exc:
        _raise_for(exc)
    return _to_response(connection)


@router.delete("/{connection_id}", status_code=204)
def remove_connection_endpoint(
    connection_id: str,
    auth: AuthContext = Depends(require_role("owner", "admin")),
    session: Session = Depends(get_session),
) -> Response:
    try:
        remove_connection(session, tenant_id=auth.tenant_id, connection_id=connection_id)
    except ConnectionNotFoundError as exc:
        _raise_for(exc)
    return Response(status_code=204)


@router.post("/{connection_id}/pause", response_model=ConnectionResponse)
def pause_connection_endpoint(
    connection_id: str,
    auth: AuthContext = Depends(require_role("owner", "admin")),
    session: Session = Depends(get_session),
) -> ConnectionResponse:
    try:
        connection = pause_connection(session, tenant_id=auth.tenant_id, connection_id=connection_id)
    except ConnectionNotFoundError as exc:
        _raise_for(exc)
    return _to_response(connection)


@router.post("/{connection_id}/resume", response_model=ConnectionResponse)
def resume_connection_endpoint(
    connection_id: str,
    auth: AuthContext = Depends(require_role("owner", "admin")),
    session: Session = Depends(get_session),
) -> ConnectionResponse:
    try:
        connection = resume_connection(session, tenant_id=auth.tenant_id, connection_id=connection_id)
    except (ConnectionNotFoundError, ConnectionLimitError) as exc:
        _raise_for(exc)
    return _to_response(connection)


@router.post("/{connection_id}/refresh", response_model=ConnectionResponse)
def refresh_connection_endpoint(
    connection_id: str,
    payload: ConnectionRefreshRequest,
    auth: AuthContext = Depends(require_role("owner", "admin")),
    session: Session = Depends(get_session),
) -> ConnectionResponse:
    try:
        connection = refresh_connection_credentials(
            session,
            tenant_id=auth.tenant_id,
            connection_id=connection_id,
            credentials=payload.credentials.model_dump(exclude_none=True),
            token_expires_at=payload.token_expires_at,
        )
    except (ConnectionNotFoundError, ValueError) as exc:
        _raise_for(exc)
    return _to_response(connection)


@router.post("/{connection_id}/verify", response_model=ConnectionResponse)
def verify_connection_endpoint(
    connection_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> ConnectionResponse:
    try:
        connection = verify_connection(session, tenant_id=auth.tenant_id, connection_id=connection_id)
    except ConnectionNotFoundError as exc:
        _raise_for(exc)
    return _to_response(connection)
