"""FastAPI dependencies resolving the calling tenant from the bearer token."""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from crosspost.auth.tokens import AuthContext, decode_access_token
from crosspost.core.logger import bind_tenant


AUTH_CONTEXT_KEY = "auth_context"


def extract_bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization")
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def require_auth_context(request: Request) -> AuthContext:
    cached = getattr(request.state, AUTH_CONTEXT_KEY, None)
    if cached is not None:
        return cached
    token = extract_bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    auth = decode_access_token(token)
    setattr(request.state, AUTH_CONTEXT_KEY, auth)
    bind_tenant(auth.tenant_id)
    return auth


def require_role(*allowed_roles: str) -> Callable[[AuthContext], AuthContext]:
    allowed = set(allowed_roles)

    def dependency(auth: AuthContext = Depends(require_auth_context)) -> AuthContext:
        if auth.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role",
            )
        return auth

    return dependency
