"""Bearer token issue/verify for tenant-scoped API access."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import HTTPException, status

from crosspost.core.config import get_settings


DEV_SECRET_KEY = "crosspost-dev-secret-key"


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    tenant_id: str
    role: str
    email: str = ""


def _signing_key() -> str:
    return get_settings().secret_key or DEV_SECRET_KEY


def create_access_token(context: AuthContext) -> tuple[str, int]:
    settings = get_settings()
    expires_in = settings.access_token_exp_minutes * 60
    now = datetime.now(timezone.utc)
    claims = {
        "sub": context.user_id,
        "tenant_id": context.tenant_id,
        "role": context.role,
        "email": context.email,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
    }
    return jwt.encode(claims, _signing_key(), algorithm=settings.jwt_algorithm), expires_in


def decode_access_token(token: str) -> AuthContext:
    settings = get_settings()
    try:
        claims = jwt.decode(token, _signing_key(), algorithms=[settings.jwt_algorithm])
        return AuthContext(
            user_id=str(claims["sub"]),
            tenant_id=str(claims["tenant_id"]),
            role=str(claims.get("role", "owner")),
            email=str(claims.get("email", "")),
        )
    except (jwt.PyJWTError, KeyError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        ) from exc
