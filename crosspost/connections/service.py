"""Connection management: encrypted credential storage and lifecycle actions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from crosspost.billing.plans import check_connection_limit, check_tenant_eligibility
from crosspost.channels.base import PlatformCredentials
from crosspost.core.logger import get_logger
from crosspost.storage.models import Connection, Platform
from crosspost.storage.security import (
    SENSITIVE_FIELDS,
    CredentialDecryptError,
    decrypt_secret,
    encrypt_credential_fields,
    encrypt_secret,
)
from crosspost.tenants.service import get_tenant


logger = get_logger("crosspost.connections")

CREDENTIAL_KEYS = frozenset(SENSITIVE_FIELDS) | {"channel_id", "identifier", "password", "instance_url"}


class ConnectionNotFoundError(LookupError):
    """Raised when a connection id does not resolve within the tenant."""


class ConnectionLimitError(RuntimeError):
    """Raised when the tenant may not add or reactivate a connection."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class ConnectionView:
    id: str
    platform: str
    platform_username: Optional[str]
    status: str
    posts_today: int
    last_used_at: Optional[datetime]
    last_verified_at: Optional[datetime]
    last_error: Optional[str]


def to_view(connection: Connection) -> ConnectionView:
    return ConnectionView(
        id=connection.id,
        platform=connection.platform.name,
        platform_username=connection.platform_username,
        status=connection.status,
        posts_today=int(connection.posts_today or 0),
        last_used_at=connection.last_used_at,
        last_verified_at=connection.last_verified_at,
        last_error=connection.last_error,
    )


def _require_fields(credentials: Mapping[str, Any], *names: str) -> None:
    missing = [name for name in names if not str(credentials.get(name) or "").strip()]
    if missing:
        raise ValueError(f"Missing credential fields: {', '.join(missing)}")


def validate_credentials(auth_type: str, credentials: Mapping[str, Any]) -> None:
    if auth_type == "webhook":
        _require_fields(credentials, "webhook_url")
        if not str(credentials["webhook_url"]).startswith("https://"):
            raise ValueError("Webhook URL must use https")
    elif auth_type == "bot_token":
        _require_fields(credentials, "bot_token", "channel_id")
    elif auth_type == "session":
        if credentials.get("identifier") or credentials.get("password"):
            _require_fields(credentials, "identifier", "password")
        else:
            _require_fields(credentials, "access_token", "instance_url")
    else:
        _require_fields(credentials, "access_token")


def _get_platform(session: Session, name: str) -> Platform:
    platform = session.scalar(select(Platform).where(Platform.name == name.strip().lower()))
    if platform is None or not platform.is_active:
        raise ValueError(f"Unknown platform: {name}")
    return platform


def get_connection(session: Session, *, tenant_id: str, connection_id: str) -> Connection:
    connection = session.scalar(
        select(Connection).where(Connection.id == connection_id, Connection.tenant_id == tenant_id)
    )
    if connection is None:
        raise ConnectionNotFoundError("Connection not found")
    return connection


def list_connections(session: Session, *, tenant_id: str) -> List[Connection]:
    return list(
        session.scalars(
            select(Connection).where(Connection.tenant_id == tenant_id).order_by(Connection.created_at.asc())
        ).all()
    )


def _ensure_may_activate(session: Session, tenant_id: str) -> None:
    tenant = get_tenant(session, tenant_id)
    eligibility = check_tenant_eligibility(tenant)
    if not eligibility.allowed:
        raise ConnectionLimitError(eligibility.message or "Tenant is not eligible")
    limit = check_connection_limit(session, tenant)
    if not limit.allowed:
        raise ConnectionLimitError(limit.message or "Platform limit reached")


def _write_credentials(connection: Connection, credentials: Mapping[str, Any]) -> None:
    for column, value in encrypt_credential_fields(credentials).items():
        setattr(connection, column, value)
    connection.credentials_encrypted = encrypt_secret(json.dumps(dict(credentials), sort_keys=True))
    connection.channel_id = credentials.get("channel_id") or None


def add_connection(
    session: Session,
    *,
    tenant_id: str,
    platform_name: str,
    platform_user_id: str,
    credentials: Mapping[str, Any],
    platform_username: Optional[str] = None,
    token_expires_at: Optional[datetime] = None,
) -> Connection:
    """Store a connection, replacing credentials if the same account is already linked."""

    platform = _get_platform(session, platform_name)
    cleaned = {key: value for key, value in credentials.items() if value}
    validate_credentials(platform.auth_type, cleaned)

    connection = session.scalar(
        select(Connection).where(
            Connection.tenant_id == tenant_id,
            Connection.platform_id == platform.id,
            Connection.platform_user_id == platform_user_id,
        )
    )
    if connection is None or connection.status != "active":
        _ensure_may_activate(session, tenant_id)

    now = datetime.now(timezone.utc)
    if connection is None:
        connection = Connection(tenant_id=tenant_id, platform_id=platform.id, platform_user_id=platform_user_id)
        session.add(connection)
    _write_credentials(connection, cleaned)
    connection.platform_username = platform_username
    connection.token_expires_at = token_expires_at
    connection.status = "active"
    connection.last_error = None
    connection.last_verified_at = now
    connection.updated_at = now
    session.commit()

    logger.info("connection_saved", tenant_id=tenant_id, platform=platform.name, connection_id=connection.id)
    return connection


def remove_connection(session: Session, *, tenant_id: str, connection_id: str) -> None:
    """Hard delete: the encrypted credentials go with the row."""

    connection = get_connection(session, tenant_id=tenant_id, connection_id=connection_id)
    session.delete(connection)
    session.commit()
    logger.info("connection_removed", tenant_id=tenant_id, connection_id=connection_id)


def pause_connection(session: Session, *, tenant_id: str, connection_id: str) -> Connection:
    connection = get_connection(session, tenant_id=tenant_id, connection_id=connection_id)
    connection.status = "paused"
    connection.updated_at = datetime.now(timezone.utc)
    session.commit()
    return connection


def resume_connection(session: Session, *, tenant_id: str, connection_id: str) -> Connection:
    connection = get_connection(session, tenant_id=tenant_id, connection_id=connection_id)
    if connection.status == "active":
        return connection
    _ensure_may_activate(session, tenant_id)
    connection.status = "active"
    connection.updated_at = datetime.now(timezone.utc)
    session.commit()
    return connection


def refresh_connection_credentials(
    session: Session,
    *,
    tenant_id: str,
    connection_id: str,
    credentials: Mapping[str, Any],
    token_expires_at: Optional[datetime] = None,
) -> Connection:
    """Re-encrypt only the supplied fields; untouched secrets keep their ciphertext."""

    connection = get_connection(session, tenant_id=tenant_id, connection_id=connection_id)
    updates = {key: value for key, value in credentials.items() if value}
    if not updates:
        raise ValueError("No credential fields supplied")

    for field in SENSITIVE_FIELDS:
        if field in updates:
            setattr(connection, f"{field}_encrypted", encrypt_secret(str(updates[field])))
    if "channel_id" in updates:
        connection.channel_id = str(updates["channel_id"])

    try:
        merged = _decrypt_bundle(connection.credentials_encrypted)
    except CredentialDecryptError:
        merged = {}
    merged.update(updates)
    connection.credentials_encrypted = encrypt_secret(json.dumps(merged, sort_keys=True))

    if token_expires_at is not None:
        connection.token_expires_at = token_expires_at
    connection.last_error = None
    connection.updated_at = datetime.now(timezone.utc)
    session.commit()
    return connection


def verify_connection(session: Session, *, tenant_id: str, connection_id: str) -> Connection:
    connection = get_connection(session, tenant_id=tenant_id, connection_id=connection_id)
    now = datetime.now(timezone.utc)
    try:
        load_connection_credentials(connection)
    except CredentialDecryptError:
        connection.last_error = "Credential decrypt failed"
    else:
        connection.last_error = None
        connection.last_verified_at = now
    connection.updated_at = now
    session.commit()
    return connection


def _decrypt_bundle(ciphertext: Optional[str]) -> Dict[str, Any]:
    if not ciphertext:
        return {}
    plaintext = decrypt_secret(ciphertext)
    try:
        bundle = json.loads(plaintext)
    except ValueError as exc:
        raise CredentialDecryptError("Credential bundle is not valid JSON") from exc
    if not isinstance(bundle, dict):
        raise CredentialDecryptError("Credential bundle is not an object")
    return bundle


def load_connection_credentials(connection: Connection) -> PlatformCredentials:
    """Decrypt a connection's secrets. Raises ``CredentialDecryptError`` on any failure."""

    values = _decrypt_bundle(connection.credentials_encrypted)
    for field in SENSITIVE_FIELDS:
        ciphertext = getattr(connection, f"{field}_encrypted")
        if ciphertext:
            values[field] = decrypt_secret(ciphertext)
    if connection.channel_id:
        values["channel_id"] = connection.channel_id

    known = {key: values.pop(key) for key in list(values) if key in CREDENTIAL_KEYS}
    return PlatformCredentials(**known, extra=values)
