"""structlog JSON logging with request/tenant context and credential redaction."""

from __future__ import annotations

import logging
from typing import Any

import structlog

from crosspost.core.config import get_settings


# Keys that may carry decrypted platform credentials.
SECRET_FIELDS = frozenset(
    {
        "access_token",
        "refresh_token",
        "bot_token",
        "webhook_url",
        "password",
        "credentials",
        "authorization",
    }
)
REDACTED = "[redacted]"

_CONFIGURED = False


def add_service_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    del logger, method_name
    settings = get_settings()
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("env", settings.env)
    event_dict.setdefault("request_id", None)
    event_dict.setdefault("tenant_id", None)
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    del logger, method_name
    for key in SECRET_FIELDS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging() -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    level = logging.getLevelName(get_settings().log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service_context,
            redact_secrets,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def bind_request_context(request_id: str, tenant_id: str | None = None) -> None:
    structlog.contextvars.bind_contextvars(request_id=request_id, tenant_id=tenant_id)


def bind_tenant(tenant_id: str) -> None:
    """Attach the authenticated tenant to every log line of the current request."""

    structlog.contextvars.bind_contextvars(tenant_id=tenant_id)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
