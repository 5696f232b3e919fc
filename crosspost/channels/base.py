"""Shared dispatcher contracts and HTTP plumbing."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Protocol, Sequence

import httpx

from crosspost.core.config import get_settings
from crosspost.core.logger import get_logger


logger = get_logger("crosspost.channels")

ERROR_DETAIL_MAX_CHARS = 300


class DispatchError(RuntimeError):
    """Raised inside a dispatcher when the provider rejects a request."""


@dataclass(frozen=True)
class PlatformCredentials:
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    webhook_url: Optional[str] = None
    bot_token: Optional[str] = None
    channel_id: Optional[str] = None
    identifier: Optional[str] = None
    password: Optional[str] = None
    instance_url: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        present = sorted(name for name, value in vars(self).items() if value)
        return f"PlatformCredentials(fields={present})"


@dataclass(frozen=True)
class DispatchResult:
    platform: str
    success: bool
    platform_post_id: Optional[str] = None
    platform_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "success": self.success,
            "platform_post_id": self.platform_post_id,
            "platform_url": self.platform_url,
            "error": self.error,
        }


class Dispatcher(Protocol):
    platform: str

    def publish(
        self,
        content: str,
        credentials: PlatformCredentials,
        media_urls: Optional[Sequence[str]] = None,
    ) -> DispatchResult:
        raise NotImplementedError


def provider_error(response: httpx.Response) -> str:
    """Best-effort extraction of the provider's own error text."""

    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("description", "message", "error_description", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    detail = response.text.strip()
    if len(detail) > ERROR_DETAIL_MAX_CHARS:
        detail = detail[:ERROR_DETAIL_MAX_CHARS] + "..."
    return detail or f"HTTP {response.status_code}"


def safe_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise DispatchError(f"Invalid JSON response (HTTP {response.status_code})") from exc
    if not isinstance(payload, dict):
        raise DispatchError("Unexpected response payload format")
    return payload


def ensure_success(response: httpx.Response, *, context: str) -> httpx.Response:
    if response.is_success:
        return response
    raise DispatchError(f"{context} failed ({response.status_code}): {provider_error(response)}")


class HttpDispatcher:
    """Base for dispatchers: owns the HTTP client and never lets an exception escape ``publish``."""

    platform = ""

    def __init__(
        self,
        *,
        client: Optional[httpx.Client] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._client = client
        self._timeout_seconds = timeout_seconds or get_settings().dispatch_timeout_seconds

    @contextmanager
    def http(self) -> Iterator[httpx.Client]:
        if self._client is not None:
            yield self._client
            return
        with httpx.Client(timeout=self._timeout_seconds) as client:
            yield client

    def fail(self, error: str) -> DispatchResult:
        return DispatchResult(platform=self.platform, success=False, error=error)

    def publish(
        self,
        content: str,
        credentials: PlatformCredentials,
        media_urls: Optional[Sequence[str]] = None,
    ) -> DispatchResult:
        try:
            return self._publish(content, credentials, list(media_urls or []))
        except DispatchError as exc:
            return self.fail(str(exc))
        except httpx.TimeoutException:
            return self.fail(f"{self.platform} request timed out after {self._timeout_seconds:g}s")
        except httpx.HTTPError as exc:
            return self.fail(f"{self.platform} network error: {exc}")
        except Exception as exc:
            logger.error("dispatcher_unexpected_error", platform=self.platform, error_type=type(exc).__name__)
            return self.fail(f"{self.platform} dispatch error: {exc}")

    def _publish(self, content: str, credentials: PlatformCredentials, media_urls: list[str]) -> DispatchResult:
        raise NotImplementedError
