"""Telegram Bot API dispatcher."""

from __future__ import annotations

import html
from typing import Any, Dict, Optional

import httpx

from crosspost.channels.base import (
    DispatchError,
    DispatchResult,
    HttpDispatcher,
    PlatformCredentials,
    provider_error,
)
from crosspost.core.config import get_settings


CAPTION_MAX_CHARS = 1024


class TelegramDispatcher(HttpDispatcher):
    platform = "telegram"

    def __init__(self, *, api_base_url: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._api_base_url = (api_base_url or get_settings().telegram_api_base_url).rstrip("/")

    def _call(self, client: httpx.Client, bot_token: str, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = client.post(f"{self._api_base_url}/bot{bot_token}/{method}", json=payload)
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise DispatchError(f"Telegram {method} failed ({response.status_code}): {provider_error(response)}")
        if not body.get("ok"):
            description = body.get("description") or f"HTTP {response.status_code}"
            raise DispatchError(f"Telegram {method} failed: {description}")
        result = body.get("result")
        return result if isinstance(result, dict) else {}

    def _publish(self, content: str, credentials: PlatformCredentials, media_urls: list[str]) -> DispatchResult:
        bot_token = (credentials.bot_token or "").strip()
        chat_id = (credentials.channel_id or "").strip()
        if not bot_token:
            raise DispatchError("Telegram bot token is missing")
        if not chat_id:
            raise DispatchError("Telegram chat id is missing")

        text = html.escape(content, quote=False)
        with self.http() as client:
            if media_urls:
                photo: Dict[str, Any] = {"chat_id": chat_id, "photo": media_urls[0]}
                fits_caption = len(content) <= CAPTION_MAX_CHARS
                if fits_caption:
                    photo.update({"caption": text, "parse_mode": "HTML"})
                result = self._call(client, bot_token, "sendPhoto", photo)
                if not fits_caption:
                    result = self._call(
                        client,
                        bot_token,
                        "sendMessage",
                        {"chat_id": chat_id, "text": text, "parse_mode": "HTML"},
                    )
            else:
                result = self._call(
                    client,
                    bot_token,
                    "sendMessage",
                    {"chat_id": chat_id, "text": text, "parse_mode": "HTML"},
                )

        message_id = result.get("message_id")
        platform_url = None
        if message_id is not None and chat_id.startswith("@"):
            platform_url = f"https://t.me/{chat_id[1:]}/{message_id}"
        return DispatchResult(
            platform=self.platform,
            success=True,
            platform_post_id=str(message_id) if message_id is not None else None,
            platform_url=platform_url,
        )
