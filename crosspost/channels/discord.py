"""Discord webhook dispatcher."""

from __future__ import annotations

from crosspost.channels.base import (
    DispatchError,
    DispatchResult,
    HttpDispatcher,
    PlatformCredentials,
    ensure_success,
)


MAX_EMBEDS = 4


class DiscordDispatcher(HttpDispatcher):
    platform = "discord"

    def _publish(self, content: str, credentials: PlatformCredentials, media_urls: list[str]) -> DispatchResult:
        webhook_url = (credentials.webhook_url or "").strip()
        if not webhook_url:
            raise DispatchError("Discord webhook URL is missing")

        payload: dict = {"content": content}
        if media_urls:
            payload["embeds"] = [{"image": {"url": url}} for url in media_urls[:MAX_EMBEDS]]

        with self.http() as client:
            response = client.post(webhook_url, params={"wait": "true"}, json=payload)
        ensure_success(response, context="Discord webhook")

        message_id = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("id"):
                message_id = str(body["id"])
        return DispatchResult(platform=self.platform, success=True, platform_post_id=message_id)
