"""Slack incoming-webhook dispatcher."""

from __future__ import annotations

from typing import Any, Dict, List

from crosspost.channels.base import (
    DispatchError,
    DispatchResult,
    HttpDispatcher,
    PlatformCredentials,
    ensure_success,
)


MAX_IMAGE_BLOCKS = 4


def build_payload(content: str, media_urls: List[str]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"text": content}
    if media_urls:
        blocks: List[Dict[str, Any]] = [{"type": "section", "text": {"type": "mrkdwn", "text": content}}]
        for url in media_urls[:MAX_IMAGE_BLOCKS]:
            blocks.append({"type": "image", "image_url": url, "alt_text": "attached image"})
        payload["blocks"] = blocks
    return payload


class SlackDispatcher(HttpDispatcher):
    platform = "slack"

    def _publish(self, content: str, credentials: PlatformCredentials, media_urls: list[str]) -> DispatchResult:
        webhook_url = (credentials.webhook_url or "").strip()
        if not webhook_url:
            raise DispatchError("Slack webhook URL is missing")

        with self.http() as client:
            response = client.post(webhook_url, json=build_payload(content, media_urls))
        ensure_success(response, context="Slack webhook")
        return DispatchResult(platform=self.platform, success=True)
