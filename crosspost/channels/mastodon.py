"""Mastodon dispatcher: upload media, then create the status."""

from __future__ import annotations

import re
from typing import Any, Dict, List

import httpx

from crosspost.channels.base import (
    DispatchError,
    DispatchResult,
    HttpDispatcher,
    PlatformCredentials,
    ensure_success,
    safe_json,
)


MAX_ATTACHMENTS = 4


def normalize_instance(instance_url: str) -> str:
    host = re.sub(r"^https?://", "", instance_url.strip()).rstrip("/")
    if not host:
        raise DispatchError("Mastodon instance URL is missing")
    return f"https://{host}"


class MastodonDispatcher(HttpDispatcher):
    platform = "mastodon"

    def _upload_media(self, client: httpx.Client, base_url: str, headers: Dict[str, str], media_url: str) -> str:
        media = client.get(media_url)
        ensure_success(media, context="Media download")
        filename = media_url.rstrip("/").split("/")[-1] or "attachment"
        content_type = media.headers.get("content-type", "application/octet-stream").split(";")[0]
        response = client.post(
            f"{base_url}/api/v2/media",
            headers=headers,
            files={"file": (filename, media.content, content_type)},
        )
        ensure_success(response, context="Mastodon media upload")
        media_id = safe_json(response).get("id")
        if not media_id:
            raise DispatchError("Mastodon media upload returned no id")
        return str(media_id)

    def _publish(self, content: str, credentials: PlatformCredentials, media_urls: list[str]) -> DispatchResult:
        access_token = (credentials.access_token or "").strip()
        if not access_token:
            raise DispatchError("Mastodon access token is missing")
        base_url = normalize_instance(credentials.instance_url or "")
        headers = {"Authorization": f"Bearer {access_token}"}

        with self.http() as client:
            media_ids: List[str] = [
                self._upload_media(client, base_url, headers, url) for url in media_urls[:MAX_ATTACHMENTS]
            ]
            payload: Dict[str, Any] = {"status": content, "visibility": "public"}
            if media_ids:
                payload["media_ids"] = media_ids
            spoiler = credentials.extra.get("spoiler_text")
            if spoiler:
                payload["spoiler_text"] = str(spoiler)
            response = client.post(f"{base_url}/api/v1/statuses", headers=headers, json=payload)
            ensure_success(response, context="Mastodon status")
            status = safe_json(response)

        return DispatchResult(
            platform=self.platform,
            success=True,
            platform_post_id=str(status["id"]) if status.get("id") else None,
            platform_url=status.get("url"),
        )
