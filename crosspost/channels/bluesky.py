"""Bluesky (AT Protocol) dispatcher.

Rich-text facets index into the UTF-8 encoding of the post text, so every
offset below is a byte offset, never a character offset.
"""

from __future__ import annotations

from datetime import datetime, timezone
import re
from typing import Any, Dict, List, Optional

import httpx

from crosspost.channels.base import (
    DispatchError,
    DispatchResult,
    HttpDispatcher,
    PlatformCredentials,
    ensure_success,
    safe_json,
)
from crosspost.core.config import get_settings


LINK_PATTERN = re.compile(r"https?://[^\s]+")
TAG_PATTERN = re.compile(r"(?:^|(?<=\s))#(\w+)")
LINK_TRAILING_PUNCTUATION = ".,;:!?)]}'\""
MAX_IMAGES = 4
POST_COLLECTION = "app.bsky.feed.post"


def _byte_offset(text: str, char_index: int) -> int:
    return len(text[:char_index].encode("utf-8"))


def _span(text: str, start: int, end: int) -> Dict[str, int]:
    return {"byteStart": _byte_offset(text, start), "byteEnd": _byte_offset(text, end)}


def build_facets(text: str) -> List[Dict[str, Any]]:
    facets: List[Dict[str, Any]] = []
    link_spans: List[tuple[int, int]] = []

    for match in LINK_PATTERN.finditer(text):
        uri = match.group(0).rstrip(LINK_TRAILING_PUNCTUATION)
        start, end = match.start(), match.start() + len(uri)
        link_spans.append((start, end))
        facets.append(
            {
                "index": _span(text, start, end),
                "features": [{"$type": "app.bsky.richtext.facet#link", "uri": uri}],
            }
        )

    for match in TAG_PATTERN.finditer(text):
        start, end = match.span()
        # Fragments inside a link are not hashtags.
        if any(link_start <= start < link_end for link_start, link_end in link_spans):
            continue
        facets.append(
            {
                "index": _span(text, start, end),
                "features": [{"$type": "app.bsky.richtext.facet#tag", "tag": match.group(1)}],
            }
        )

    facets.sort(key=lambda facet: facet["index"]["byteStart"])
    return facets


def post_url(app_url: str, handle: str, record_uri: str) -> str:
    rkey = record_uri.rstrip("/").split("/")[-1]
    return f"{app_url.rstrip('/')}/profile/{handle}/post/{rkey}"


class BlueskyDispatcher(HttpDispatcher):
    platform = "bluesky"

    def __init__(
        self,
        *,
        service_url: Optional[str] = None,
        app_url: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        settings = get_settings()
        self._service_url = (service_url or settings.bluesky_service_url).rstrip("/")
        self._app_url = app_url or settings.bluesky_app_url

    def _xrpc(self, method: str) -> str:
        return f"{self._service_url}/xrpc/{method}"

    def _create_session(self, client: httpx.Client, identifier: str, password: str) -> Dict[str, Any]:
        response = client.post(
            self._xrpc("com.atproto.server.createSession"),
            json={"identifier": identifier, "password": password},
        )
        ensure_success(response, context="Bluesky login")
        session = safe_json(response)
        if not session.get("accessJwt") or not session.get("did"):
            raise DispatchError("Bluesky login returned no session")
        return session

    def _upload_blob(self, client: httpx.Client, access_jwt: str, media_url: str) -> Dict[str, Any]:
        media = client.get(media_url)
        ensure_success(media, context="Media download")
        content_type = media.headers.get("content-type", "image/jpeg").split(";")[0]
        response = client.post(
            self._xrpc("com.atproto.repo.uploadBlob"),
            content=media.content,
            headers={"Authorization": f"Bearer {access_jwt}", "Content-Type": content_type},
        )
        ensure_success(response, context="Bluesky blob upload")
        blob = safe_json(response).get("blob")
        if not isinstance(blob, dict):
            raise DispatchError("Bluesky blob upload returned no blob")
        return blob

    def _publish(self, content: str, credentials: PlatformCredentials, media_urls: list[str]) -> DispatchResult:
        identifier = (credentials.identifier or "").strip()
        password = credentials.password or credentials.access_token or ""
        if not identifier or not password:
            raise DispatchError("Bluesky identifier and app password are required")

        with self.http() as client:
            session = self._create_session(client, identifier, password)
            access_jwt = str(session["accessJwt"])

            record: Dict[str, Any] = {
                "$type": POST_COLLECTION,
                "text": content,
                "createdAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            }
            facets = build_facets(content)
            if facets:
                record["facets"] = facets
            if media_urls:
                images = [
                    {"alt": "", "image": self._upload_blob(client, access_jwt, url)}
                    for url in media_urls[:MAX_IMAGES]
                ]
                record["embed"] = {"$type": "app.bsky.embed.images", "images": images}

            response = client.post(
                self._xrpc("com.atproto.repo.createRecord"),
                json={"repo": session["did"], "collection": POST_COLLECTION, "record": record},
                headers={"Authorization": f"Bearer {access_jwt}"},
            )
            ensure_success(response, context="Bluesky post")
            created = safe_json(response)

        record_uri = str(created.get("uri") or "")
        if not record_uri:
            raise DispatchError("Bluesky post returned no record uri")
        handle = str(session.get("handle") or identifier)
        return DispatchResult(
            platform=self.platform,
            success=True,
            platform_post_id=record_uri,
            platform_url=post_url(self._app_url, handle, record_uri),
        )
