"""Open registry mapping platform names to dispatcher factories."""

from __future__ import annotations

from typing import Callable, Dict, Optional, Sequence

from crosspost.channels.base import Dispatcher, DispatchResult, PlatformCredentials
from crosspost.channels.bluesky import BlueskyDispatcher
from crosspost.channels.discord import DiscordDispatcher
from crosspost.channels.mastodon import MastodonDispatcher
from crosspost.channels.slack import SlackDispatcher
from crosspost.channels.telegram import TelegramDispatcher


DispatcherFactory = Callable[[], Dispatcher]


class UnsupportedPlatformDispatcher:
    """Stand-in for platforms with rules but no publisher yet."""

    def __init__(self, platform: str) -> None:
        self.platform = platform

    def publish(
        self,
        content: str,
        credentials: PlatformCredentials,
        media_urls: Optional[Sequence[str]] = None,
    ) -> DispatchResult:
        del content, credentials, media_urls
        return DispatchResult(
            platform=self.platform,
            success=False,
            error=f"Publisher not yet implemented for {self.platform}",
        )


class DispatcherRegistry:
    def __init__(self) -> None:
        self._factories: Dict[str, DispatcherFactory] = {}

    def register(self, platform: str, factory: DispatcherFactory) -> None:
        self._factories[platform.strip().lower()] = factory

    def unregister(self, platform: str) -> None:
        self._factories.pop(platform.strip().lower(), None)

    def has(self, platform: str) -> bool:
        return platform.strip().lower() in self._factories

    def names(self) -> list[str]:
        return sorted(self._factories)

    def get(self, platform: str) -> Dispatcher:
        key = platform.strip().lower()
        factory = self._factories.get(key)
        if factory is None:
            return UnsupportedPlatformDispatcher(key)
        return factory()


def build_default_registry() -> DispatcherRegistry:
    registry = DispatcherRegistry()
    registry.register("discord", DiscordDispatcher)
    registry.register("slack", SlackDispatcher)
    registry.register("telegram", TelegramDispatcher)
    registry.register("bluesky", BlueskyDispatcher)
    registry.register("mastodon", MastodonDispatcher)
    return registry


_default_registry: Optional[DispatcherRegistry] = None


def get_registry() -> DispatcherRegistry:
    global _default_registry
    if _default_registry is None:
        _default_registry = build_default_registry()
    return _default_registry


def register_dispatcher(platform: str, factory: DispatcherFactory) -> None:
    get_registry().register(platform, factory)


def get_dispatcher(platform: str) -> Dispatcher:
    return get_registry().get(platform)
