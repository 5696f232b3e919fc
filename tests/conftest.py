from __future__ import annotations

from datetime import datetime
import json
from typing import Any, Dict, List, Optional, Sequence
import uuid

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crosspost.billing.plans import load_plans
from crosspost.channels.base import DispatchResult, PlatformCredentials
from crosspost.channels.registry import DispatcherRegistry
from crosspost.connections.service import add_connection
from crosspost.content.rules import reset_platform_rules_cache, seed_platforms
from crosspost.core.config import get_settings
from crosspost.storage.db import Base, load_models
from crosspost.storage.models import Connection, Post, Tenant
from crosspost.storage.security import get_credentials_key
from crosspost.tenants.service import create_tenant


TEST_CREDENTIALS_KEY = "test-credentials-key-0123456789abcdef"

DEFAULT_CREDENTIALS: Dict[str, Dict[str, str]] = {
    "discord": {"webhook_url": "https://discord.com/api/webhooks/1/abc"},
    "slack": {"webhook_url": "https://hooks.slack.com/services/T0/B0/xyz"},
    "telegram": {"bot_token": "123:telegram-token", "channel_id": "@crosspost_test"},
    "bluesky": {"identifier": "me.bsky.social", "password": "app-password"},
    "mastodon": {"access_token": "masto-token", "instance_url": "https://mastodon.social"},
}


class FakeRedis:
    def __init__(self) -> None:
        self._store: Dict[str, str] = {}

    def set(self, key: str, value: str, nx: bool = False, ex: int | None = None):
        del ex
        if nx and key in self._store:
            return False
        self._store[key] = str(value)
        return True

    def get(self, key: str):
        return self._store.get(key)

    def delete(self, key: str):
        return 1 if self._store.pop(key, None) is not None else 0

    def eval(self, script: str, numkeys: int, key: str, token: str):
        del script, numkeys
        if self._store.get(key) == token:
            self._store.pop(key, None)
            return 1
        return 0


class FakeDispatcher:
    def __init__(self, platform: str, *, success: bool = True, error: str = "boom", raises: bool = False) -> None:
        self.platform = platform
        self.success = success
        self.error = error
        self.raises = raises
        self.calls: List[Dict[str, Any]] = []

    def publish(
        self,
        content: str,
        credentials: PlatformCredentials,
        media_urls: Optional[Sequence[str]] = None,
    ) -> DispatchResult:
        self.calls.append({"content": content, "credentials": credentials, "media_urls": list(media_urls or [])})
        if self.raises:
            raise RuntimeError(self.error)
        if self.success:
            return DispatchResult(
                platform=self.platform,
                success=True,
                platform_post_id=f"{self.platform}-{len(self.calls)}",
                platform_url=f"https://{self.platform}.example/posts/{len(self.calls)}",
            )
        return DispatchResult(platform=self.platform, success=False, error=self.error)


def build_fake_registry(outcomes: Dict[str, bool]) -> tuple[DispatcherRegistry, Dict[str, FakeDispatcher]]:
    registry = DispatcherRegistry()
    dispatchers: Dict[str, FakeDispatcher] = {}
    for platform, success in outcomes.items():
        dispatcher = FakeDispatcher(platform, success=success)
        dispatchers[platform] = dispatcher
        registry.register(platform, lambda dispatcher=dispatcher: dispatcher)
    return registry, dispatchers


def reset_caches() -> None:
    get_settings.cache_clear()
    load_plans.cache_clear()
    reset_platform_rules_cache()
    get_credentials_key.cache_clear()


def configure_test_env(monkeypatch, **overrides: str) -> None:
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CREDENTIALS_ENCRYPTION_KEY", TEST_CREDENTIALS_KEY)
    monkeypatch.setenv("PLANS_FILE_PATH", "config/plans.yaml")
    monkeypatch.setenv("PLATFORMS_FILE_PATH", "config/platforms.yaml")
    for name, value in overrides.items():
        monkeypatch.setenv(name, value)
    reset_caches()


def build_sqlite_session_factory(*, seed: bool = True) -> sessionmaker:
    load_models()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    if seed:
        with factory() as session:
            seed_platforms(session)
    return factory


def create_test_tenant(session: Session, *, name: str = "Acme", now: Optional[datetime] = None) -> Tenant:
    return create_tenant(
        session,
        name=f"{name} {uuid.uuid4().hex[:6]}",
        owner_email=f"owner-{uuid.uuid4().hex[:8]}@acme.io",
        now=now,
    )


def connect_platform(
    session: Session,
    *,
    tenant_id: str,
    platform: str,
    platform_user_id: Optional[str] = None,
    credentials: Optional[Dict[str, str]] = None,
) -> Connection:
    return add_connection(
        session,
        tenant_id=tenant_id,
        platform_name=platform,
        platform_user_id=platform_user_id or f"{platform}-{uuid.uuid4().hex[:8]}",
        credentials=credentials or DEFAULT_CREDENTIALS.get(platform, {"access_token": "token"}),
    )


def create_test_post(
    session: Session,
    *,
    tenant_id: str,
    platforms: Sequence[str],
    content: str = "Launching our new release today",
    status: str = "draft",
    scheduled_for: Optional[datetime] = None,
    media_urls: Sequence[str] = (),
    max_retries: int = 3,
) -> Post:
    post = Post(
        tenant_id=tenant_id,
        original_content=content,
        platform_content_json="{}",
        target_platforms_json=json.dumps(list(platforms)),
        media_urls_json=json.dumps(list(media_urls)),
        status=status,
        scheduled_for=scheduled_for,
        max_retries=max_retries,
    )
    session.add(post)
    session.commit()
    return post
