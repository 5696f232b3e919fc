from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json

import pytest
from sqlalchemy import select

from crosspost.billing.credits import get_balance
from crosspost.orchestrator.locks import CronLockManager, lock_key
from crosspost.orchestrator.scheduler import SCHEDULER_LOCK_SCOPE, PostScheduler
from crosspost.storage.models import Post, Tenant, TenantEvent
from tests.conftest import (
    FakeRedis,
    build_fake_registry,
    build_sqlite_session_factory,
    configure_test_env,
    connect_platform,
    create_test_post,
    create_test_tenant,
    reset_caches,
)


@pytest.fixture
def session_factory(monkeypatch):
    configure_test_env(monkeypatch)
    factory = build_sqlite_session_factory()
    yield factory
    reset_caches()


def _scheduler(session_factory, registry, fake_redis: FakeRedis | None = None) -> PostScheduler:
    return PostScheduler(
        session_factory=session_factory,
        lock_manager=CronLockManager(fake_redis or FakeRedis(), ttl_seconds=60),
        registry=registry,
    )


def test_due_posts_are_published_in_due_order(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": True})
    now = datetime.now(timezone.utc)

    with session_factory() as seed:
        tenant = create_test_tenant(seed)
        connect_platform(seed, tenant_id=tenant.id, platform="discord")
        later = create_test_post(
            seed,
            tenant_id=tenant.id,
            platforms=["discord"],
            content="second",
            status="scheduled",
            scheduled_for=now - timedelta(minutes=5),
        )
        earlier = create_test_post(
            seed,
            tenant_id=tenant.id,
            platforms=["discord"],
            content="first",
            status="scheduled",
            scheduled_for=now - timedelta(minutes=30),
        )
        future = create_test_post(
            seed,
            tenant_id=tenant.id,
            platforms=["discord"],
            status="scheduled",
            scheduled_for=now + timedelta(hours=1),
        )
        create_test_post(seed, tenant_id=tenant.id, platforms=["discord"], status="draft")

    scheduler = _scheduler(session_factory, registry)
    assert scheduler.list_due_post_ids(now=now, limit=10) == [earlier.id, later.id]

    result = scheduler.run_once(now=now)

    assert result.skipped_locked is False
    assert result.due == 2
    assert result.published == 2
    assert [call["content"] for call in dispatchers["discord"].calls] == ["first", "second"]

    with session_factory() as verify:
        assert verify.get(Post, earlier.id).status == "published"
        assert verify.get(Post, future.id).status == "scheduled"
        assert get_balance(verify, tenant.owner_user_id) == 48


def test_expired_trial_pauses_post_without_spending_retries(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": True})
    now = datetime.now(timezone.utc)

    with session_factory() as seed:
        tenant = create_test_tenant(seed, now=now - timedelta(days=20))
        post = create_test_post(
            seed,
            tenant_id=tenant.id,
            platforms=["discord"],
            status="scheduled",
            scheduled_for=now - timedelta(minutes=1),
        )

    result = _scheduler(session_factory, registry).run_once(now=now)

    assert result.paused == 1
    assert result.runs[0].details == {"reason": "trial_expired"}
    assert dispatchers["discord"].calls == []

    with session_factory() as verify:
        stored = verify.get(Post, post.id)
        assert stored.status == "paused"
        assert stored.retry_count == 0
        assert stored.last_error == "Trial expired. Upgrade to continue posting."
        assert verify.get(Tenant, tenant.id).subscription_status == "trial_expired"
        events = verify.scalars(
            select(TenantEvent).where(TenantEvent.event_type == "scheduler_post_run", TenantEvent.post_id == post.id)
        ).all()
        assert [event.status for event in events] == ["paused"]


def test_failing_post_is_retried_until_budget_is_spent(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": False})
    now = datetime.now(timezone.utc)

    with session_factory() as seed:
        tenant = create_test_tenant(seed)
        connect_platform(seed, tenant_id=tenant.id, platform="discord")
        post = create_test_post(
            seed,
            tenant_id=tenant.id,
            platforms=["discord"],
            status="scheduled",
            scheduled_for=now - timedelta(minutes=1),
            max_retries=2,
        )

    scheduler = _scheduler(session_factory, registry)
    first = scheduler.run_once(now=now)
    second = scheduler.run_once(now=now)
    third = scheduler.run_once(now=now)

    assert first.retried == 1
    assert second.failed == 1
    assert third.due == 0
    assert len(dispatchers["discord"].calls) == 2

    with session_factory() as verify:
        stored = verify.get(Post, post.id)
        assert stored.status == "failed"
        assert stored.retry_count == 2
        assert stored.last_error == "All platforms failed"
        assert get_balance(verify, tenant.owner_user_id) == 50
        events = verify.scalars(
            select(TenantEvent).where(TenantEvent.event_type == "scheduler_post_run", TenantEvent.post_id == post.id)
        ).all()
        assert sorted(event.status for event in events) == ["failed", "retry_scheduled"]
        assert json.loads(events[0].payload_json)["error"] == "All platforms failed"


def test_scheduler_skips_when_lock_is_held(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": True})
    fake_redis = FakeRedis()
    fake_redis.set(lock_key(SCHEDULER_LOCK_SCOPE), "external-owner-token", nx=True, ex=60)
    now = datetime.now(timezone.utc)

    with session_factory() as seed:
        tenant = create_test_tenant(seed)
        connect_platform(seed, tenant_id=tenant.id, platform="discord")
        create_test_post(
            seed,
            tenant_id=tenant.id,
            platforms=["discord"],
            status="scheduled",
            scheduled_for=now - timedelta(minutes=1),
        )

    result = _scheduler(session_factory, registry, fake_redis).run_once(now=now)

    assert result.skipped_locked is True
    assert result.due == 0
    assert dispatchers["discord"].calls == []
    assert fake_redis.get(lock_key(SCHEDULER_LOCK_SCOPE)) == "external-owner-token"


def test_lock_is_released_after_run(session_factory) -> None:
    registry, _ = build_fake_registry({})
    fake_redis = FakeRedis()

    result = _scheduler(session_factory, registry, fake_redis).run_once()

    assert result.due == 0
    assert fake_redis.get(lock_key(SCHEDULER_LOCK_SCOPE)) is None


def test_lock_manager_only_releases_own_token() -> None:
    fake_redis = FakeRedis()
    manager = CronLockManager(fake_redis, ttl_seconds=30)

    handle = manager.acquire("maintenance:check_trials")
    assert handle is not None
    assert manager.acquire("maintenance:check_trials") is None
    assert manager.release("maintenance:check_trials", "someone-else") is False
    assert handle.release() is True
    assert manager.acquire("maintenance:check_trials") is not None

    with pytest.raises(ValueError):
        CronLockManager(fake_redis, ttl_seconds=0)
