from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json

import pytest
from sqlalchemy import event, select, update

import crosspost.publishing.service as publishing_service
from crosspost.billing.credits import get_balance
from crosspost.publishing.service import NO_CONNECTIONS_MESSAGE, get_publish_results, publish_post
from crosspost.storage.models import Connection, CreditTransaction, Post, PostResult, UserProfile
from tests.conftest import (
    FakeDispatcher,
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


def _ledger_types(session, user_id: str) -> list[str]:
    rows = session.scalars(select(CreditTransaction).where(CreditTransaction.user_id == user_id)).all()
    return sorted(row.type for row in rows)


def test_partial_success_keeps_multi_platform_charge(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": True, "slack": False, "telegram": True})

    with session_factory() as session:
        tenant = create_test_tenant(session)
        for platform in ("discord", "slack", "telegram"):
            connect_platform(session, tenant_id=tenant.id, platform=platform)
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord", "slack", "telegram"])

        outcome = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

        assert outcome.status == "published"
        assert outcome.success is True
        assert outcome.credits_charged == 2
        assert outcome.credits_refunded == 0
        assert outcome.new_balance == 48
        assert outcome.message == "Published to 2/3 platforms"
        assert [result.success for result in outcome.results] == [True, False, True]
        assert dispatchers["discord"].calls[0]["content"] == "Launching our new release today"
        assert dispatchers["telegram"].calls[0]["credentials"].bot_token == "123:telegram-token"

    with session_factory() as verify:
        stored = verify.get(Post, post.id)
        assert stored.status == "published"
        assert stored.published_at is not None
        assert stored.credits_charged == 2
        results = json.loads(stored.results_json)
        assert results["slack"]["error"] == "boom"
        assert results["discord"]["platform_post_id"] == "discord-1"

        rows = get_publish_results(verify, tenant_id=tenant.id, post_id=post.id)
        assert sorted((row.platform, row.status) for row in rows) == [
            ("discord", "published"),
            ("slack", "failed"),
            ("telegram", "published"),
        ]
        used = {
            connection.platform.name: connection.posts_today
            for connection in verify.scalars(select(Connection).where(Connection.tenant_id == tenant.id)).all()
        }
        assert used == {"discord": 1, "slack": 0, "telegram": 1}
        assert get_balance(verify, tenant.owner_user_id) == 48
        assert _ledger_types(verify, tenant.owner_user_id) == ["addition", "deduction"]


def test_no_active_connections_refunds_and_fails(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": True})

    with session_factory() as session:
        tenant = create_test_tenant(session)
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord"])

        outcome = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

        assert outcome.status == "no_active_connections"
        assert outcome.credits_charged == 1
        assert outcome.credits_refunded == 1
        assert outcome.new_balance == 50
        assert outcome.results[0].error == "No active connection for discord"
        assert dispatchers["discord"].calls == []

    with session_factory() as verify:
        stored = verify.get(Post, post.id)
        assert stored.status == "failed"
        assert stored.last_error == NO_CONNECTIONS_MESSAGE
        assert stored.credits_refunded == 1
        assert _ledger_types(verify, tenant.owner_user_id) == ["addition", "deduction", "refund"]


def test_all_platforms_failing_refunds_full_charge(session_factory) -> None:
    registry, _ = build_fake_registry({"discord": False, "slack": False})

    with session_factory() as session:
        tenant = create_test_tenant(session)
        connect_platform(session, tenant_id=tenant.id, platform="discord")
        connect_platform(session, tenant_id=tenant.id, platform="slack")
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord", "slack"])

        outcome = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

        assert outcome.status == "failed"
        assert outcome.credits_charged == 1
        assert outcome.credits_refunded == 1
        assert outcome.new_balance == 50

    with session_factory() as verify:
        stored = verify.get(Post, post.id)
        assert stored.status == "failed"
        assert stored.last_error == "discord: boom; slack: boom"
        assert len(verify.scalars(select(PostResult).where(PostResult.post_id == post.id)).all()) == 2


def test_refund_survives_a_concurrent_balance_change(session_factory) -> None:
    registry, _ = build_fake_registry({"discord": False, "slack": False})
    profiles = UserProfile.__table__

    with session_factory() as session:
        tenant = create_test_tenant(session)
        connect_platform(session, tenant_id=tenant.id, platform="discord")
        connect_platform(session, tenant_id=tenant.id, platform="slack")
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord", "slack"])
        balance_updates = []

        @event.listens_for(session, "do_orm_execute")
        def _purchase_during_refund(orm_execute_state) -> None:
            if not orm_execute_state.is_update:
                return
            balance_updates.append(True)
            if len(balance_updates) == 2:
                orm_execute_state.session.connection().execute(
                    update(profiles)
                    .where(profiles.c.id == tenant.owner_user_id)
                    .values(credits_balance=profiles.c.credits_balance + 5)
                )

        outcome = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

        assert outcome.status == "failed"
        assert outcome.credits_charged == 1
        assert outcome.credits_refunded == 1

    with session_factory() as verify:
        assert get_balance(verify, tenant.owner_user_id) == 55
        assert verify.get(Post, post.id).credits_refunded == 1
        assert _ledger_types(verify, tenant.owner_user_id) == ["addition", "deduction", "refund"]


def test_republishing_a_published_post_is_a_no_op(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": True})

    with session_factory() as session:
        tenant = create_test_tenant(session)
        connect_platform(session, tenant_id=tenant.id, platform="discord")
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord"])

        first = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)
        second = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

        assert first.status == "published"
        assert second.status == "already_published"
        assert second.credits_charged == 0
        assert len(dispatchers["discord"].calls) == 1
        assert get_balance(session, tenant.owner_user_id) == 49


def test_post_already_publishing_is_not_dispatched_again(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": True})

    with session_factory() as session:
        tenant = create_test_tenant(session)
        connect_platform(session, tenant_id=tenant.id, platform="discord")
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord"], status="publishing")

        outcome = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

        assert outcome.status == "in_progress"
        assert dispatchers["discord"].calls == []
        assert get_balance(session, tenant.owner_user_id) == 50


def test_insufficient_credits_leaves_post_untouched(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": True, "slack": True, "telegram": True})

    with session_factory() as session:
        tenant = create_test_tenant(session)
        for platform in ("discord", "slack", "telegram"):
            connect_platform(session, tenant_id=tenant.id, platform=platform)
        profile = session.get(UserProfile, tenant.owner_user_id)
        profile.credits_balance = 1
        session.commit()
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord", "slack", "telegram"])

        outcome = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

        assert outcome.status == "insufficient_credits"
        assert outcome.message == "Insufficient credits. Required: 2, Available: 1"
        assert outcome.new_balance == 1
        assert all(not dispatcher.calls for dispatcher in dispatchers.values())

    with session_factory() as verify:
        stored = verify.get(Post, post.id)
        assert stored.status == "draft"
        assert stored.credits_charged == 0
        assert _ledger_types(verify, tenant.owner_user_id) == ["addition"]


def test_credential_decrypt_failure_is_a_platform_failure(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": True, "slack": True})

    with session_factory() as session:
        tenant = create_test_tenant(session)
        broken = connect_platform(session, tenant_id=tenant.id, platform="discord")
        connect_platform(session, tenant_id=tenant.id, platform="slack")
        broken.credentials_encrypted = "zz:not-a-ciphertext"
        session.commit()
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord", "slack"])

        outcome = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

        by_platform = {result.platform: result for result in outcome.results}
        assert outcome.status == "published"
        assert by_platform["discord"].error == "Credential decrypt failed"
        assert by_platform["slack"].success is True
        assert dispatchers["discord"].calls == []


def test_daily_rate_limit_blocks_dispatch(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": True})

    with session_factory() as session:
        tenant = create_test_tenant(session)
        connection = connect_platform(session, tenant_id=tenant.id, platform="discord")
        connection.posts_today = 1000
        session.commit()
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord"])

        outcome = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

        assert outcome.status == "failed"
        assert outcome.results[0].error == "Daily rate limit reached for Discord. Try again tomorrow."
        assert outcome.credits_refunded == 1
        assert dispatchers["discord"].calls == []


def test_raising_dispatcher_is_contained(session_factory) -> None:
    registry, _ = build_fake_registry({"slack": True})
    registry.register("discord", lambda: FakeDispatcher("discord", raises=True, error="socket closed"))

    with session_factory() as session:
        tenant = create_test_tenant(session)
        connect_platform(session, tenant_id=tenant.id, platform="discord")
        connect_platform(session, tenant_id=tenant.id, platform="slack")
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord", "slack"])

        outcome = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

        assert outcome.status == "published"
        assert outcome.results[0].error == "discord dispatch error: socket closed"


def test_expired_trial_is_blocked_before_charging(session_factory) -> None:
    registry, dispatchers = build_fake_registry({"discord": True})
    signup = datetime.now(timezone.utc) - timedelta(days=20)

    with session_factory() as session:
        tenant = create_test_tenant(session, now=signup)
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord"])

        outcome = publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

        assert outcome.status == "blocked"
        assert outcome.message == "Trial expired. Upgrade to continue posting."
        assert get_balance(session, tenant.owner_user_id) == 50
        assert dispatchers["discord"].calls == []


def test_unexpected_crash_refunds_and_marks_failed(session_factory, monkeypatch) -> None:
    registry, _ = build_fake_registry({"discord": True})

    def explode(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(publishing_service, "_resolve_connections", explode)

    with session_factory() as session:
        tenant = create_test_tenant(session)
        post = create_test_post(session, tenant_id=tenant.id, platforms=["discord"])

        with pytest.raises(RuntimeError, match="database went away"):
            publish_post(session, tenant_id=tenant.id, post_id=post.id, registry=registry)

    with session_factory() as verify:
        stored = verify.get(Post, post.id)
        assert stored.status == "failed"
        assert stored.last_error == "database went away"
        assert stored.credits_refunded == 1
        assert get_balance(verify, tenant.owner_user_id) == 50


def test_unknown_post_reports_not_found(session_factory) -> None:
    with session_factory() as session:
        tenant = create_test_tenant(session)
        outcome = publish_post(session, tenant_id=tenant.id, post_id="missing")

        assert outcome.status == "not_found"
        with pytest.raises(LookupError):
            get_publish_results(session, tenant_id=tenant.id, post_id="missing")
