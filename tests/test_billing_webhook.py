from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

import crosspost.api.main as api_main
from crosspost.billing.credits import get_balance
from crosspost.billing.stripe_client import StripeWebhookError, verify_signature
from crosspost.storage.db import get_session
from crosspost.storage.models import Connection, StripeEvent, Tenant
from tests.conftest import (
    build_sqlite_session_factory,
    configure_test_env,
    connect_platform,
    create_test_tenant,
    reset_caches,
)


WEBHOOK_SECRET = "whsec_test_secret_1234567890"


def _signature(payload: bytes, secret: str, timestamp: int) -> str:
    message = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _post_event(client: TestClient, event: dict, *, secret: str = WEBHOOK_SECRET):
    payload = json.dumps(event).encode("utf-8")
    return client.post(
        "/billing/webhook",
        content=payload,
        headers={"Stripe-Signature": _signature(payload, secret, int(time.time())), "Content-Type": "application/json"},
    )


@pytest.fixture
def webhook_context(monkeypatch):
    configure_test_env(monkeypatch, STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET)
    session_factory = build_sqlite_session_factory()

    def override_get_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    api_main.app.dependency_overrides[get_session] = override_get_session
    yield TestClient(api_main.app), session_factory
    api_main.app.dependency_overrides.clear()
    reset_caches()


def test_checkout_completion_upgrades_tenant_once(webhook_context) -> None:
    client, session_factory = webhook_context
    with session_factory() as seed:
        tenant = create_test_tenant(seed)

    event = {
        "id": f"evt_{uuid.uuid4().hex}",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "customer": "cus_123",
                "subscription": "sub_123",
                "metadata": {"tenant_id": tenant.id, "plan": "pro"},
            }
        },
    }

    first = _post_event(client, event)
    second = _post_event(client, event)

    assert first.status_code == 200
    assert first.json()["status"] == "processed"
    assert first.json()["duplicate"] is False
    assert second.status_code == 200
    assert second.json()["duplicate"] is True

    with session_factory() as verify:
        stored = verify.get(Tenant, tenant.id)
        assert stored.plan == "pro"
        assert stored.subscription_status == "active"
        assert stored.stripe_customer_id == "cus_123"
        assert stored.subscription_id == "sub_123"
        assert stored.trial_ends_at is None
        assert get_balance(verify, tenant.owner_user_id) == 50 + 1000
        rows = verify.scalars(select(StripeEvent).where(StripeEvent.event_id == event["id"])).all()
        assert len(rows) == 1
        assert rows[0].tenant_id == tenant.id


def test_subscription_deletion_pauses_and_payment_resumes(webhook_context) -> None:
    client, session_factory = webhook_context
    with session_factory() as seed:
        tenant = create_test_tenant(seed)
        connect_platform(seed, tenant_id=tenant.id, platform="discord")
        tenant.plan = "starter"
        tenant.subscription_status = "active"
        tenant.subscription_id = "sub_live"
        tenant.stripe_customer_id = "cus_live"
        seed.commit()

    deleted = _post_event(
        client,
        {
            "id": "evt_deleted",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_live", "customer": "cus_live", "status": "canceled"}},
        },
    )
    assert deleted.status_code == 200
    assert deleted.json()["message"] == "Subscription canceled, 1 connections paused"

    with session_factory() as verify:
        stored = verify.get(Tenant, tenant.id)
        assert stored.plan == "expired"
        assert stored.subscription_status == "canceled"
        assert stored.max_platforms == 0
        assert stored.data_deletion_scheduled_at is not None
        statuses = [row.status for row in verify.scalars(select(Connection).where(Connection.tenant_id == tenant.id))]
        assert statuses == ["paused_subscription"]

    resumed = _post_event(
        client,
        {
            "id": "evt_paid",
            "type": "invoice.payment_succeeded",
            "data": {"object": {"customer": "cus_live"}},
        },
    )
    assert resumed.json()["message"] == "Payment applied, 1 connections resumed"


def test_unsupported_event_is_recorded_as_ignored(webhook_context) -> None:
    client, session_factory = webhook_context

    response = _post_event(client, {"id": "evt_other", "type": "charge.refunded", "data": {"object": {}}})

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    with session_factory() as verify:
        row = verify.scalar(select(StripeEvent).where(StripeEvent.event_id == "evt_other"))
        assert row.status == "ignored"
        assert row.processed_at is not None


def test_bad_signature_is_rejected(webhook_context) -> None:
    client, _ = webhook_context

    response = _post_event(client, {"id": "evt_bad", "type": "invoice.payment_failed"}, secret="whsec_wrong")

    assert response.status_code == 400
    assert response.json()["detail"] == "Stripe signature mismatch"


def test_webhook_requires_configured_secret(monkeypatch) -> None:
    configure_test_env(monkeypatch, STRIPE_WEBHOOK_SECRET="")
    api_main.app.dependency_overrides[get_session] = lambda: None
    try:
        response = TestClient(api_main.app).post("/billing/webhook", content=b"{}")
        assert response.status_code == 503
    finally:
        api_main.app.dependency_overrides.clear()
        reset_caches()


def test_signature_timestamp_tolerance() -> None:
    payload = b'{"id":"evt_1","type":"x"}'
    stale = int(time.time()) - 3600

    with pytest.raises(StripeWebhookError, match="tolerance"):
        verify_signature(payload=payload, header=_signature(payload, "s", stale), secret="s", tolerance_seconds=300)
    with pytest.raises(StripeWebhookError):
        verify_signature(payload=payload, header="garbage", secret="s")
