from __future__ import annotations

from redis.exceptions import ConnectionError as RedisConnectionError

from crosspost.core.logger import REDACTED, add_service_context, redact_secrets
from crosspost.storage.redis_client import check_connection
from tests.conftest import configure_test_env, reset_caches


class _PingClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.pings = 0

    def ping(self) -> bool:
        self.pings += 1
        if self.error is not None:
            raise self.error
        return True


def test_redis_check_reports_ping_result() -> None:
    healthy = _PingClient()
    assert check_connection(healthy) == (True, None)
    assert healthy.pings == 1

    down = _PingClient(RedisConnectionError("Connection refused"))
    assert check_connection(down) == (False, "Connection refused")


def test_log_processors_redact_credentials_and_tag_service(monkeypatch) -> None:
    configure_test_env(monkeypatch)
    try:
        event = {
            "event": "connection_added",
            "platform": "telegram",
            "bot_token": "123:secret",
            "webhook_url": "",
        }

        redacted = redact_secrets(None, "info", dict(event))
        assert redacted["bot_token"] == REDACTED
        assert redacted["platform"] == "telegram"
        assert redacted["webhook_url"] == ""

        enriched = add_service_context(None, "info", {"event": "x", "tenant_id": "t-1"})
        assert enriched["service"] == "crosspost"
        assert enriched["env"] == "test"
        assert enriched["tenant_id"] == "t-1"
        assert enriched["request_id"] is None
    finally:
        reset_caches()
