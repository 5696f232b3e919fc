import pytest

from crosspost.core.config import get_settings


def _set_minimum_production_env(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "prod-secret-key")
    monkeypatch.setenv("CREDENTIALS_ENCRYPTION_KEY", "prod-credentials-key-0123456789abcd")
    monkeypatch.setenv("CRON_SECRET", "prod-cron-secret")
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg2://app:password@db:5432/crosspost")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_prod")


def test_production_requires_vault_key_and_secrets(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "")
    monkeypatch.setenv("CREDENTIALS_ENCRYPTION_KEY", "")
    get_settings.cache_clear()

    with pytest.raises(ValueError) as error:
        get_settings()

    assert "CREDENTIALS_ENCRYPTION_KEY" in str(error.value)
    assert "SECRET_KEY" in str(error.value)
    get_settings.cache_clear()


def test_production_settings_load_when_complete(monkeypatch) -> None:
    _set_minimum_production_env(monkeypatch)
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.env == "production"
    assert settings.cron_secret == "prod-cron-secret"

    get_settings.cache_clear()


def test_loads_environment_values(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./data/crosspost.sqlite")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/9")
    monkeypatch.setenv("SCHEDULER_MAX_RETRIES", "5")
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.env == "development"
    assert settings.database_url.endswith("crosspost.sqlite")
    assert settings.redis_url.endswith("/9")
    assert settings.scheduler_max_retries == 5

    get_settings.cache_clear()


def test_rejects_invalid_sample_rate(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("SENTRY_TRACES_SAMPLE_RATE", "1.2")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="SENTRY_TRACES_SAMPLE_RATE"):
        get_settings()

    get_settings.cache_clear()


@pytest.mark.parametrize(
    "name",
    [
        "SCHEDULER_MAX_RETRIES",
        "SCHEDULER_BATCH_SIZE",
        "SCHEDULER_LOCK_TTL_SECONDS",
        "STALE_PUBLISHING_MINUTES",
        "DISPATCH_TIMEOUT_SECONDS",
        "REDIS_SOCKET_TIMEOUT_SECONDS",
    ],
)
def test_rejects_non_positive_limits(monkeypatch, name: str) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv(name, "0")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match=name):
        get_settings()

    get_settings.cache_clear()
