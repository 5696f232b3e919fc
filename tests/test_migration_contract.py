from __future__ import annotations

from pathlib import Path


def test_core_migration_declares_tables_and_indexes() -> None:
    migration_path = Path("migrations/versions/20260301_0001_crosspost_core.py")
    source = migration_path.read_text(encoding="utf-8")

    for table in (
        "user_profiles",
        "tenants",
        "credit_transactions",
        "platforms",
        "brand_profiles",
        "connections",
        "posts",
        "post_results",
        "usage_tracking",
        "stripe_events",
        "tenant_events",
    ):
        assert f"\"{table}\"," in source

    assert "uq_tenants_slug" in source
    assert "uq_connections_tenant_platform_user" in source
    assert "uq_usage_tracking_tenant_period" in source
    assert "uq_stripe_events_event_id" in source
    assert "ix_posts_status_scheduled_for" in source
    assert "ix_credit_transactions_user_created_at" in source
    assert "ix_connections_tenant_status" in source


def test_core_migration_downgrade_drops_every_table() -> None:
    source = Path("migrations/versions/20260301_0001_crosspost_core.py").read_text(encoding="utf-8")
    downgrade = source.split("def downgrade", 1)[1]

    for table in ("tenants", "connections", "posts", "post_results", "stripe_events"):
        assert f"op.drop_table(\"{table}\")" in downgrade
