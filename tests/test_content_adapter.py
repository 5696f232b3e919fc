from __future__ import annotations

from crosspost.content.adapter import AdaptOptions, BrandContext, adapt_content, adapt_for_platforms
from crosspost.content.rules import PlatformRule, load_platform_rules, reset_platform_rules_cache
from tests.conftest import configure_test_env, reset_caches


BLUESKY = PlatformRule(
    name="bluesky",
    display_name="Bluesky",
    auth_type="session",
    character_limit=300,
    max_hashtags=3,
    limit_explanation="Bluesky counts graphemes, links included.",
)
INSTAGRAM = PlatformRule(
    name="instagram",
    display_name="Instagram",
    character_limit=2200,
    media_required=True,
    max_hashtags=30,
    hashtags_in_comment=True,
)
BRAND = BrandContext(
    name="Acme",
    hashtags=("growth", "#saas", "b2b marketing", "extra"),
    cta_templates=("Try it free at acme.io",),
    footer="Acme Inc.",
)


def test_long_body_is_truncated_to_limit_with_explanation() -> None:
    adapted = adapt_content("a" * 310, BLUESKY)

    assert adapted.truncated is True
    assert adapted.character_count == 300
    assert len(adapted.content) == 300
    assert adapted.content.endswith("...")
    assert adapted.warnings[0] == (
        "Truncated to 300 characters (Bluesky limit). Bluesky counts graphemes, links included."
    )


def test_hashtags_are_normalized_and_capped() -> None:
    adapted = adapt_content("Hello world", BLUESKY, BRAND)

    assert adapted.hashtags == ["#growth", "#saas", "#b2bmarketing"]
    assert adapted.content == "Hello world\n\n#growth #saas #b2bmarketing"
    assert adapted.truncated is False
    assert adapted.warnings == []


def test_truncation_keeps_hashtag_block_when_body_stays_long_enough() -> None:
    adapted = adapt_content("b" * 400, BLUESKY, BRAND)

    assert len(adapted.content) == 300
    assert adapted.content.endswith("...\n\n#growth #saas #b2bmarketing")
    assert adapted.hashtags == ["#growth", "#saas", "#b2bmarketing"]


def test_hashtags_dropped_when_body_would_fall_below_minimum() -> None:
    tight = PlatformRule(name="tight", display_name="Tight", character_limit=60, max_hashtags=3)
    adapted = adapt_content("c" * 100, tight, BRAND)

    assert adapted.content == "c" * 57 + "..."
    assert adapted.hashtags == []
    assert "Hashtags removed to fit the 60 character limit." in adapted.warnings
    assert "Truncated to 60 characters (Tight limit)." in adapted.warnings


def test_instagram_hashtags_move_to_first_comment_tip() -> None:
    adapted = adapt_content("New drop", INSTAGRAM, BRAND)

    assert "#" not in adapted.content
    assert adapted.hashtags == ["#growth", "#saas", "#b2bmarketing", "#extra"]
    assert any(warning.startswith("Tip: Instagram hashtags perform best in the first comment.") for warning in adapted.warnings)
    assert "Instagram requires an image or video with every post." in adapted.warnings


def test_platform_without_limit_is_never_truncated() -> None:
    unlimited = PlatformRule(name="tumblr", display_name="Tumblr")
    body = "word " * 5000

    adapted = adapt_content(body, unlimited)

    assert adapted.content == body
    assert adapted.truncated is False
    assert adapted.character_limit is None


def test_cta_and_footer_are_appended_when_requested() -> None:
    options = AdaptOptions(include_hashtags=False, include_cta=True, include_footer=True)
    adapted = adapt_content("Body", BLUESKY, BRAND, options)

    assert adapted.content == "Body\n\nTry it free at acme.io\n\nAcme Inc."
    assert adapted.hashtags == []


def test_adaptation_is_deterministic_across_platforms(monkeypatch) -> None:
    configure_test_env(monkeypatch)
    try:
        rules = load_platform_rules()
        selected = [rules["twitter"], rules["linkedin"], rules["tiktok"]]

        first = adapt_for_platforms("x" * 500, selected, BRAND, media_count=1)
        second = adapt_for_platforms("x" * 500, selected, BRAND, media_count=1)

        assert first == second
        assert len(first["twitter"].content) == 280
        assert any("professional" in warning for warning in first["linkedin"].warnings)
        assert any("vertical" in warning for warning in first["tiktok"].warnings)
    finally:
        reset_caches()
        reset_platform_rules_cache()


def test_tiny_limits_never_exceed_the_character_limit() -> None:
    for limit in (0, 1, 2, 3, 4):
        rule = PlatformRule(name="tiny", display_name="Tiny", character_limit=limit)
        adapted = adapt_content("Hello world", rule, BRAND)

        assert adapted.truncated is True
        assert len(adapted.content) <= limit
