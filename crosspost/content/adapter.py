"""Per-platform content adaptation.

``adapt_content`` is pure: the same raw text, rule, brand and options always
produce the same output. Posts store its result at compose time and the
publish path sends that stored text verbatim, so adaptation and delivery can
be hours apart without drifting.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import json
from typing import Any, Dict, List, Optional, Sequence

from crosspost.content.rules import PlatformRule
from crosspost.storage.models import BrandProfile


DEFAULT_MAX_HASHTAGS = 10
ELLIPSIS = "..."
PARAGRAPH = "\n\n"
# Below this many body characters the hashtag block is sacrificed instead.
MIN_BODY_CHARS = 50


@dataclass(frozen=True)
class BrandContext:
    name: str = ""
    hashtags: Sequence[str] = ()
    cta_templates: Sequence[str] = ()
    footer: Optional[str] = None


@dataclass(frozen=True)
class AdaptOptions:
    include_hashtags: bool = True
    include_cta: bool = False
    include_footer: bool = False


@dataclass(frozen=True)
class AdaptedContent:
    platform: str
    content: str
    truncated: bool
    warnings: List[str] = field(default_factory=list)
    hashtags: List[str] = field(default_factory=list)
    character_count: int = 0
    character_limit: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def brand_from_model(brand: Optional[BrandProfile]) -> Optional[BrandContext]:
    if brand is None:
        return None
    return BrandContext(
        name=brand.name,
        hashtags=tuple(json.loads(brand.hashtags_primary_json or "[]")),
        cta_templates=tuple(json.loads(brand.cta_templates_json or "[]")),
        footer=brand.footer_template or None,
    )


def _normalize_hashtag(tag: str) -> str:
    cleaned = tag.strip().replace(" ", "")
    if not cleaned:
        return ""
    return cleaned if cleaned.startswith("#") else f"#{cleaned}"


def _select_hashtags(rule: PlatformRule, brand: BrandContext) -> List[str]:
    limit = DEFAULT_MAX_HASHTAGS if rule.max_hashtags is None else rule.max_hashtags
    tags = [_normalize_hashtag(tag) for tag in brand.hashtags]
    return [tag for tag in tags if tag][: max(limit, 0)]


def _static_warnings(rule: PlatformRule, media_count: int) -> List[str]:
    warnings: List[str] = []
    if rule.media_required and media_count == 0:
        warnings.append(f"{rule.display_name} requires an image or video with every post.")
    if rule.max_media_count is not None and media_count > rule.max_media_count:
        warnings.append(
            f"Too many media files: {rule.display_name} allows at most {rule.max_media_count}."
        )
    if rule.content_rules.get("professional_tone"):
        warnings.append(f"{rule.display_name}: Keep tone professional. Avoid excessive emojis.")
    if rule.content_rules.get("vertical_video_only"):
        warnings.append(f"{rule.display_name}: Videos must be vertical (9:16 ratio).")
    return warnings


def adapt_content(
    raw_content: str,
    rule: PlatformRule,
    brand: Optional[BrandContext] = None,
    options: Optional[AdaptOptions] = None,
    *,
    media_count: int = 0,
) -> AdaptedContent:
    options = options or AdaptOptions()
    brand = brand or BrandContext()
    warnings: List[str] = []

    body = raw_content
    if options.include_cta and brand.cta_templates:
        body = f"{body}{PARAGRAPH}{brand.cta_templates[0]}"
    if options.include_footer and brand.footer:
        body = f"{body}{PARAGRAPH}{brand.footer}"

    hashtags: List[str] = []
    inline_tags: List[str] = []
    if options.include_hashtags and brand.hashtags:
        hashtags = _select_hashtags(rule, brand)
        if hashtags and rule.hashtags_in_comment:
            warnings.append(
                f"Tip: {rule.display_name} hashtags perform best in the first comment. "
                "They were left out of the caption."
            )
        else:
            inline_tags = list(hashtags)

    tag_block = f"{PARAGRAPH}{' '.join(inline_tags)}" if inline_tags else ""
    content = body + tag_block
    truncated = False

    limit = rule.character_limit
    if limit is not None and len(content) > limit:
        truncated = True
        available = limit - len(tag_block) - len(ELLIPSIS)
        if tag_block and available >= MIN_BODY_CHARS:
            content = body[:available] + ELLIPSIS + tag_block
        else:
            content = body[: max(limit - len(ELLIPSIS), 0)] + ELLIPSIS[:limit]
            if tag_block:
                inline_tags = []
                warnings.append(f"Hashtags removed to fit the {limit} character limit.")
        message = f"Truncated to {limit} characters ({rule.display_name} limit)."
        if rule.limit_explanation:
            message = f"{message} {rule.limit_explanation}"
        warnings.append(message)

    warnings.extend(_static_warnings(rule, media_count))

    return AdaptedContent(
        platform=rule.name,
        content=content,
        truncated=truncated,
        warnings=warnings,
        hashtags=hashtags if rule.hashtags_in_comment else inline_tags,
        character_count=len(content),
        character_limit=limit,
    )


def adapt_for_platforms(
    raw_content: str,
    rules: Sequence[PlatformRule],
    brand: Optional[BrandContext] = None,
    options: Optional[AdaptOptions] = None,
    *,
    media_count: int = 0,
) -> Dict[str, AdaptedContent]:
    return {
        rule.name: adapt_content(raw_content, rule, brand, options, media_count=media_count)
        for rule in rules
    }
