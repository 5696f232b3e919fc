"""Static platform rules loaded from YAML and mirrored into the platforms table."""

from __future__ import annotations

from functools import lru_cache
import json
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from crosspost.core.config import get_settings
from crosspost.storage.models import Platform


DEFAULT_DAILY_RATE_LIMIT = 1000

_REPO_ROOT = Path(__file__).resolve().parents[2]


class PlatformRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    auth_type: str = "oauth2"
    character_limit: Optional[int] = None
    media_required: bool = False
    max_media_count: Optional[int] = None
    max_hashtags: Optional[int] = None
    hashtags_in_comment: bool = False
    rate_limit_per_hour: Optional[int] = None
    rate_limit_per_day: Optional[int] = None
    limit_explanation: Optional[str] = None
    content_rules: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("platform name must not be empty")
        return normalized

    @field_validator("auth_type")
    @classmethod
    def _validate_auth_type(cls, value: str) -> str:
        if value not in {"webhook", "bot_token", "session", "oauth2"}:
            raise ValueError(f"unsupported auth_type: {value}")
        return value

    @property
    def daily_limit(self) -> int:
        return self.rate_limit_per_day or DEFAULT_DAILY_RATE_LIMIT


def _resolve_platforms_path() -> Path:
    configured = Path(get_settings().platforms_file_path)
    if configured.is_absolute():
        return configured
    candidate = Path.cwd() / configured
    if candidate.exists():
        return candidate
    return _REPO_ROOT / configured


@lru_cache(maxsize=1)
def load_platform_rules() -> Dict[str, PlatformRule]:
    path = _resolve_platforms_path()
    parsed = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(parsed, dict):
        raise ValueError("Platforms file must be a YAML object")

    rules: Dict[str, PlatformRule] = {}
    for name, raw in parsed.items():
        if not isinstance(raw, dict):
            raise ValueError(f"Invalid rule block for platform: {name}")
        rule = PlatformRule.model_validate({"name": str(name), **raw})
        rules[rule.name] = rule
    return rules


def reset_platform_rules_cache() -> None:
    load_platform_rules.cache_clear()


def rule_from_model(platform: Platform) -> PlatformRule:
    return PlatformRule(
        name=platform.name,
        display_name=platform.display_name,
        auth_type=platform.auth_type,
        character_limit=platform.character_limit,
        media_required=platform.media_required,
        max_media_count=platform.max_media_count,
        max_hashtags=platform.max_hashtags,
        hashtags_in_comment=platform.hashtags_in_comment,
        rate_limit_per_hour=platform.rate_limit_per_hour,
        rate_limit_per_day=platform.rate_limit_per_day,
        limit_explanation=platform.limit_explanation,
        content_rules=json.loads(platform.content_rules_json or "{}"),
    )


def seed_platforms(session: Session, rules: Optional[Dict[str, PlatformRule]] = None) -> int:
    """Insert or refresh platform rows from the rule set. Returns rows written."""

    rules = rules if rules is not None else load_platform_rules()
    existing = {row.name: row for row in session.scalars(select(Platform)).all()}
    written = 0
    for rule in rules.values():
        row = existing.get(rule.name)
        if row is None:
            row = Platform(name=rule.name)
            session.add(row)
        row.display_name = rule.display_name
        row.auth_type = rule.auth_type
        row.character_limit = rule.character_limit
        row.media_required = rule.media_required
        row.max_media_count = rule.max_media_count
        row.max_hashtags = rule.max_hashtags
        row.hashtags_in_comment = rule.hashtags_in_comment
        row.rate_limit_per_hour = rule.rate_limit_per_hour
        row.rate_limit_per_day = rule.rate_limit_per_day
        row.limit_explanation = rule.limit_explanation
        row.content_rules_json = json.dumps(rule.content_rules, sort_keys=True)
        row.is_active = True
        written += 1
    session.commit()
    return written
