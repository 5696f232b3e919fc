"""Pydantic schemas for composing and listing posts."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PostCreateRequest(BaseModel):
    content: str = Field(min_length=1, max_length=10000)
    platforms: List[str] = Field(min_length=1, max_length=20)
    media_urls: List[str] = Field(default_factory=list, max_length=10)
    scheduled_for: Optional[datetime] = None
    brand_id: Optional[str] = Field(default=None, min_length=36, max_length=36)
    include_hashtags: bool = True
    include_cta: bool = False
    include_footer: bool = False


class PostScheduleRequest(BaseModel):
    scheduled_for: datetime


class PostResponse(BaseModel):
    id: str
    status: str
    original_content: str
    platforms: List[str]
    platform_content: Dict[str, Any]
    media_urls: List[str]
    scheduled_for: Optional[datetime] = None
    published_at: Optional[datetime] = None
    retry_count: int
    last_error: Optional[str] = None
    credits_charged: int
    credits_refunded: int
    created_at: Optional[datetime] = None


class PostListResponse(BaseModel):
    items: List[PostResponse]
    total: int
    limit: int
    offset: int
