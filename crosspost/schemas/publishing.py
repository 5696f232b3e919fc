"""Pydantic schemas for publishing endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class PlatformResultResponse(BaseModel):
    platform: str
    success: bool
    platform_post_id: Optional[str] = None
    platform_url: Optional[str] = None
    error: Optional[str] = None


class PublishResponse(BaseModel):
    post_id: str
    status: str
    post_status: Optional[str] = None
    results: List[PlatformResultResponse]
    credits_charged: int
    credits_refunded: int
    new_balance: Optional[int] = None
    message: str


class PostResultRecord(BaseModel):
    id: str
    platform: str
    status: str
    platform_post_id: Optional[str] = None
    platform_url: Optional[str] = None
    character_count: int
    error_message: Optional[str] = None
    posted_at: Optional[datetime] = None
