"""Pydantic schemas for tenant signup and plan management."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class TenantCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    owner_email: EmailStr


class TenantCreateResponse(BaseModel):
    tenant_id: str
    slug: str
    owner_user_id: str
    plan: str
    trial_ends_at: Optional[datetime] = None
    credits_balance: int
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class TenantResponse(BaseModel):
    id: str
    name: str
    slug: str
    plan: str
    subscription_status: str
    trial_ends_at: Optional[datetime] = None
    max_platforms: int
    max_posts_per_month: int
    posts_this_month: int
    active_connections: int
    can_post: bool
    blocked_reason: Optional[str] = None


class PlanChangeRequest(BaseModel):
    plan: str = Field(min_length=2, max_length=32)


class PlanChangeResponse(BaseModel):
    tenant_id: str
    previous_plan: str
    plan: str
    is_downgrade: bool
    paused_connections: int
