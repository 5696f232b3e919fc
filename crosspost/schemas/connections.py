"""Pydantic schemas for platform connection endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ConnectionCredentials(BaseModel):
    access_token: Optional[str] = Field(default=None, max_length=4096)
    refresh_token: Optional[str] = Field(default=None, max_length=4096)
    webhook_url: Optional[str] = Field(default=None, max_length=1024)
    bot_token: Optional[str] = Field(default=None, max_length=512)
    channel_id: Optional[str] = Field(default=None, max_length=128)
    identifier: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=512)
    instance_url: Optional[str] = Field(default=None, max_length=512)


class ConnectionCreateRequest(BaseModel):
    platform: str = Field(min_length=2, max_length=32)
    platform_user_id: str = Field(min_length=1, max_length=128)
    platform_username: Optional[str] = Field(default=None, max_length=128)
    credentials: ConnectionCredentials
    token_expires_at: Optional[datetime] = None


class ConnectionRefreshRequest(BaseModel):
    credentials: ConnectionCredentials
    token_expires_at: Optional[datetime] = None


class ConnectionResponse(BaseModel):
    id: str
    platform: str
    platform_username: Optional[str] = None
    status: str
    posts_today: int
    last_used_at: Optional[datetime] = None
    last_verified_at: Optional[datetime] = None
    last_error: Optional[str] = None
