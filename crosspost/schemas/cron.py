"""Pydantic schemas for cron-triggered endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class PostRunResponse(BaseModel):
    post_id: str
    tenant_id: Optional[str] = None
    status: str
    details: Dict[str, Any]


class SchedulerRunResponse(BaseModel):
    due: int
    published: int
    retried: int
    failed: int
    paused: int
    skipped_locked: bool
    runs: List[PostRunResponse]


class MaintenanceResponse(BaseModel):
    task: str
    affected: int
    details: Dict[str, Any]
