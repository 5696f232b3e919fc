"""Cron entrypoints: scheduled publishing and maintenance jobs."""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from crosspost.channels.registry import get_registry
from crosspost.core.config import get_settings
from crosspost.core.logger import get_logger
from crosspost.orchestrator.locks import CronLockManager
from crosspost.orchestrator.maintenance import MAINTENANCE_TASKS, run_maintenance_task
from crosspost.orchestrator.scheduler import PostScheduler
from crosspost.schemas.cron import MaintenanceResponse, PostRunResponse, SchedulerRunResponse
from crosspost.storage.db import get_session, get_session_factory
from crosspost.storage.redis_client import get_client


router = APIRouter(prefix="/cron", tags=["cron"])
logger = get_logger("crosspost.cron")


def require_cron_secret(cron_secret: Optional[str] = Header(default=None, alias="X-Cron-Secret")) -> None:
    expected = get_settings().cron_secret.strip()
    if not expected:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="cron_secret_not_configured")
    received = (cron_secret or "").strip()
    if not received or not secrets.compare_digest(received, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_cron_secret")


def get_lock_manager() -> CronLockManager:
    return CronLockManager(get_client(), ttl_seconds=get_settings().scheduler_lock_ttl_seconds)


def get_post_scheduler(lock_manager: CronLockManager = Depends(get_lock_manager)) -> PostScheduler:
    return PostScheduler(
        session_factory=get_session_factory(),
        lock_manager=lock_manager,
        registry=get_registry(),
    )


@router.post("/run", response_model=SchedulerRunResponse, dependencies=[Depends(require_cron_secret)])
def run_scheduler(scheduler: PostScheduler = Depends(get_post_scheduler)) -> SchedulerRunResponse:
    result = scheduler.run_once()
    return SchedulerRunResponse(
        due=result.due,
        published=result.published,
        retried=result.retried,
        failed=result.failed,
        paused=result.paused,
        skipped_locked=result.skipped_locked,
        runs=[
            PostRunResponse(post_id=run.post_id, tenant_id=run.tenant_id, status=run.status, details=run.details)
            for run in result.runs
        ],
    )


@router.post(
    "/maintenance/{task}",
    response_model=MaintenanceResponse,
    dependencies=[Depends(require_cron_secret)],
)
def run_maintenance(
    task: str,
    session: Session = Depends(get_session),
    lock_manager: CronLockManager = Depends(get_lock_manager),
) -> MaintenanceResponse:
    if task not in MAINTENANCE_TASKS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown maintenance task: {task}")

    lock = lock_manager.acquire(f"maintenance:{task}")
    if lock is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="maintenance_task_running")
    try:
        result = run_maintenance_task(session, task)
    finally:
        lock.release()
    logger.info("maintenance_task_finished", task=task, affected=result.affected)
    return MaintenanceResponse(task=result.task, affected=result.affected, details=result.details)
