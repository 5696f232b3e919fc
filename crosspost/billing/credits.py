"""Credit ledger: per-user balance plus an append-only transaction log.

Every balance move writes exactly one ``CreditTransaction`` and updates
``UserProfile.credits_balance`` in the same database transaction. The balance
moves by an atomic increment (deductions additionally require the balance to
cover the cost), and the ledger row records the values the update produced.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
from typing import Any, Dict, List, Optional, Tuple
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crosspost.core.logger import get_logger
from crosspost.core.metrics import record_credits
from crosspost.storage.models import CreditTransaction, UserProfile


logger = get_logger("crosspost.credits")


CREDIT_COSTS: Dict[str, int] = {
    "social_post_basic": 1,
    "social_post_multi": 2,
    "social_post_scheduled": 1,
    "social_analytics": 5,
    "ai_chat_basic": 1,
    "ai_chat_advanced": 3,
    "ai_image_generate": 5,
    "ai_document_analyze": 3,
    "pdf_create": 2,
    "pdf_merge": 1,
    "pdf_convert": 2,
    "ebook_create": 10,
    "presentation_create": 5,
    "email_template": 2,
    "logo_generate": 5,
    "social_graphic": 3,
}

CREDIT_SOURCES = frozenset({"purchase", "bonus", "referral", "promo", "subscription"})

MULTI_PLATFORM_THRESHOLD = 3

INSUFFICIENT_CREDITS = "insufficient_credits"
PROFILE_NOT_FOUND = "profile_not_found"
BALANCE_UPDATE_FAILED = "balance_update_failed"


@dataclass(frozen=True)
class CreditCheck:
    sufficient: bool
    balance: int
    required: int


@dataclass(frozen=True)
class CreditResult:
    success: bool
    new_balance: Optional[int] = None
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


def _json_dumps(payload: Optional[Dict[str, Any]]) -> str:
    return json.dumps(payload or {}, separators=(",", ":"), ensure_ascii=True, sort_keys=True, default=str)


def _transaction_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def get_action_cost(action: str) -> int:
    if action not in CREDIT_COSTS:
        raise ValueError(f"Unknown credit action: {action}")
    return CREDIT_COSTS[action]


def select_publish_action(target_count: int) -> str:
    return "social_post_multi" if target_count >= MULTI_PLATFORM_THRESHOLD else "social_post_basic"


def get_balance(session: Session, user_id: str) -> int:
    balance = session.scalar(select(UserProfile.credits_balance).where(UserProfile.id == user_id))
    return int(balance or 0)


def check_credits(session: Session, *, user_id: str, action: str) -> CreditCheck:
    required = get_action_cost(action)
    balance = get_balance(session, user_id)
    return CreditCheck(sufficient=balance >= required, balance=balance, required=required)


def _insufficient(amount: int, available: int) -> CreditResult:
    return CreditResult(
        success=False,
        new_balance=available,
        error=f"Insufficient credits. Required: {-amount}, Available: {available}",
        error_code=INSUFFICIENT_CREDITS,
    )


def _apply_movement(
    session: Session,
    *,
    user_id: str,
    amount: int,
    kind: str,
    action: str,
    prefix: str,
    metadata: Optional[Dict[str, Any]],
    require_cover: bool,
) -> CreditResult:
    profile = session.scalar(select(UserProfile).where(UserProfile.id == user_id))
    if profile is None:
        return CreditResult(success=False, error="User profile not found", error_code=PROFILE_NOT_FOUND)

    balance_before = int(profile.credits_balance)
    if require_cover and balance_before < -amount:
        return _insufficient(amount, balance_before)

    transaction_id = _transaction_id(prefix)
    now = datetime.now(timezone.utc)
    statement = update(UserProfile).where(UserProfile.id == user_id)
    if require_cover:
        statement = statement.where(UserProfile.credits_balance >= -amount)
    try:
        moved = session.execute(
            statement.values(credits_balance=UserProfile.credits_balance + amount, updated_at=now).execution_options(
                synchronize_session=False
            )
        )
        if moved.rowcount != 1:
            session.rollback()
            available = get_balance(session, user_id)
            logger.warning("credit_balance_floor_hit", user_id=user_id, kind=kind, amount=amount, balance=available)
            return _insufficient(amount, available)

        # The row stays locked by this transaction, so the refreshed value is ours.
        session.refresh(profile, ["credits_balance"])
        balance_after = int(profile.credits_balance)
        balance_before = balance_after - amount
        session.add(
            CreditTransaction(
                id=transaction_id,
                user_id=user_id,
                type=kind,
                amount=amount,
                action=action,
                balance_before=balance_before,
                balance_after=balance_after,
                metadata_json=_json_dumps(metadata),
            )
        )
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("credit_balance_update_failed", user_id=user_id, kind=kind, error=str(exc))
        return CreditResult(success=False, error="Failed to update balance", error_code=BALANCE_UPDATE_FAILED)

    record_credits(kind=kind, amount=abs(amount))
    logger.info(
        "credit_transaction_recorded",
        user_id=user_id,
        kind=kind,
        action=action,
        amount=amount,
        balance_after=balance_after,
        transaction_id=transaction_id,
    )
    return CreditResult(success=True, new_balance=balance_after, transaction_id=transaction_id)


def deduct_credits(
    session: Session,
    *,
    user_id: str,
    action: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> CreditResult:
    cost = get_action_cost(action)
    return _apply_movement(
        session,
        user_id=user_id,
        amount=-cost,
        kind="deduction",
        action=action,
        prefix="txn",
        metadata=metadata,
        require_cover=True,
    )


def refund_credits(
    session: Session,
    *,
    user_id: str,
    amount: int,
    reason: str,
    original_transaction_id: Optional[str] = None,
) -> CreditResult:
    if amount <= 0:
        raise ValueError("Refund amount must be positive")
    return _apply_movement(
        session,
        user_id=user_id,
        amount=amount,
        kind="refund",
        action="refund",
        prefix="ref",
        metadata={"reason": reason, "original_transaction_id": original_transaction_id},
        require_cover=False,
    )


def add_credits(
    session: Session,
    *,
    user_id: str,
    amount: int,
    source: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> CreditResult:
    if amount <= 0:
        raise ValueError("Credit amount must be positive")
    if source not in CREDIT_SOURCES:
        raise ValueError(f"Unknown credit source: {source}")
    return _apply_movement(
        session,
        user_id=user_id,
        amount=amount,
        kind="addition",
        action=f"credit_{source}",
        prefix="add",
        metadata=metadata,
        require_cover=False,
    )


def get_transaction_history(
    session: Session,
    *,
    user_id: str,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[CreditTransaction], int]:
    total = session.scalar(
        select(func.count()).select_from(CreditTransaction).where(CreditTransaction.user_id == user_id)
    )
    rows = session.scalars(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .limit(limit)
        .offset(offset)
    ).all()
    return list(rows), int(total or 0)
