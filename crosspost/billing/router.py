"""Credit balance and ledger history routes."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from crosspost.auth.dependencies import require_auth_context
from crosspost.auth.tokens import AuthContext
from crosspost.billing.credits import get_balance, get_transaction_history
from crosspost.schemas.credits import CreditBalanceResponse, CreditHistoryResponse, CreditTransactionResponse
from crosspost.storage.db import get_session


router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", response_model=CreditBalanceResponse)
def credit_balance(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> CreditBalanceResponse:
    return CreditBalanceResponse(user_id=auth.user_id, balance=get_balance(session, auth.user_id))


@router.get("/history", response_model=CreditHistoryResponse)
def credit_history(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> CreditHistoryResponse:
    rows, total = get_transaction_history(session, user_id=auth.user_id, limit=limit, offset=offset)
    items = [
        CreditTransactionResponse(
            id=row.id,
            type=row.type,
            amount=row.amount,
            action=row.action,
            balance_before=row.balance_before,
            balance_after=row.balance_after,
            metadata=json.loads(row.metadata_json or "{}"),
            created_at=row.created_at,
        )
        for row in rows
    ]
    return CreditHistoryResponse(items=items, total=total, limit=limit, offset=offset)
