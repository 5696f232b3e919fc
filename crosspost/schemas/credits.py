"""Pydantic schemas for the credit ledger endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class CreditBalanceResponse(BaseModel):
    user_id: str
    balance: int


class CreditTransactionResponse(BaseModel):
    id: str
    type: str
    amount: int
    action: str
    balance_before: int
    balance_after: int
    metadata: Dict[str, Any]
    created_at: Optional[datetime] = None


class CreditHistoryResponse(BaseModel):
    items: List[CreditTransactionResponse]
    total: int
    limit: int
    offset: int
