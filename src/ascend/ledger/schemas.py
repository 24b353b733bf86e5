"""Pydantic models for coin ledger endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class BalanceResponse(BaseModel):
    account_id: int
    balance: int
    total_coins_spent: int
    total_coins_purchased: int
    frozen: bool = False


class CoinTransactionEntry(BaseModel):
    id: int
    delta: int
    reason: str
    source_id: str | None = None
    balance_after: int
    created_at: datetime


class CoinHistoryResponse(BaseModel):
    entries: list[CoinTransactionEntry]
    total: int
    limit: int
    offset: int


class SpendRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=64)
    source_id: str | None = Field(default=None, max_length=255)
    idempotency_key: str | None = Field(default=None, max_length=200)


class CoinWriteResponse(BaseModel):
    account_id: int
    balance: int
    achievements_unlocked: list[str] = []


class AwardRequest(BaseModel):
    account_id: int
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=64)
    source_id: str | None = Field(default=None, max_length=255)
    idempotency_key: str | None = Field(default=None, max_length=255)


class LedgerAuditResponse(BaseModel):
    account_id: int
    balance: int
    ledger_sum: int
    last_balance_after: int | None = None
    entries: int
    consistent: bool
    frozen: bool


class ReconcileRequest(BaseModel):
    operator: str = Field(min_length=1, max_length=128)


class ReconcileResponse(BaseModel):
    account_id: int
    previous_balance: int
    balance: int
