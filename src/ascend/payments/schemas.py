"""Pydantic models for payment endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    received: bool = True
    duplicate: bool = False
    status: str


class ApplePurchaseRequest(BaseModel):
    transaction_id: str = Field(min_length=1, max_length=64)
    # Development verification only: stands in for the store's transaction record.
    transaction_info: dict[str, Any] | None = None


class PurchaseResponse(BaseModel):
    status: str
    duplicate: bool
    outcome: dict[str, Any] = {}
