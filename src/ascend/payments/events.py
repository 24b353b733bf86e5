"""Canonical payment event and per-provider raw payload variants.

Adapters parse raw bodies into one of the provider payload models and
immediately normalize them into ``PaymentEvent``; nothing downstream of an
adapter sees provider-specific shapes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Provider(str, Enum):
    STRIPE = "stripe"
    PADDLE = "paddle"
    APPLE = "apple"


class EventType(str, Enum):
    COIN_PURCHASE = "coin_purchase"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_PAUSED = "subscription_paused"
    SUBSCRIPTION_RESUMED = "subscription_resumed"
    PAYMENT_FAILED = "payment_failed"
    REFUND = "refund"


SUBSCRIPTION_EVENTS = frozenset({
    EventType.SUBSCRIPTION_CREATED,
    EventType.SUBSCRIPTION_RENEWED,
    EventType.SUBSCRIPTION_CANCELLED,
    EventType.SUBSCRIPTION_PAUSED,
    EventType.SUBSCRIPTION_RESUMED,
    EventType.PAYMENT_FAILED,
})


class PaymentEvent(BaseModel):
    """Provider-agnostic billing notification."""

    model_config = ConfigDict(frozen=True)

    provider: Provider
    provider_transaction_id: str
    event_type: EventType
    occurred_at: datetime
    account_id: int | None = None
    provider_subscription_id: str | None = None
    # Refunds: the provider transaction being reversed.
    original_transaction_id: str | None = None
    kind: Literal["subscription", "coins", "item"] | None = None
    amount: int = 0  # minor currency units
    currency: str = "USD"
    product_ref: str | None = None
    period_end: datetime | None = None


# ---------------------------------------------------------------------------
# Raw provider payloads
# ---------------------------------------------------------------------------


class StripeEventPayload(BaseModel):
    """Card processor event envelope."""

    model_config = ConfigDict(extra="ignore")

    source: Literal["stripe"] = "stripe"
    id: str
    type: str
    created: int
    data: dict[str, Any]

    @property
    def object(self) -> dict[str, Any]:
        return self.data.get("object", {})


class PaddleEventPayload(BaseModel):
    """Checkout platform notification envelope."""

    model_config = ConfigDict(extra="ignore")

    source: Literal["paddle"] = "paddle"
    event_id: str
    event_type: str
    occurred_at: datetime
    data: dict[str, Any]


class AppleNotificationPayload(BaseModel):
    """Mobile store server notification, or a client-submitted purchase."""

    model_config = ConfigDict(extra="ignore")

    source: Literal["apple"] = "apple"
    notification_uuid: str | None = Field(default=None, alias="notificationUUID")
    notification_type: str = Field(alias="notificationType")
    subtype: str | None = None
    transaction_id: str = Field(alias="transactionId")
    app_account_token: str | None = Field(default=None, alias="appAccountToken")


class VerifiedAppleTransaction(BaseModel):
    """Authoritative transaction returned by the receipt verification service."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    transaction_id: str = Field(alias="transactionId")
    original_transaction_id: str = Field(alias="originalTransactionId")
    product_id: str = Field(alias="productId")
    bundle_id: str = Field(alias="bundleId")
    purchase_date: datetime = Field(alias="purchaseDate")
    expires_date: datetime | None = Field(default=None, alias="expiresDate")
    revocation_date: datetime | None = Field(default=None, alias="revocationDate")
    price: int = 0  # milli-units, as the store reports
    currency: str = "USD"
    app_account_token: str | None = Field(default=None, alias="appAccountToken")
