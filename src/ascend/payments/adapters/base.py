"""Provider adapter contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from ascend.errors import AccountCorrelationError, UnknownProduct
from ascend.payments.catalog import Product, ProductCatalog
from ascend.payments.events import EventType, PaymentEvent, Provider
from ascend.payments.verifiers import PaymentVerifier


def parse_account_id(value: Any) -> int | None:  # noqa: ANN401
    """Account ids travel as strings in provider metadata."""
    if value is None or value == "":
        return None
    try:
        account_id = int(value)
    except (TypeError, ValueError) as e:
        raise AccountCorrelationError(f"Malformed account reference: {value!r}") from e
    if account_id <= 0:
        raise AccountCorrelationError(f"Malformed account reference: {value!r}")
    return account_id


def from_timestamp(value: Any) -> datetime | None:  # noqa: ANN401
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class ProviderAdapter(ABC):
    """Translate one provider's notifications into canonical ``PaymentEvent``s.

    ``normalize`` verifies authenticity first; a ``PaymentEvent`` is only ever
    built from a verified payload. Adapters hold no state beyond their
    construction-time configuration and have no side effects apart from the
    verification call.
    """

    provider: Provider

    def __init__(self, verifier: PaymentVerifier, catalog: ProductCatalog) -> None:
        self.verifier = verifier
        self.catalog = catalog

    async def normalize(self, raw_body: bytes, headers: Mapping[str, str]) -> PaymentEvent:
        payload = await self.verifier.verify(raw_body, headers)
        return self.translate(payload)

    @abstractmethod
    def translate(self, payload: dict[str, Any]) -> PaymentEvent:
        """Map a verified payload onto a PaymentEvent or raise UnsupportedEvent."""

    def _event(
        self,
        event_type: EventType,
        provider_transaction_id: str,
        occurred_at: datetime,
        *,
        product: Product | None = None,
        **fields: Any,  # noqa: ANN401
    ) -> PaymentEvent:
        kind = fields.pop("kind", None) or (product.kind if product else None)
        if kind is None and event_type != EventType.REFUND:
            kind = "subscription"
        if (
            event_type == EventType.COIN_PURCHASE
            and product is not None
            and product.kind == "subscription"
        ):
            raise UnknownProduct(f"{product.ref} is a subscription plan, not a one-time purchase")
        return PaymentEvent(
            provider=self.provider,
            provider_transaction_id=provider_transaction_id,
            event_type=event_type,
            occurred_at=occurred_at,
            kind=kind,
            product_ref=product.ref if product else None,
            **fields,
        )
