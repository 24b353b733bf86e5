"""Build provider adapters from explicit configuration.

Settings are read once, here, into frozen config objects; adapters and
verifiers receive everything they need through their constructors.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from ascend.config import Settings
from ascend.payments.adapters.apple import AppleAdapter
from ascend.payments.adapters.base import ProviderAdapter
from ascend.payments.adapters.paddle import PaddleAdapter
from ascend.payments.adapters.stripe import StripeAdapter
from ascend.payments.catalog import ProductCatalog
from ascend.payments.verifiers import (
    DevVerifier,
    PaymentVerifier,
    ReceiptServiceVerifier,
    paddle_signature_verifier,
    stripe_signature_verifier,
)

VERIFICATION_MODES = frozenset({"live", "dev"})


@dataclass(frozen=True)
class SignedWebhookConfig:
    secret: str
    tolerance_seconds: int = 300


@dataclass(frozen=True)
class ReceiptServiceConfig:
    url: str
    api_key: str
    bundle_id: str
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class PaymentsConfig:
    mode: str
    stripe: SignedWebhookConfig
    paddle: SignedWebhookConfig
    apple: ReceiptServiceConfig

    @classmethod
    def from_settings(cls, settings: Settings) -> PaymentsConfig:
        mode = settings.payment_verification_mode.lower()
        if mode not in VERIFICATION_MODES:
            msg = f"Unknown payment verification mode: {settings.payment_verification_mode}"
            raise ValueError(msg)
        if mode == "dev" and settings.environment == "production":
            msg = "Development payment verification cannot be enabled in production"
            raise RuntimeError(msg)
        return cls(
            mode=mode,
            stripe=SignedWebhookConfig(settings.stripe_webhook_secret, settings.webhook_tolerance_seconds),
            paddle=SignedWebhookConfig(settings.paddle_webhook_secret, settings.webhook_tolerance_seconds),
            apple=ReceiptServiceConfig(
                url=settings.apple_verify_url,
                api_key=settings.apple_api_key,
                bundle_id=settings.apple_bundle_id,
                timeout_seconds=settings.apple_verify_timeout_seconds,
            ),
        )


def build_adapters(
    config: PaymentsConfig,
    catalog: ProductCatalog,
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, ProviderAdapter]:
    """Create one adapter per provider. Providers without credentials are left out in live mode."""
    adapters: dict[str, ProviderAdapter] = {}

    if config.mode == "dev":
        adapters["stripe"] = StripeAdapter(DevVerifier(), catalog)
        adapters["paddle"] = PaddleAdapter(DevVerifier(), catalog)
        adapters["apple"] = AppleAdapter(DevVerifier(receipt_mode=True), catalog)
        return adapters

    if config.stripe.secret:
        adapters["stripe"] = StripeAdapter(
            stripe_signature_verifier(config.stripe.secret, config.stripe.tolerance_seconds), catalog
        )
    if config.paddle.secret:
        adapters["paddle"] = PaddleAdapter(
            paddle_signature_verifier(config.paddle.secret, config.paddle.tolerance_seconds), catalog
        )
    if config.apple.api_key:
        verifier: PaymentVerifier = ReceiptServiceVerifier(
            config.apple.url,
            config.apple.api_key,
            config.apple.bundle_id,
            timeout_seconds=config.apple.timeout_seconds,
            client=http_client,
        )
        adapters["apple"] = AppleAdapter(verifier, catalog)
    return adapters
