"""Product catalog: logical products and their per-provider references."""

from __future__ import annotations

from dataclasses import dataclass, field

from ascend.errors import UnknownProduct


@dataclass(frozen=True)
class Product:
    ref: str
    kind: str  # coins | subscription | item
    coins: int = 0
    tier: str | None = None
    billing_cycle: str | None = None
    provider_refs: dict[str, str] = field(default_factory=dict)


class ProductCatalog:
    """Resolves provider product identifiers to logical products."""

    def __init__(self, products: list[Product]) -> None:
        self._by_ref = {p.ref: p for p in products}
        self._by_provider: dict[tuple[str, str], Product] = {}
        for product in products:
            for provider, provider_ref in product.provider_refs.items():
                self._by_provider[(provider, provider_ref)] = product

    def get(self, ref: str) -> Product:
        try:
            return self._by_ref[ref]
        except KeyError:
            raise UnknownProduct(f"Unknown product: {ref}") from None

    def resolve(self, provider: str, provider_ref: str | None) -> Product:
        """Map a provider's product/price id to a Product, or raise UnknownProduct."""
        if not provider_ref:
            raise UnknownProduct(f"{provider}: notification carries no product reference")
        product = self._by_provider.get((provider, provider_ref))
        if product is None:
            raise UnknownProduct(f"{provider}: unknown product {provider_ref}")
        return product

    def __iter__(self):
        return iter(self._by_ref.values())


def _coin_pack(coins: int) -> Product:
    return Product(
        ref=f"coins-{coins}",
        kind="coins",
        coins=coins,
        provider_refs={
            "stripe": f"price_coins_{coins}",
            "paddle": f"pri_coins_{coins}",
            "apple": f"app.ascend.ios.coins.{coins}",
        },
    )


def _plan(tier: str, cycle: str) -> Product:
    apple_cycle = "annual" if cycle == "yearly" else "monthly"
    return Product(
        ref=f"{tier}-{cycle}",
        kind="subscription",
        tier=tier,
        billing_cycle=cycle,
        provider_refs={
            "stripe": f"price_{tier}_{cycle}",
            "paddle": f"pri_{tier}_{cycle}",
            "apple": f"app.ascend.ios.sub.{tier}.{apple_cycle}",
        },
    )


DEFAULT_PRODUCTS: list[Product] = [
    _coin_pack(100),
    _coin_pack(500),
    _coin_pack(1000),
    _coin_pack(5000),
    _plan("pro", "monthly"),
    _plan("pro", "yearly"),
    _plan("team", "monthly"),
    _plan("team", "yearly"),
    _plan("enterprise", "monthly"),
    _plan("enterprise", "yearly"),
    Product(
        ref="streak-freeze",
        kind="item",
        provider_refs={"stripe": "price_streak_freeze", "apple": "app.ascend.ios.item.streak_freeze"},
    ),
]
