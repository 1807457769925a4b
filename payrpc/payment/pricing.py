# payrpc/payment/pricing.py
"""
Price lookup for payment challenges.

Every protected endpoint costs the configured base price unless a path
prefix override applies. The discount tier table is bookkeeping only:
tiers are recorded per wallet but not yet derived from token holdings,
so challenges are always quoted at the undiscounted price.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_TIER = "none"


@dataclass(frozen=True)
class DiscountTier:
    name: str
    min_tokens: int
    discount_percent: int
    price: float  # SOL per call at the default base price


DISCOUNT_TIERS: List[DiscountTier] = [
    DiscountTier(name="none", min_tokens=0, discount_percent=0, price=0.001),
    DiscountTier(name="bronze", min_tokens=100, discount_percent=20, price=0.0008),
    DiscountTier(name="silver", min_tokens=1000, discount_percent=50, price=0.0005),
    DiscountTier(name="gold", min_tokens=10000, discount_percent=80, price=0.0002),
]


def get_discount_tier(name: Optional[str]) -> DiscountTier:
    """Look up a tier by name, falling back to the undiscounted tier."""
    for tier in DISCOUNT_TIERS:
        if tier.name == name:
            return tier
    if name and name != DEFAULT_TIER:
        logger.warning(f"Unknown discount tier {name!r}, using {DEFAULT_TIER!r}")
    return DISCOUNT_TIERS[0]


def price_for_tier(base_price: float, tier_name: Optional[str]) -> float:
    """
    Apply a tier's discount percentage to a base price.

    Args:
        base_price: Undiscounted price in SOL
        tier_name: Discount tier name

    Returns:
        Discounted price, rounded to whole lamports
    """
    tier = get_discount_tier(tier_name)
    return round(base_price * (100 - tier.discount_percent) / 100, 9)


def resolve_endpoint_price(
    endpoint: str,
    base_price: float,
    overrides: Optional[Mapping[str, float]] = None,
) -> float:
    """
    Price for ``endpoint``: the longest matching prefix override, else ``base_price``.
    """
    if not overrides:
        return base_price

    normalized = endpoint.rstrip("/")
    best_prefix = None
    for prefix in overrides:
        stripped = prefix.rstrip("/")
        # Whole path segments only: /api/v1/token does not price /api/v1/tokenomics
        if normalized == stripped or normalized.startswith(stripped + "/"):
            if best_prefix is None or len(prefix) > len(best_prefix):
                best_prefix = prefix

    if best_prefix is None:
        return base_price
    return float(overrides[best_prefix])


def describe_tiers() -> List[Dict[str, object]]:
    """Tier table in the shape served by the payment info endpoint."""
    return [
        {
            "name": tier.name,
            "minTokens": tier.min_tokens,
            "discount": tier.discount_percent,
            "price": tier.price,
        }
        for tier in DISCOUNT_TIERS
    ]
