"""Price-to-tier lookup and Stripe status mapping."""

import logging
from typing import Mapping, Optional

from pgv.db.models import SubscriptionStatus, SubscriptionTier

logger = logging.getLogger(__name__)

PRICE_TIERS: dict[str, SubscriptionTier] = {
    "price_basic_monthly": SubscriptionTier.BASIC,
    "price_basic_yearly": SubscriptionTier.BASIC,
    "price_pro_monthly": SubscriptionTier.PRO,
    "price_pro_yearly": SubscriptionTier.PRO,
    "price_premium_monthly": SubscriptionTier.PREMIUM,
    "price_premium_yearly": SubscriptionTier.PREMIUM,
}

TIER_RANK: dict[SubscriptionTier, int] = {
    SubscriptionTier.UNKNOWN: 0,
    SubscriptionTier.FREE: 0,
    SubscriptionTier.BASIC: 1,
    SubscriptionTier.PRO: 2,
    SubscriptionTier.PREMIUM: 3,
}

_STRIPE_STATUSES: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "paused": SubscriptionStatus.INCOMPLETE,
}


def tier_for_price(
    price_id: Optional[str],
    overrides: Optional[Mapping[str, str]] = None,
) -> SubscriptionTier:
    """Resolve the tier bought with a Stripe price.

    Configured overrides are checked before the built-in table. Anything
    that matches neither resolves to UNKNOWN rather than raising.

    Args:
        price_id: Stripe price identifier (may be None for malformed events)
        overrides: Extra price_id -> tier name entries from settings

    Returns:
        SubscriptionTier for the price
    """
    if not price_id:
        return SubscriptionTier.UNKNOWN

    if overrides and price_id in overrides:
        try:
            return SubscriptionTier(overrides[price_id])
        except ValueError:
            logger.warning(
                f"Configured tier {overrides[price_id]!r} for {price_id} is not a known tier"
            )
            return SubscriptionTier.UNKNOWN

    return PRICE_TIERS.get(price_id, SubscriptionTier.UNKNOWN)


def status_from_stripe(stripe_status: Optional[str]) -> SubscriptionStatus:
    """Map a Stripe subscription status onto the stored status set."""
    status = _STRIPE_STATUSES.get(stripe_status or "")
    if status is None:
        logger.warning(f"Unknown Stripe status: {stripe_status}")
        return SubscriptionStatus.INCOMPLETE
    return status


def tier_rank(tier: SubscriptionTier) -> int:
    return TIER_RANK[tier]
