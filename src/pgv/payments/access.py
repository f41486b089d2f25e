"""Tier-based feature gating."""

import logging
from enum import Enum
from typing import Optional

from pgv.db.models import SubscriptionStatus, SubscriptionTier
from pgv.payments.store import SubscriptionStore
from pgv.payments.tiers import tier_rank

logger = logging.getLogger(__name__)


class Feature(str, Enum):
    """Gated platform features."""

    BASIC_TUTORIALS = "basic_tutorials"
    AI_ANALYSIS = "ai_analysis"
    PGV_ACADEMY = "pgv_academy"
    MENTOR_REVIEWS = "mentor_reviews"


REQUIRED_TIER: dict[Feature, SubscriptionTier] = {
    Feature.BASIC_TUTORIALS: SubscriptionTier.FREE,
    Feature.AI_ANALYSIS: SubscriptionTier.PRO,
    Feature.PGV_ACADEMY: SubscriptionTier.PREMIUM,
    Feature.MENTOR_REVIEWS: SubscriptionTier.PREMIUM,
}


def has_access(tier: Optional[SubscriptionTier], feature: Feature) -> bool:
    """Check whether a tier unlocks a feature.

    Users without a subscription row (tier None) are treated as free.
    """
    effective = tier or SubscriptionTier.FREE
    return tier_rank(effective) >= tier_rank(REQUIRED_TIER[feature])


async def check_access(store: SubscriptionStore, user_id: str, feature: Feature) -> bool:
    """Look up the user's current tier and gate the feature on it.

    A canceled subscription keeps its tier as history, so only the free
    features stay open once the status is canceled.
    """
    record = await store.get_subscription(user_id)
    if record is None or record.status is SubscriptionStatus.CANCELED:
        tier = None
    else:
        tier = record.tier

    allowed = has_access(tier, feature)
    logger.debug(f"Access to {feature.value} for {user_id}: {allowed}")
    return allowed
