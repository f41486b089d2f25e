"""Tests for tier-based feature gating."""

import pytest

from pgv.db.models import SubscriptionStatus, SubscriptionTier
from pgv.payments.access import Feature, check_access, has_access

from conftest import make_record


@pytest.mark.parametrize(
    "tier,feature,expected",
    [
        (None, Feature.BASIC_TUTORIALS, True),
        (None, Feature.AI_ANALYSIS, False),
        (SubscriptionTier.UNKNOWN, Feature.AI_ANALYSIS, False),
        (SubscriptionTier.BASIC, Feature.AI_ANALYSIS, False),
        (SubscriptionTier.PRO, Feature.AI_ANALYSIS, True),
        (SubscriptionTier.PRO, Feature.MENTOR_REVIEWS, False),
        (SubscriptionTier.PREMIUM, Feature.PGV_ACADEMY, True),
    ],
)
def test_has_access(tier, feature, expected):
    assert has_access(tier, feature) is expected


@pytest.mark.asyncio
async def test_active_subscription_unlocks_tier(store):
    store.subscriptions["user_1"] = make_record(tier=SubscriptionTier.PREMIUM)

    assert await check_access(store, "user_1", Feature.MENTOR_REVIEWS)


@pytest.mark.asyncio
async def test_canceled_subscription_falls_back_to_free(store):
    store.subscriptions["user_1"] = make_record(
        tier=SubscriptionTier.PREMIUM, status=SubscriptionStatus.CANCELED
    )

    assert not await check_access(store, "user_1", Feature.MENTOR_REVIEWS)
    assert await check_access(store, "user_1", Feature.BASIC_TUTORIALS)
