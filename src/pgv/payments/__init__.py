"""Stripe subscription billing.

Handles checkout and portal session creation, cancellation intent, webhook
processing and the subscription store that gates tiered features.
"""

from pgv.payments.access import Feature, check_access, has_access
from pgv.payments.checkout import create_checkout_session
from pgv.payments.deps import BillingDeps, build_deps
from pgv.payments.portal import cancel_subscription, create_portal_session
from pgv.payments.store import SubscriptionRecord, SubscriptionStore
from pgv.payments.webhooks import handle_webhook

__all__ = [
    "BillingDeps",
    "Feature",
    "SubscriptionRecord",
    "SubscriptionStore",
    "build_deps",
    "cancel_subscription",
    "check_access",
    "create_checkout_session",
    "create_portal_session",
    "handle_webhook",
    "has_access",
]
