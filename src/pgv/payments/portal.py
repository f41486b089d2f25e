"""Billing portal sessions and cancellation intent."""

import logging
from typing import Any

import asyncpg

from pgv.payments.deps import BillingDeps
from pgv.payments.schemas import CancelRequest, PortalRequest

logger = logging.getLogger(__name__)


async def create_portal_session(deps: BillingDeps, request: PortalRequest) -> str:
    """Open a Stripe billing portal session for a customer.

    Returns:
        Portal session URL

    Raises:
        stripe.StripeError: On Stripe API errors
    """
    return_url = request.return_url or f"{deps.config.client_url}/dashboard"

    session = deps.stripe_client.billing_portal.sessions.create(
        params={
            "customer": request.customer_id,
            "return_url": return_url,
        }
    )

    logger.info(f"Created billing portal session for customer {request.customer_id}")
    return session.url


async def cancel_subscription(deps: BillingDeps, request: CancelRequest) -> dict[str, Any]:
    """Ask Stripe to cancel at period end and mirror the flag locally.

    Status is left alone here. The subscription only becomes canceled when
    Stripe sends customer.subscription.deleted at the end of the period.

    Returns:
        Summary of the updated Stripe subscription

    Raises:
        stripe.StripeError: On Stripe API errors
    """
    subscription = deps.stripe_client.subscriptions.update(
        request.subscription_id,
        params={"cancel_at_period_end": True},
    )
    logger.info(
        f"Subscription {request.subscription_id} set to cancel at period end "
        f"(user {request.user_id})"
    )

    try:
        found = await deps.store.set_cancel_at_period_end(
            request.user_id, request.subscription_id, True
        )
        if not found:
            logger.warning(
                f"No local subscription {request.subscription_id} for user {request.user_id}; "
                "flag will arrive with the next subscription webhook"
            )
    except asyncpg.PostgresError as e:
        logger.error(
            f"Failed to mirror cancel_at_period_end for {request.subscription_id}: {e}"
        )

    return {
        "id": subscription.id,
        "status": subscription.status,
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "current_period_end": getattr(subscription, "current_period_end", None),
    }
