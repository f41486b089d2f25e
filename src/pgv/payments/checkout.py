"""Stripe Checkout session creation for subscription signup."""

import logging
from typing import Optional

import asyncpg

from pgv.payments.deps import BillingDeps
from pgv.payments.errors import CustomerConflictError
from pgv.payments.schemas import CheckoutRequest

logger = logging.getLogger(__name__)


async def ensure_customer(
    deps: BillingDeps,
    user_id: str,
    email: Optional[str],
) -> str:
    """Return the user's Stripe customer id, creating the customer if needed.

    Customer creation uses an idempotency key derived from the user id, so
    two concurrent first checkouts get the same Stripe customer back. A
    failure to persist the mapping is logged and the new customer id is
    still returned; the checkout.session.completed webhook stores it later.

    Raises:
        stripe.StripeError: On Stripe API errors
        asyncpg.PostgresError: If the mapping lookup fails
    """
    customer_id = await deps.store.get_customer_id(user_id)
    if customer_id:
        return customer_id

    params: dict = {"metadata": {"userId": user_id}}
    if email:
        params["email"] = email

    customer = deps.stripe_client.customers.create(
        params=params,
        options={"idempotency_key": f"pgv-customer-{user_id}"},
    )
    logger.info(f"Created Stripe customer {customer.id} for user {user_id}")

    try:
        return await deps.store.save_customer(user_id, customer.id, email)
    except (asyncpg.PostgresError, CustomerConflictError) as e:
        logger.error(f"Failed to persist customer mapping for user {user_id}: {e}")
        return customer.id


async def create_checkout_session(deps: BillingDeps, request: CheckoutRequest) -> str:
    """Create a Stripe Checkout Session for a subscription signup.

    The user id travels as client_reference_id and in metadata so the
    webhook can tie the payment back to the account.

    Args:
        deps: Billing dependencies
        request: Validated checkout request

    Returns:
        Stripe Checkout Session URL

    Raises:
        stripe.StripeError: On Stripe API errors
    """
    customer_id = await ensure_customer(deps, request.user_id, request.customer_email)

    base_url = (request.return_url or deps.config.client_url).rstrip("/")

    session = deps.stripe_client.checkout.sessions.create(
        params={
            "mode": "subscription",
            "customer": customer_id,
            "client_reference_id": request.user_id,
            "line_items": [
                {
                    "price": request.price_id,
                    "quantity": 1,
                }
            ],
            "success_url": f"{base_url}/dashboard?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{base_url}/subscription",
            "metadata": {"userId": request.user_id},
        }
    )

    logger.info(
        f"Created checkout session {session.id} for user {request.user_id} "
        f"(price {request.price_id})"
    )

    return session.url
