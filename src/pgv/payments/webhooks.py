"""Stripe webhook verification and event processing."""

import json
import logging
from typing import Awaitable, Callable, Optional

import stripe
from aiohttp import web

from pgv.db.models import SubscriptionStatus, SubscriptionTier
from pgv.payments.deps import BillingDeps
from pgv.payments.errors import (
    BillingError,
    SubscriptionNotFoundError,
    UnknownCustomerError,
)
from pgv.payments.events import (
    CheckoutCompleted,
    CustomerUpdated,
    InvoiceRecorded,
    SubscriptionChanged,
    SubscriptionDeleted,
    Unhandled,
    WebhookEvent,
    parse_event,
)
from pgv.payments.store import SubscriptionRecord
from pgv.payments.tiers import status_from_stripe, tier_for_price

logger = logging.getLogger(__name__)


async def handle_webhook(
    deps: BillingDeps,
    payload: bytes,
    sig_header: Optional[str],
) -> web.Response:
    """Verify a Stripe webhook and apply it to the subscription store.

    Nothing is read from or written to the store before the signature checks
    out, and signatures older than Stripe's default tolerance (5 minutes) are
    rejected so captured payloads cannot be replayed. Events referencing an
    unmapped customer are dead-lettered and answered with 500 so Stripe
    redelivers them; a later successful delivery marks the dead letter
    resolved.

    Args:
        deps: Billing dependencies
        payload: Raw request body, exactly as received
        sig_header: Stripe-Signature header value

    Returns:
        aiohttp.web.Response (200 applied or ignored, 400 rejected, 500 failed)
    """
    if not sig_header:
        logger.error("Missing Stripe-Signature header")
        return web.json_response({"error": "Missing signature"}, status=400)

    try:
        secret = deps.webhook_secret
    except BillingError as e:
        logger.error(f"Cannot verify webhook: {e}")
        return web.json_response({"error": "Webhook not configured"}, status=e.status)

    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(
            body, sig_header, secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
        )
        raw_event = json.loads(body)
        event = parse_event(raw_event)
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid webhook signature: {e}")
        return web.json_response({"error": "Invalid signature"}, status=400)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        return web.json_response({"error": "Invalid payload"}, status=400)

    event_type = raw_event["type"]
    logger.info(f"Received webhook {raw_event.get('id')}: {event_type}")

    try:
        await dispatch(deps, event)
    except UnknownCustomerError as e:
        logger.error(f"Dead-lettering {event_type} {raw_event.get('id')}: {e}")
        try:
            await deps.store.dead_letter(
                event_id=raw_event.get("id") or "",
                event_type=event_type,
                customer_id=e.customer_id,
                reason=e.message,
                payload=raw_event,
            )
        except Exception:
            logger.exception(f"Failed to dead-letter webhook {raw_event.get('id')}")
        return web.json_response({"error": "Error processing webhook"}, status=e.status)
    except Exception as e:
        logger.exception(f"Error processing webhook {event_type}: {e}")
        # 500 so Stripe retries
        return web.json_response({"error": "Error processing webhook"}, status=500)

    if not isinstance(event, Unhandled):
        try:
            await deps.store.resolve_dead_letter(raw_event.get("id") or "")
        except Exception:
            logger.exception(f"Failed to resolve dead letter for {raw_event.get('id')}")

    return web.json_response({"received": True})


async def _resolve_user(deps: BillingDeps, customer_id: Optional[str]) -> str:
    user_id = await deps.store.get_user_id(customer_id) if customer_id else None
    if not user_id:
        raise UnknownCustomerError(customer_id)
    return user_id


async def _apply_subscription_changed(deps: BillingDeps, event: SubscriptionChanged) -> None:
    """Upsert the user's row from a created/updated subscription."""
    user_id = await _resolve_user(deps, event.customer_id)

    status = status_from_stripe(event.stripe_status)
    record = SubscriptionRecord(
        user_id=user_id,
        stripe_customer_id=event.customer_id,
        stripe_subscription_id=event.subscription_id,
        price_id=event.price_id,
        status=status,
        tier=tier_for_price(event.price_id, deps.config.stripe_price_tiers),
        current_period_start=event.current_period_start,
        current_period_end=event.current_period_end,
        cancel_at_period_end=event.cancel_at_period_end,
    )
    if record.tier is SubscriptionTier.UNKNOWN:
        logger.warning(f"Price {event.price_id} does not map to a tier")

    await deps.store.upsert_subscription(record)


async def _apply_subscription_deleted(deps: BillingDeps, event: SubscriptionDeleted) -> None:
    """Mark the user's subscription canceled; tier and period stay as history."""
    user_id = await _resolve_user(deps, event.customer_id)

    if not await deps.store.mark_canceled(user_id, event.canceled_at):
        raise SubscriptionNotFoundError(user_id)

    logger.info(
        f"Subscription {event.subscription_id} for user {user_id} "
        f"is now {SubscriptionStatus.CANCELED.value}"
    )


async def _apply_checkout_completed(deps: BillingDeps, event: CheckoutCompleted) -> None:
    """Store the customer mapping if checkout could not persist it."""
    if not event.user_id or not event.customer_id:
        logger.warning(
            f"checkout.session.completed {event.session_id} missing user or customer - skipping"
        )
        return

    if await deps.store.get_customer_id(event.user_id):
        return

    await deps.store.save_customer(event.user_id, event.customer_id, event.customer_email)


async def _apply_invoice(deps: BillingDeps, event: InvoiceRecorded) -> None:
    if not event.subscription_id:
        logger.info(f"Invoice {event.invoice_id} is not a subscription invoice - skipping")
        return

    user_id = await _resolve_user(deps, event.customer_id)

    await deps.store.record_invoice(
        user_id=user_id,
        invoice_id=event.invoice_id,
        subscription_id=event.subscription_id,
        amount_due=event.amount_due,
        amount_paid=event.amount_paid,
        currency=event.currency,
        status=event.status,
        hosted_invoice_url=event.hosted_invoice_url,
        invoice_pdf=event.invoice_pdf,
    )

    if not event.paid:
        logger.warning(f"Payment failed for invoice {event.invoice_id} (user {user_id})")


async def _apply_customer_updated(deps: BillingDeps, event: CustomerUpdated) -> None:
    if not await deps.store.update_customer_email(event.customer_id, event.email):
        logger.info(f"Customer {event.customer_id} is not linked to a user - skipping")


async def _acknowledge(deps: BillingDeps, event: Unhandled) -> None:
    logger.info(f"Unhandled event type: {event.event_type}")


_HANDLERS: dict[type, Callable[[BillingDeps, WebhookEvent], Awaitable[None]]] = {
    SubscriptionChanged: _apply_subscription_changed,
    SubscriptionDeleted: _apply_subscription_deleted,
    CheckoutCompleted: _apply_checkout_completed,
    InvoiceRecorded: _apply_invoice,
    CustomerUpdated: _apply_customer_updated,
    Unhandled: _acknowledge,
}


async def dispatch(deps: BillingDeps, event: WebhookEvent) -> None:
    """Apply a parsed event through the handler registered for its variant."""
    await _HANDLERS[type(event)](deps, event)
