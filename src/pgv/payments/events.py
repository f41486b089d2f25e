"""Typed view of the Stripe webhook events the service reacts to.

``parse_event`` turns a verified event payload into exactly one of the
variants below. Event types the service does not act on become
``Unhandled`` so the dispatcher can acknowledge them without a state change.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionChanged:
    """customer.subscription.created / customer.subscription.updated"""

    event_id: str
    created: bool
    subscription_id: str
    customer_id: Optional[str]
    stripe_status: Optional[str]
    price_id: Optional[str]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool


@dataclass(frozen=True)
class SubscriptionDeleted:
    """customer.subscription.deleted"""

    event_id: str
    subscription_id: str
    customer_id: Optional[str]
    canceled_at: Optional[datetime]


@dataclass(frozen=True)
class CheckoutCompleted:
    """checkout.session.completed"""

    event_id: str
    session_id: str
    user_id: Optional[str]
    customer_id: Optional[str]
    customer_email: Optional[str]


@dataclass(frozen=True)
class InvoiceRecorded:
    """invoice.payment_succeeded / invoice.payment_failed"""

    event_id: str
    invoice_id: str
    paid: bool
    customer_id: Optional[str]
    subscription_id: Optional[str]
    amount_due: int
    amount_paid: int
    currency: Optional[str]
    status: Optional[str]
    hosted_invoice_url: Optional[str]
    invoice_pdf: Optional[str]


@dataclass(frozen=True)
class CustomerUpdated:
    """customer.updated"""

    event_id: str
    customer_id: str
    email: Optional[str]


@dataclass(frozen=True)
class Unhandled:
    """Any event type the service acknowledges without acting on."""

    event_id: str
    event_type: str


WebhookEvent = Union[
    SubscriptionChanged,
    SubscriptionDeleted,
    CheckoutCompleted,
    InvoiceRecorded,
    CustomerUpdated,
    Unhandled,
]


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(subscription: Mapping[str, Any]) -> Mapping[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _customer_id(obj: Mapping[str, Any]) -> Optional[str]:
    # Expanded objects carry the customer as a dict instead of an id
    customer = obj.get("customer")
    if isinstance(customer, Mapping):
        return customer.get("id")
    return customer


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    # Newer API versions moved the subscription under parent.subscription_details
    if invoice.get("subscription"):
        return invoice["subscription"]
    parent = invoice.get("parent") or {}
    return (parent.get("subscription_details") or {}).get("subscription")


def _subscription_changed(event_id: str, created: bool, obj: Mapping[str, Any]) -> SubscriptionChanged:
    item = _first_item(obj)
    price = item.get("price") or {}
    # Billing periods live on the item in newer API versions
    period_start = obj.get("current_period_start", item.get("current_period_start"))
    period_end = obj.get("current_period_end", item.get("current_period_end"))

    return SubscriptionChanged(
        event_id=event_id,
        created=created,
        subscription_id=obj["id"],
        customer_id=_customer_id(obj),
        stripe_status=obj.get("status"),
        price_id=price.get("id"),
        current_period_start=_timestamp(period_start),
        current_period_end=_timestamp(period_end),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
    )


def parse_event(event: Mapping[str, Any]) -> WebhookEvent:
    """Build the typed variant for a verified Stripe event payload.

    Raises:
        ValueError: If the payload is missing its type or data object
    """
    if not isinstance(event, Mapping):
        raise ValueError("Event payload is not a JSON object")

    event_type = event.get("type")
    try:
        obj = event["data"]["object"]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Event {event.get('id')} has no data.object") from e
    if not event_type:
        raise ValueError("Event has no type")

    event_id = event.get("id") or ""

    try:
        return _parse(event_type, event_id, obj)
    except KeyError as e:
        raise ValueError(f"{event_type} event {event_id} is missing field {e}") from e


def _parse(event_type: str, event_id: str, obj: Mapping[str, Any]) -> WebhookEvent:
    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        return _subscription_changed(
            event_id, event_type == "customer.subscription.created", obj
        )

    if event_type == "customer.subscription.deleted":
        return SubscriptionDeleted(
            event_id=event_id,
            subscription_id=obj["id"],
            customer_id=_customer_id(obj),
            canceled_at=_timestamp(obj.get("canceled_at") or obj.get("ended_at")),
        )

    if event_type == "checkout.session.completed":
        metadata = obj.get("metadata") or {}
        details = obj.get("customer_details") or {}
        return CheckoutCompleted(
            event_id=event_id,
            session_id=obj.get("id", ""),
            user_id=obj.get("client_reference_id") or metadata.get("userId"),
            customer_id=_customer_id(obj),
            customer_email=obj.get("customer_email") or details.get("email"),
        )

    if event_type in ("invoice.payment_succeeded", "invoice.payment_failed"):
        return InvoiceRecorded(
            event_id=event_id,
            invoice_id=obj["id"],
            paid=event_type == "invoice.payment_succeeded",
            customer_id=_customer_id(obj),
            subscription_id=_invoice_subscription_id(obj),
            amount_due=int(obj.get("amount_due") or 0),
            amount_paid=int(obj.get("amount_paid") or 0),
            currency=obj.get("currency"),
            status=obj.get("status"),
            hosted_invoice_url=obj.get("hosted_invoice_url"),
            invoice_pdf=obj.get("invoice_pdf"),
        )

    if event_type == "customer.updated":
        return CustomerUpdated(
            event_id=event_id,
            customer_id=obj["id"],
            email=obj.get("email"),
        )

    return Unhandled(event_id=event_id, event_type=event_type)
