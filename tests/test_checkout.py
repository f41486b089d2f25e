"""Tests for checkout, billing portal and cancellation intent."""

from unittest.mock import Mock

import asyncpg
import pytest
import stripe

from pgv.db.models import SubscriptionStatus
from pgv.payments.checkout import create_checkout_session, ensure_customer
from pgv.payments.portal import cancel_subscription, create_portal_session
from pgv.payments.schemas import CancelRequest, CheckoutRequest, PortalRequest

from conftest import make_record


def checkout_request(**overrides) -> CheckoutRequest:
    fields = {
        "priceId": "price_pro_monthly",
        "userId": "user_1",
        "customerEmail": "golfer@pgv.test",
        "returnUrl": "https://app.pgv.test",
    }
    fields.update(overrides)
    return CheckoutRequest.model_validate(fields)


@pytest.fixture
def stripe_client(stripe_client):
    stripe_client.customers.create.return_value = Mock(id="cus_new")
    stripe_client.checkout.sessions.create.return_value = Mock(
        id="cs_test_123", url="https://checkout.stripe.com/pay/cs_test_123"
    )
    return stripe_client


class TestCheckout:
    """Test checkout session creation."""

    @pytest.mark.asyncio
    async def test_creates_customer_and_session(self, deps, store, stripe_client):
        url = await create_checkout_session(deps, checkout_request())

        assert url == "https://checkout.stripe.com/pay/cs_test_123"
        assert store.customers["user_1"] == {"customer_id": "cus_new", "email": "golfer@pgv.test"}

        customer_kwargs = stripe_client.customers.create.call_args.kwargs
        assert customer_kwargs["params"]["email"] == "golfer@pgv.test"
        assert customer_kwargs["params"]["metadata"] == {"userId": "user_1"}
        assert customer_kwargs["options"]["idempotency_key"] == "pgv-customer-user_1"

        params = stripe_client.checkout.sessions.create.call_args.kwargs["params"]
        assert params["mode"] == "subscription"
        assert params["customer"] == "cus_new"
        assert params["client_reference_id"] == "user_1"
        assert params["line_items"] == [{"price": "price_pro_monthly", "quantity": 1}]
        assert params["success_url"] == (
            "https://app.pgv.test/dashboard?session_id={CHECKOUT_SESSION_ID}"
        )
        assert params["cancel_url"] == "https://app.pgv.test/subscription"

    @pytest.mark.asyncio
    async def test_reuses_existing_customer(self, deps, store, stripe_client):
        store.customers["user_1"] = {"customer_id": "cus_existing", "email": None}

        await create_checkout_session(deps, checkout_request())

        stripe_client.customers.create.assert_not_called()
        params = stripe_client.checkout.sessions.create.call_args.kwargs["params"]
        assert params["customer"] == "cus_existing"

    @pytest.mark.asyncio
    async def test_falls_back_to_client_url(self, deps, stripe_client):
        await create_checkout_session(deps, checkout_request(returnUrl=None))

        params = stripe_client.checkout.sessions.create.call_args.kwargs["params"]
        assert params["cancel_url"] == "https://pgv.test/subscription"

    @pytest.mark.asyncio
    async def test_mapping_failure_does_not_block_checkout(self, deps, store, stripe_client):
        async def broken_save(*args, **kwargs):
            raise asyncpg.PostgresError("connection reset")

        store.save_customer = broken_save

        url = await create_checkout_session(deps, checkout_request())

        assert url == "https://checkout.stripe.com/pay/cs_test_123"
        params = stripe_client.checkout.sessions.create.call_args.kwargs["params"]
        assert params["customer"] == "cus_new"

    @pytest.mark.asyncio
    async def test_lost_race_uses_stored_customer(self, deps, store, stripe_client):
        async def racing_save(user_id, customer_id, email=None):
            # Another request stored its mapping first
            return "cus_winner"

        store.save_customer = racing_save

        customer_id = await ensure_customer(deps, "user_1", None)

        assert customer_id == "cus_winner"

    @pytest.mark.asyncio
    async def test_stripe_error_propagates(self, deps, stripe_client):
        stripe_client.checkout.sessions.create.side_effect = stripe.InvalidRequestError(
            "No such price: 'price_nope'", "price"
        )

        with pytest.raises(stripe.InvalidRequestError):
            await create_checkout_session(deps, checkout_request(priceId="price_nope"))

    def test_empty_ids_rejected(self):
        with pytest.raises(ValueError):
            checkout_request(userId="")
        with pytest.raises(ValueError):
            checkout_request(priceId="   ")


class TestPortal:
    @pytest.mark.asyncio
    async def test_portal_session_url(self, deps, stripe_client):
        stripe_client.billing_portal.sessions.create.return_value = Mock(
            url="https://billing.stripe.com/session/bps_1"
        )

        url = await create_portal_session(
            deps, PortalRequest(customerId="cus_123", returnUrl="https://app.pgv.test/account")
        )

        assert url == "https://billing.stripe.com/session/bps_1"
        params = stripe_client.billing_portal.sessions.create.call_args.kwargs["params"]
        assert params == {"customer": "cus_123", "return_url": "https://app.pgv.test/account"}

    @pytest.mark.asyncio
    async def test_portal_default_return_url(self, deps, stripe_client):
        stripe_client.billing_portal.sessions.create.return_value = Mock(url="https://b")

        await create_portal_session(deps, PortalRequest(customerId="cus_123"))

        params = stripe_client.billing_portal.sessions.create.call_args.kwargs["params"]
        assert params["return_url"] == "https://pgv.test/dashboard"


class TestCancellationIntent:
    @pytest.fixture
    def stripe_client(self, stripe_client):
        stripe_client.subscriptions.update.return_value = Mock(
            id="sub_123",
            status="active",
            cancel_at_period_end=True,
            current_period_end=1738368000,
        )
        return stripe_client

    @pytest.mark.asyncio
    async def test_sets_flag_and_keeps_status(self, deps, store, stripe_client):
        store.subscriptions["user_1"] = make_record()

        result = await cancel_subscription(
            deps, CancelRequest(subscriptionId="sub_123", userId="user_1")
        )

        stripe_client.subscriptions.update.assert_called_once_with(
            "sub_123", params={"cancel_at_period_end": True}
        )
        record = store.subscriptions["user_1"]
        assert record.cancel_at_period_end is True
        assert record.status is SubscriptionStatus.ACTIVE
        assert result["cancel_at_period_end"] is True
        assert result["status"] == "active"

    @pytest.mark.asyncio
    async def test_missing_local_row_still_succeeds(self, deps, store, stripe_client):
        result = await cancel_subscription(
            deps, CancelRequest(subscriptionId="sub_123", userId="user_1")
        )

        assert result["id"] == "sub_123"
        assert store.subscriptions == {}
