"""Explicit dependencies shared by the billing handlers."""

from dataclasses import dataclass

import asyncpg
import stripe

from pgv.config.settings import AppConfig
from pgv.payments.errors import ConfigurationError
from pgv.payments.store import SubscriptionStore


@dataclass(frozen=True)
class BillingDeps:
    """Everything a billing handler needs, built once per process.

    Handlers take this instead of reaching for module-level clients, so
    tests can hand in a fake store and a mocked Stripe client.
    """

    config: AppConfig
    store: SubscriptionStore
    stripe_client: stripe.StripeClient

    @property
    def webhook_secret(self) -> str:
        secret = self.config.stripe_webhook_secret.get_secret_value()
        if not secret:
            raise ConfigurationError("stripe_webhook_secret not configured")
        return secret


def build_deps(config: AppConfig, pool: asyncpg.Pool) -> BillingDeps:
    """Construct the Stripe client and store from settings.

    Raises:
        ConfigurationError: If stripe_secret is not configured
    """
    api_key = config.stripe_secret.get_secret_value()
    if not api_key:
        raise ConfigurationError("stripe_secret not configured")

    return BillingDeps(
        config=config,
        store=SubscriptionStore(pool),
        stripe_client=stripe.StripeClient(api_key),
    )
