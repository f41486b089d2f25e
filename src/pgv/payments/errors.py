"""Billing error types.

Every error carries the HTTP status the server answers with when it reaches
a handler boundary.
"""


class BillingError(Exception):
    """Base class for billing failures that map onto an HTTP status."""

    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(BillingError):
    """A required setting (Stripe key, webhook secret) is missing."""


class UnknownCustomerError(BillingError):
    """A webhook references a Stripe customer with no known user mapping."""

    def __init__(self, customer_id: str | None):
        super().__init__(f"No user mapped to Stripe customer {customer_id}")
        self.customer_id = customer_id


class SubscriptionNotFoundError(BillingError):
    """No subscription row exists for a user that an event points at."""

    def __init__(self, user_id: str):
        super().__init__(f"No subscription record for user {user_id}")
        self.user_id = user_id


class CustomerConflictError(BillingError):
    """A Stripe customer is already mapped to a different user."""

    status = 409

    def __init__(self, user_id: str, customer_id: str):
        super().__init__(
            f"Stripe customer {customer_id} is already mapped to another user "
            f"(requested for {user_id})"
        )
        self.user_id = user_id
        self.customer_id = customer_id
