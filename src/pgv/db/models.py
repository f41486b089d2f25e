"""Table-name constants and column-value enums."""

from enum import Enum


class Table:
    """Database table names."""

    CUSTOMERS = "customers"
    SUBSCRIPTIONS = "subscriptions"
    INVOICES = "invoices"
    WEBHOOK_DEAD_LETTERS = "webhook_dead_letters"
    SCHEMA_MIGRATIONS = "schema_migrations"


class SubscriptionTier(str, Enum):
    """Feature-access level derived from the purchased price."""

    FREE = "free"
    BASIC = "basic"
    PRO = "pro"
    PREMIUM = "premium"
    UNKNOWN = "unknown"


class SubscriptionStatus(str, Enum):
    """Locally stored subscription status."""

    INCOMPLETE = "incomplete"
    ACTIVE = "active"
    # Legacy value from the old cancel endpoint; read but never written.
    CANCELING = "canceling"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
