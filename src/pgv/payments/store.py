"""Customer mapping and subscription persistence.

All reads go straight to Postgres; nothing is cached, so callers always see
the state the latest webhook left behind.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

import asyncpg

from pgv.db.models import SubscriptionStatus, SubscriptionTier, Table
from pgv.payments.errors import CustomerConflictError

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionRecord:
    """One user's current subscription state."""

    user_id: str
    stripe_customer_id: str
    stripe_subscription_id: Optional[str]
    price_id: Optional[str]
    status: SubscriptionStatus
    tier: SubscriptionTier
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SubscriptionRecord":
        return cls(
            user_id=row["user_id"],
            stripe_customer_id=row["stripe_customer_id"],
            stripe_subscription_id=row["stripe_subscription_id"],
            price_id=row["price_id"],
            status=SubscriptionStatus(row["status"]),
            tier=SubscriptionTier(row["tier"]),
            current_period_start=row["current_period_start"],
            current_period_end=row["current_period_end"],
            cancel_at_period_end=row["cancel_at_period_end"],
            canceled_at=row["canceled_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation for HTTP responses."""

        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "userId": self.user_id,
            "customerId": self.stripe_customer_id,
            "subscriptionId": self.stripe_subscription_id,
            "priceId": self.price_id,
            "status": self.status.value,
            "tier": self.tier.value,
            "currentPeriodStart": iso(self.current_period_start),
            "currentPeriodEnd": iso(self.current_period_end),
            "cancelAtPeriodEnd": self.cancel_at_period_end,
            "canceledAt": iso(self.canceled_at),
            "updatedAt": iso(self.updated_at),
        }


class SubscriptionStore:
    """asyncpg-backed access to the customers and subscriptions tables."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    # Customer mapping

    async def get_customer_id(self, user_id: str) -> Optional[str]:
        async with self._pool.acquire() as conn:
            return await conn.fetchval(
                f"SELECT stripe_customer_id FROM {Table.CUSTOMERS} WHERE user_id = $1",
                user_id,
            )

    async def get_user_id(self, customer_id: str) -> Optional[str]:
        async with self._pool.acquire() as conn:
            return await conn.fetchval(
                f"SELECT user_id FROM {Table.CUSTOMERS} WHERE stripe_customer_id = $1",
                customer_id,
            )

    async def save_customer(
        self,
        user_id: str,
        customer_id: str,
        email: Optional[str] = None,
    ) -> str:
        """Persist a user -> Stripe customer mapping unless one already exists.

        Both columns are unique, so concurrent first checkouts for one user
        leave exactly one row. The caller gets back whichever customer id
        ended up stored.

        Returns:
            The stored Stripe customer id for the user

        Raises:
            CustomerConflictError: If customer_id is already mapped to another user
            asyncpg.PostgresError: On database errors
        """
        async with self._pool.acquire() as conn:
            stored = await conn.fetchval(
                f"""
                INSERT INTO {Table.CUSTOMERS} (user_id, stripe_customer_id, email)
                VALUES ($1, $2, $3)
                ON CONFLICT DO NOTHING
                RETURNING stripe_customer_id
                """,
                user_id,
                customer_id,
                email,
            )
            if stored is not None:
                logger.info(f"Mapped user {user_id} to Stripe customer {customer_id}")
                return stored

            stored = await conn.fetchval(
                f"SELECT stripe_customer_id FROM {Table.CUSTOMERS} WHERE user_id = $1",
                user_id,
            )

        if stored is None:
            raise CustomerConflictError(user_id, customer_id)
        if stored != customer_id:
            logger.warning(
                f"User {user_id} already mapped to {stored}; discarding {customer_id}"
            )
        return stored

    async def update_customer_email(self, customer_id: str, email: Optional[str]) -> bool:
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                f"UPDATE {Table.CUSTOMERS} SET email = $2 WHERE stripe_customer_id = $1",
                customer_id,
                email,
            )
        return result != "UPDATE 0"

    # Subscriptions

    async def get_subscription(self, user_id: str) -> Optional[SubscriptionRecord]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT * FROM {Table.SUBSCRIPTIONS} WHERE user_id = $1",
                user_id,
            )
        return SubscriptionRecord.from_row(row) if row else None

    async def get_tier(self, user_id: str) -> Optional[SubscriptionTier]:
        """Current tier for a user, or None when they never subscribed."""
        async with self._pool.acquire() as conn:
            tier = await conn.fetchval(
                f"SELECT tier FROM {Table.SUBSCRIPTIONS} WHERE user_id = $1",
                user_id,
            )
        return SubscriptionTier(tier) if tier is not None else None

    async def upsert_subscription(self, record: SubscriptionRecord) -> None:
        """Insert or replace the user's subscription row.

        Replaying the same record leaves the row unchanged apart from
        updated_at.
        """
        async with self._pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {Table.SUBSCRIPTIONS} (
                    user_id, stripe_customer_id, stripe_subscription_id, price_id,
                    status, tier, current_period_start, current_period_end,
                    cancel_at_period_end, canceled_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                ON CONFLICT (user_id) DO UPDATE SET
                    stripe_customer_id = EXCLUDED.stripe_customer_id,
                    stripe_subscription_id = EXCLUDED.stripe_subscription_id,
                    price_id = EXCLUDED.price_id,
                    status = EXCLUDED.status,
                    tier = EXCLUDED.tier,
                    current_period_start = EXCLUDED.current_period_start,
                    current_period_end = EXCLUDED.current_period_end,
                    cancel_at_period_end = EXCLUDED.cancel_at_period_end,
                    canceled_at = EXCLUDED.canceled_at,
                    updated_at = now()
                """,
                record.user_id,
                record.stripe_customer_id,
                record.stripe_subscription_id,
                record.price_id,
                record.status.value,
                record.tier.value,
                record.current_period_start,
                record.current_period_end,
                record.cancel_at_period_end,
                record.canceled_at,
            )

        logger.info(
            f"Stored subscription for user {record.user_id}: "
            f"tier={record.tier.value}, status={record.status.value}, "
            f"cancel_at_period_end={record.cancel_at_period_end}"
        )

    async def mark_canceled(self, user_id: str, canceled_at: Optional[datetime]) -> bool:
        """Set status to canceled, keeping tier and billing period as history.

        Returns:
            False if the user has no subscription row
        """
        async with self._pool.acquire() as conn:
            updated = await conn.fetchval(
                f"""
                UPDATE {Table.SUBSCRIPTIONS}
                SET status = $2,
                    canceled_at = COALESCE(canceled_at, $3, now()),
                    updated_at = now()
                WHERE user_id = $1
                RETURNING user_id
                """,
                user_id,
                SubscriptionStatus.CANCELED.value,
                canceled_at,
            )
        return updated is not None

    async def set_cancel_at_period_end(
        self,
        user_id: str,
        subscription_id: str,
        cancel_at_period_end: bool,
    ) -> bool:
        """Mirror the cancellation-intent flag without touching status.

        Returns:
            False if no row matches the user and subscription
        """
        async with self._pool.acquire() as conn:
            updated = await conn.fetchval(
                f"""
                UPDATE {Table.SUBSCRIPTIONS}
                SET cancel_at_period_end = $3, updated_at = now()
                WHERE user_id = $1 AND stripe_subscription_id = $2
                RETURNING user_id
                """,
                user_id,
                subscription_id,
                cancel_at_period_end,
            )
        return updated is not None

    # Invoices and dead letters

    async def record_invoice(
        self,
        user_id: str,
        invoice_id: str,
        subscription_id: Optional[str],
        amount_due: int,
        amount_paid: int,
        currency: Optional[str],
        status: Optional[str],
        hosted_invoice_url: Optional[str],
        invoice_pdf: Optional[str],
    ) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {Table.INVOICES} (
                    stripe_invoice_id, user_id, stripe_subscription_id, amount_due,
                    amount_paid, currency, status, hosted_invoice_url, invoice_pdf
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (stripe_invoice_id) DO UPDATE SET
                    amount_due = EXCLUDED.amount_due,
                    amount_paid = EXCLUDED.amount_paid,
                    status = EXCLUDED.status,
                    hosted_invoice_url = EXCLUDED.hosted_invoice_url,
                    invoice_pdf = EXCLUDED.invoice_pdf,
                    updated_at = now()
                """,
                invoice_id,
                user_id,
                subscription_id,
                amount_due,
                amount_paid,
                currency,
                status,
                hosted_invoice_url,
                invoice_pdf,
            )

    async def dead_letter(
        self,
        event_id: str,
        event_type: str,
        customer_id: Optional[str],
        reason: str,
        payload: Mapping[str, Any],
    ) -> None:
        """Keep a copy of an event that could not be applied.

        Redeliveries of the same event bump the attempt counter.
        """
        async with self._pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {Table.WEBHOOK_DEAD_LETTERS}
                    (event_id, event_type, stripe_customer_id, reason, payload)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                ON CONFLICT (event_id) DO UPDATE SET
                    attempts = {Table.WEBHOOK_DEAD_LETTERS}.attempts + 1,
                    reason = EXCLUDED.reason,
                    resolved_at = NULL,
                    last_seen_at = now()
                """,
                event_id,
                event_type,
                customer_id,
                reason,
                json.dumps(payload),
            )

    async def resolve_dead_letter(self, event_id: str) -> bool:
        """Stamp resolved_at on a dead letter once its event has been applied.

        Returns:
            False if the event was never dead-lettered or is already resolved
        """
        async with self._pool.acquire() as conn:
            resolved = await conn.fetchval(
                f"""
                UPDATE {Table.WEBHOOK_DEAD_LETTERS}
                SET resolved_at = now()
                WHERE event_id = $1 AND resolved_at IS NULL
                RETURNING event_id
                """,
                event_id,
            )
        if resolved is not None:
            logger.info(f"Dead letter {event_id} resolved by redelivery")
        return resolved is not None
