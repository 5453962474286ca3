"""
SubscriptionRepository for the local mirror of Stripe subscriptions
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import Subscription

# Stripe statuses that count as a paid, active plan
ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "past_due"})


class SubscriptionRepository:
    """
    Repository class for Subscription database operations.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, subscription_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def get_active_for_user(self, user_id: int) -> Optional[Subscription]:
        """
        Return the user's active paid subscription, if any.

        Args:
            user_id: User's ID

        Returns:
            Subscription object if one is active, None otherwise
        """
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .where(Subscription.status.in_(ACTIVE_SUBSCRIPTION_STATUSES))
            .order_by(Subscription.updated_at.desc())
        )
        return result.scalars().first()

    async def upsert(self, subscription_id: str, values: dict) -> Subscription:
        """
        Insert or update a subscription record.

        Args:
            subscription_id: Stripe subscription id
            values: Column values to set (status, price_id, plan, ...)

        Returns:
            The stored Subscription object
        """
        subscription = await self.get_by_id(subscription_id)
        if subscription is None:
            subscription = Subscription(id=subscription_id)
            self.db.add(subscription)

        for key, value in values.items():
            if hasattr(subscription, key):
                setattr(subscription, key, value)

        await self.db.flush()
        await self.db.refresh(subscription)
        return subscription
