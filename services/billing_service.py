"""
Billing Service - Stripe billing integration and subscription sync
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from crud.subscription import SubscriptionRepository, ACTIVE_SUBSCRIPTION_STATUSES
from crud.user import UserRepository
from database_models import Subscription, User

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Billing is not configured"

SUBSCRIPTION_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)


def _stripe_ready() -> bool:
    """Point the Stripe SDK at the configured key. False when billing is unconfigured."""
    if not settings.stripe_secret_key:
        logger.error("STRIPE_SECRET_KEY is not set. Stripe functionality is unavailable.")
        return False
    stripe.api_key = settings.stripe_secret_key
    return True


def _not_configured() -> dict:
    return {"error": NOT_CONFIGURED, "is_error": True, "status": 503}


def _field(obj: Any, key: str, default: Any = None) -> Any:
    # Stripe objects and plain dicts both support item access
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError):
        value = getattr(obj, key, None)
    return default if value is None else value


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def serialize_subscription(subscription: Subscription) -> dict:
    return {
        "id": subscription.id,
        "status": subscription.status,
        "plan": subscription.plan,
        "price_id": subscription.price_id,
        "current_period_end": (
            int(subscription.current_period_end.replace(tzinfo=timezone.utc).timestamp())
            if subscription.current_period_end else None
        ),
        "cancel_at_period_end": subscription.cancel_at_period_end,
    }


class BillingService:
    """
    Service class for handling billing-related business logic.

    Stripe-facing methods return a normalized result:
    {"data": ..., "is_error": False} or {"error": str, "is_error": True, "status": int}
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the billing service.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db
        self.user_repo = UserRepository(db)
        self.subscription_repo = SubscriptionRepository(db)

    def get_publishable_key(self) -> dict:
        if not settings.stripe_publishable_key:
            logger.error("STRIPE_PUBLISHABLE_KEY is not set.")
            return _not_configured()
        return {"data": settings.stripe_publishable_key, "is_error": False}

    async def list_products_with_prices(self) -> dict:
        """
        Fetch active products and their active prices directly from Stripe.
        """
        if not _stripe_ready():
            return _not_configured()

        try:
            products = stripe.Product.list(active=True, limit=10)
            result = []
            for product in products.data:
                prices = stripe.Price.list(product=product.id, active=True, limit=5)
                result.append({
                    "id": product.id,
                    "name": _field(product, "name"),
                    "description": _field(product, "description"),
                    "active": _field(product, "active", False),
                    "metadata": dict(_field(product, "metadata", {})),
                    "prices": [
                        {
                            "id": price.id,
                            "unit_amount": _field(price, "unit_amount"),
                            "currency": _field(price, "currency"),
                            "recurring": (
                                {"interval": _field(_field(price, "recurring"), "interval")}
                                if _field(price, "recurring") else None
                            ),
                            "active": _field(price, "active", False),
                        }
                        for price in prices.data
                    ],
                })
            return {"data": result, "is_error": False}
        except stripe.StripeError as e:
            logger.error(f"Failed to fetch products: {e}", exc_info=True)
            return {"error": "Failed to fetch products", "is_error": True, "status": 500}

    async def get_subscription(self, user: User) -> dict:
        """
        Return the user's current subscription record, or None in data.
        Falls back to Stripe when the record has not been synced yet.
        """
        if not user.stripe_subscription_id:
            return {"data": None, "is_error": False}

        record = await self.subscription_repo.get_by_id(user.stripe_subscription_id)
        if record is not None:
            return {"data": serialize_subscription(record), "is_error": False}

        if not _stripe_ready():
            return {"data": None, "is_error": False}

        try:
            remote = stripe.Subscription.retrieve(user.stripe_subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Error fetching subscription from Stripe: {e}", exc_info=True)
            return {"data": None, "is_error": False}

        record = await self.sync_subscription(remote)
        return {"data": serialize_subscription(record), "is_error": False}

    async def ensure_customer(self, user: User) -> str:
        """Return the user's Stripe customer id, creating and storing one on first use."""
        if user.stripe_customer_id:
            return user.stripe_customer_id

        name = f"{user.first_name or ''} {user.last_name or ''}".strip() or None
        customer = stripe.Customer.create(
            email=user.email,
            name=name,
            metadata={"user_id": str(user.id)},
        )
        await self.user_repo.update_user(user, {"stripe_customer_id": customer.id})
        logger.info(f"Created Stripe customer {customer.id} for user {user.id}")
        return customer.id

    async def create_checkout_session(self, user: User, price_id: str, success_url: str, cancel_url: str) -> dict:
        """
        Create a Stripe Checkout session for a subscription.

        Args:
            user: Tenant subscribing
            price_id: Stripe price to subscribe to
            success_url: Redirect after a completed checkout
            cancel_url: Redirect after an abandoned checkout

        Returns:
            Normalized response with the checkout URL in data
        """
        if not _stripe_ready():
            return _not_configured()

        try:
            customer_id = await self.ensure_customer(user)
            checkout_session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{
                    "price": price_id,
                    "quantity": 1,
                }],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={"user_id": str(user.id)},
            )
            return {"data": checkout_session.url, "is_error": False}
        except stripe.StripeError as e:
            logger.error(f"Failed to create checkout session: {e}", exc_info=True)
            return {"error": "Failed to create checkout session", "is_error": True, "status": 500}

    async def create_billing_portal_session(self, user: User, return_url: str) -> dict:
        """
        Create a Stripe Billing Portal session for the user's customer.
        """
        if not user.stripe_customer_id:
            return {"error": "No billing account found", "is_error": True, "status": 400}

        if not _stripe_ready():
            return _not_configured()

        try:
            portal_session = stripe.billing_portal.Session.create(
                customer=user.stripe_customer_id,
                return_url=return_url,
            )
            return {"data": portal_session.url, "is_error": False}
        except stripe.StripeError as e:
            logger.error(f"Failed to create billing portal session: {e}", exc_info=True)
            return {"error": "Failed to create portal session", "is_error": True, "status": 500}

    async def sync_subscription(self, subscription: Any, event_created: Optional[int] = None) -> Subscription:
        """
        Mirror a Stripe subscription object into the local subscriptions table
        and keep the owning user's stripe_subscription_id current.

        Args:
            subscription: Stripe subscription object or dict
            event_created: created timestamp of the webhook event carrying it.
                Stripe does not deliver events in order, so an event older than
                the last one applied to this subscription is ignored.
        """
        subscription_id = _field(subscription, "id")
        customer_id = _field(subscription, "customer")
        status = _field(subscription, "status", "incomplete")

        if event_created is not None:
            existing = await self.subscription_repo.get_by_id(subscription_id)
            if existing is not None and existing.last_event_created and event_created < existing.last_event_created:
                logger.info(
                    f"Skipping stale event for subscription {subscription_id} "
                    f"({status}, created {event_created} < {existing.last_event_created})"
                )
                return existing

        items = _field(_field(subscription, "items"), "data", [])
        first_item = items[0] if items else None
        price = _field(first_item, "price")
        period_end = _field(subscription, "current_period_end") or _field(first_item, "current_period_end")

        user = await self.user_repo.get_user_by_stripe_customer_id(customer_id) if customer_id else None

        values = {
            "user_id": user.id if user else None,
            "stripe_customer_id": customer_id,
            "status": status,
            "price_id": _field(price, "id"),
            "plan": _field(price, "nickname") or _field(price, "product"),
            "current_period_end": _timestamp(period_end),
            "cancel_at_period_end": bool(_field(subscription, "cancel_at_period_end", False)),
        }
        if event_created is not None:
            values["last_event_created"] = int(event_created)
        record = await self.subscription_repo.upsert(subscription_id, values)

        if user is None:
            logger.warning(f"Subscription {subscription_id} belongs to unknown customer {customer_id}")
        elif status in ACTIVE_SUBSCRIPTION_STATUSES:
            if user.stripe_subscription_id != subscription_id:
                await self.user_repo.update_user(user, {"stripe_subscription_id": subscription_id})
        elif user.stripe_subscription_id == subscription_id and status in ("canceled", "incomplete_expired"):
            await self.user_repo.update_user(user, {"stripe_subscription_id": None})

        logger.info(f"Synced subscription {subscription_id} ({status})")
        return record

    async def _handle_checkout_completed(self, session: Any) -> None:
        customer_id = _field(session, "customer")
        subscription_id = _field(session, "subscription")
        if not customer_id or not subscription_id:
            logger.info("Checkout session without subscription, nothing to sync")
            return

        user = await self.user_repo.get_user_by_stripe_customer_id(customer_id)
        if user is None:
            user_id = _field(_field(session, "metadata"), "user_id")
            if user_id and str(user_id).isdigit():
                user = await self.user_repo.get_user_by_id(int(user_id))
                if user is not None:
                    await self.user_repo.update_user(user, {"stripe_customer_id": customer_id})

        if user is None:
            logger.warning(f"Checkout completed for unknown customer {customer_id}")
            return

        await self.user_repo.update_user(user, {"stripe_subscription_id": subscription_id})

        if _stripe_ready():
            try:
                await self.sync_subscription(stripe.Subscription.retrieve(subscription_id))
            except stripe.StripeError as e:
                # The subscription.created event will sync it later
                logger.warning(f"Could not retrieve subscription {subscription_id}: {e}")

    async def process_webhook(self, event: Any) -> dict:
        """
        Process a verified Stripe webhook event.

        Args:
            event: Verified Stripe Event object (from webhook signature verification)

        Returns:
            Normalized response: {"data": True, "is_error": False} or {"error": str(e), "is_error": True}
        """
        try:
            event_type = _field(event, "type")
            data_object = _field(_field(event, "data"), "object")
            logger.info(f"Processing Stripe webhook event: {event_type}")

            if event_type == "checkout.session.completed":
                await self._handle_checkout_completed(data_object)
            elif event_type in SUBSCRIPTION_EVENTS:
                created = _field(event, "created")
                await self.sync_subscription(data_object, event_created=int(created) if created else None)
            else:
                logger.debug(f"Ignoring Stripe event {event_type}")

            return {"data": True, "is_error": False}
        except Exception as e:
            logger.error(f"Error processing webhook: {e}", exc_info=True)
            return {"error": str(e), "is_error": True}
