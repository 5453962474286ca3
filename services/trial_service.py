"""
Trial Service - trial window and subscription gate for CRM tenants
"""
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from crud.subscription import SubscriptionRepository
from crud.user import UserRepository
from database_models import User

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


class TenantNotFoundError(LookupError):
    """Raised when the tenant whose trial is requested does not exist."""


class SubscriptionState(BaseModel):
    """Whether a tenant currently holds an active paid plan."""

    active: bool = False
    plan: Optional[str] = None


class TrialStatus(BaseModel):
    """
    Trial status exposed at GET /api/billing/trial.

    Field names are camelCase on the wire. Booleans and daysLeft are strict so
    that a malformed payload fails validation instead of being coerced.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    is_trial_active: StrictBool = Field(alias="isTrialActive")
    days_left: StrictInt = Field(alias="daysLeft", ge=0)
    trial_end_date: datetime = Field(alias="trialEndDate")
    has_subscription: StrictBool = Field(alias="hasSubscription")

    @model_validator(mode="after")
    def _days_left_only_while_active(self):
        if self.days_left > 0 and not self.is_trial_active:
            raise ValueError("daysLeft must be 0 unless the trial is active")
        return self

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class GateState(str, Enum):
    HIDDEN = "hidden"
    ACTIVE_TRIAL = "active_trial"
    EXPIRED = "expired"


def _as_utc(value: datetime) -> datetime:
    # Stored timestamps are naive UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_trial_status(
    created_at: datetime,
    subscription: SubscriptionState,
    now: datetime,
    trial_length_days: Optional[int] = None,
) -> TrialStatus:
    """
    Compute a tenant's trial status.

    The trial ends trial_length_days after signup. An active subscription
    overrides the trial entirely. While the trial runs, daysLeft is the number
    of started days remaining, so half a day left still reads as 1.

    Args:
        created_at: Tenant signup time (the start of the trial window)
        subscription: Current subscription state of the tenant
        now: Current time
        trial_length_days: Length of the trial window in days (defaults to settings)

    Returns:
        TrialStatus for the tenant at `now`
    """
    if trial_length_days is None:
        trial_length_days = settings.trial_length_days
    trial_end_date = _as_utc(created_at) + timedelta(days=trial_length_days)

    if subscription.active:
        return TrialStatus(
            is_trial_active=False,
            days_left=0,
            trial_end_date=trial_end_date,
            has_subscription=True,
        )

    remaining = trial_end_date - _as_utc(now)
    if remaining > timedelta(0):
        whole_days, partial = divmod(remaining, ONE_DAY)
        days_left = whole_days + (1 if partial else 0)
        return TrialStatus(
            is_trial_active=True,
            days_left=days_left,
            trial_end_date=trial_end_date,
            has_subscription=False,
        )

    return TrialStatus(
        is_trial_active=False,
        days_left=0,
        trial_end_date=trial_end_date,
        has_subscription=False,
    )


def gate_state(status: TrialStatus) -> GateState:
    """Map a TrialStatus to the banner/access state it implies."""
    if status.has_subscription:
        return GateState.HIDDEN
    if status.is_trial_active:
        return GateState.ACTIVE_TRIAL
    return GateState.EXPIRED


class TrialService:
    """
    Service for resolving tenant trial status from stored facts.
    """

    def __init__(
        self,
        db: AsyncSession,
        user_repo: UserRepository,
        subscription_repo: Optional[SubscriptionRepository] = None,
    ):
        """
        Initialize the trial service with database session and repositories.

        Args:
            db: AsyncSession instance for database operations
            user_repo: UserRepository instance for user lookups
            subscription_repo: SubscriptionRepository (created from db if omitted)
        """
        self.db = db
        self.user_repo = user_repo
        self.subscription_repo = subscription_repo or SubscriptionRepository(db)

    async def get_subscription_state(self, user: User) -> SubscriptionState:
        """
        Resolve whether the user holds an active paid subscription.

        A stripe_subscription_id with no synced record yet counts as active;
        a synced record in a non-paying status does not.
        """
        active = await self.subscription_repo.get_active_for_user(user.id)
        if active is not None:
            return SubscriptionState(active=True, plan=active.plan)

        if user.stripe_subscription_id:
            record = await self.subscription_repo.get_by_id(user.stripe_subscription_id)
            if record is None:
                return SubscriptionState(active=True)

        return SubscriptionState(active=False)

    async def get_trial_status(self, user_id: int, now: Optional[datetime] = None) -> TrialStatus:
        """
        Compute the trial status for a tenant.

        Args:
            user_id: Tenant (user) ID
            now: Evaluation time, defaults to the current UTC time

        Returns:
            TrialStatus for the tenant

        Raises:
            TenantNotFoundError: If no user exists with this ID
        """
        user = await self.user_repo.get_user_by_id(user_id)
        if user is None:
            raise TenantNotFoundError(f"User {user_id} not found")

        subscription = await self.get_subscription_state(user)
        status = compute_trial_status(
            created_at=user.created_at,
            subscription=subscription,
            now=now or utcnow(),
            trial_length_days=settings.trial_length_days,
        )
        logger.debug(f"Trial status for user {user_id}: {gate_state(status).value}")
        return status
