"""
Unit tests for the trial/subscription gate

Tests cover:
- Trial math at and around the trial boundary
- Subscription overriding the trial
- TrialStatus wire format and validation
- TrialService resolution from stored users and subscriptions
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from crud.subscription import SubscriptionRepository
from crud.user import UserRepository
from services.trial_service import (
    GateState,
    SubscriptionState,
    TenantNotFoundError,
    TrialService,
    TrialStatus,
    compute_trial_status,
    gate_state,
)

T0 = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
NO_SUBSCRIPTION = SubscriptionState(active=False)
SUBSCRIBED = SubscriptionState(active=True, plan="CRM Professional")


def test_active_trial_mid_window():
    status = compute_trial_status(T0, NO_SUBSCRIPTION, now=T0 + timedelta(days=3), trial_length_days=14)

    assert status.is_trial_active is True
    assert status.days_left == 11
    assert status.has_subscription is False
    assert status.trial_end_date == T0 + timedelta(days=14)
    assert gate_state(status) is GateState.ACTIVE_TRIAL


def test_partial_day_rounds_up():
    """Scenario: 14-day trial, 13d12h in, half a day left reads as 1 day."""
    status = compute_trial_status(T0, NO_SUBSCRIPTION, now=T0 + timedelta(days=13, hours=12), trial_length_days=14)

    assert status.is_trial_active is True
    assert status.days_left == 1
    assert status.has_subscription is False


def test_one_second_left_is_still_active():
    status = compute_trial_status(T0, NO_SUBSCRIPTION, now=T0 + timedelta(days=7) - timedelta(seconds=1), trial_length_days=7)

    assert status.is_trial_active is True
    assert status.days_left == 1


def test_trial_expires_exactly_at_end():
    status = compute_trial_status(T0, NO_SUBSCRIPTION, now=T0 + timedelta(days=7), trial_length_days=7)

    assert status.is_trial_active is False
    assert status.days_left == 0
    assert gate_state(status) is GateState.EXPIRED


def test_expired_after_window():
    """Scenario: 15 days after signup with no subscription."""
    status = compute_trial_status(T0, NO_SUBSCRIPTION, now=T0 + timedelta(days=15), trial_length_days=14)

    assert status.is_trial_active is False
    assert status.days_left == 0
    assert status.has_subscription is False
    assert gate_state(status) is GateState.EXPIRED


def test_days_left_never_negative_long_after_expiry():
    status = compute_trial_status(T0, NO_SUBSCRIPTION, now=T0 + timedelta(days=400), trial_length_days=7)

    assert status.days_left == 0


def test_clock_behind_signup_counts_the_extra_partial_day():
    status = compute_trial_status(T0, NO_SUBSCRIPTION, now=T0 - timedelta(hours=1), trial_length_days=7)

    assert status.is_trial_active is True
    assert status.days_left == 8


@pytest.mark.parametrize("offset", [timedelta(0), timedelta(days=3), timedelta(days=5), timedelta(days=30)])
def test_subscription_hides_gate_at_any_time(offset):
    """Subscribed at T0+5d: hidden for every later instant, even inside the trial window."""
    status = compute_trial_status(T0, SUBSCRIBED, now=T0 + timedelta(days=5) + offset, trial_length_days=14)

    assert status.has_subscription is True
    assert status.is_trial_active is False
    assert status.days_left == 0
    assert gate_state(status) is GateState.HIDDEN


def test_same_inputs_same_output():
    now = T0 + timedelta(days=2, hours=5)

    first = compute_trial_status(T0, NO_SUBSCRIPTION, now=now, trial_length_days=7)
    second = compute_trial_status(T0, NO_SUBSCRIPTION, now=now, trial_length_days=7)

    assert first == second


def test_naive_timestamps_are_treated_as_utc():
    naive_created = datetime(2026, 1, 1, 9, 0)

    status = compute_trial_status(naive_created, NO_SUBSCRIPTION, now=T0 + timedelta(days=1), trial_length_days=7)

    assert status.days_left == 6
    assert status.trial_end_date.tzinfo is not None


def test_default_trial_length_comes_from_settings(monkeypatch):
    from config.settings import settings
    monkeypatch.setattr(settings, "trial_length_days", 3)

    status = compute_trial_status(T0, NO_SUBSCRIPTION, now=T0)

    assert status.days_left == 3


def test_response_uses_camel_case_names():
    status = compute_trial_status(T0, NO_SUBSCRIPTION, now=T0 + timedelta(days=1), trial_length_days=7)

    body = status.to_response()

    assert set(body) == {"isTrialActive", "daysLeft", "trialEndDate", "hasSubscription"}
    assert body["isTrialActive"] is True
    assert body["daysLeft"] == 6
    end = datetime.fromisoformat(body["trialEndDate"].replace("Z", "+00:00"))
    assert end == T0 + timedelta(days=7)


def test_payload_round_trips_through_validation():
    status = compute_trial_status(T0, NO_SUBSCRIPTION, now=T0 + timedelta(days=1), trial_length_days=7)

    assert TrialStatus.model_validate(status.to_response()) == status


@pytest.mark.parametrize("payload", [
    {"isTrialActive": "yes", "daysLeft": 3, "trialEndDate": "2026-01-08T09:00:00Z", "hasSubscription": False},
    {"isTrialActive": True, "daysLeft": -1, "trialEndDate": "2026-01-08T09:00:00Z", "hasSubscription": False},
    {"isTrialActive": True, "daysLeft": "3", "trialEndDate": "2026-01-08T09:00:00Z", "hasSubscription": False},
    {"isTrialActive": False, "daysLeft": 2, "trialEndDate": "2026-01-08T09:00:00Z", "hasSubscription": False},
    {"isTrialActive": True, "daysLeft": 3, "hasSubscription": False},
    {"isTrialActive": True, "daysLeft": 3, "trialEndDate": "not a date", "hasSubscription": False},
])
def test_malformed_payloads_are_rejected(payload):
    with pytest.raises(ValidationError):
        TrialStatus.model_validate(payload)


@pytest.mark.asyncio
async def test_service_new_tenant_is_in_trial(test_db):
    user_repo = UserRepository(test_db)
    user = await user_repo.create_user({"email": "new@example.com", "hashed_password": "x", "created_at": datetime(2026, 1, 1, 9, 0)})

    status = await TrialService(test_db, user_repo).get_trial_status(user.id, now=T0 + timedelta(hours=1))

    assert status.is_trial_active is True
    assert status.days_left == 7
    assert status.has_subscription is False


@pytest.mark.asyncio
async def test_service_expired_tenant(test_db):
    user_repo = UserRepository(test_db)
    user = await user_repo.create_user({"email": "old@example.com", "hashed_password": "x", "created_at": datetime(2026, 1, 1, 9, 0)})

    status = await TrialService(test_db, user_repo).get_trial_status(user.id, now=T0 + timedelta(days=10))

    assert gate_state(status) is GateState.EXPIRED


@pytest.mark.asyncio
async def test_service_active_subscription_record_hides_gate(test_db):
    user_repo = UserRepository(test_db)
    user = await user_repo.create_user({"email": "paid@example.com", "hashed_password": "x", "created_at": datetime(2026, 1, 1, 9, 0)})
    await SubscriptionRepository(test_db).upsert("sub_123", {
        "user_id": user.id,
        "stripe_customer_id": "cus_123",
        "status": "active",
        "plan": "CRM Professional",
    })

    service = TrialService(test_db, user_repo)
    state = await service.get_subscription_state(user)
    status = await service.get_trial_status(user.id, now=T0 + timedelta(days=30))

    assert state.active is True
    assert state.plan == "CRM Professional"
    assert gate_state(status) is GateState.HIDDEN


@pytest.mark.asyncio
async def test_service_unsynced_subscription_id_counts_as_subscribed(test_db):
    user_repo = UserRepository(test_db)
    user = await user_repo.create_user({"email": "fresh@example.com", "hashed_password": "x"})
    await user_repo.update_user(user, {"stripe_subscription_id": "sub_pending"})

    status = await TrialService(test_db, user_repo).get_trial_status(user.id)

    assert status.has_subscription is True


@pytest.mark.asyncio
async def test_service_canceled_subscription_falls_back_to_trial_math(test_db):
    user_repo = UserRepository(test_db)
    user = await user_repo.create_user({"email": "gone@example.com", "hashed_password": "x", "created_at": datetime(2026, 1, 1, 9, 0)})
    await user_repo.update_user(user, {"stripe_subscription_id": "sub_old"})
    await SubscriptionRepository(test_db).upsert("sub_old", {
        "user_id": user.id,
        "stripe_customer_id": "cus_old",
        "status": "canceled",
    })

    status = await TrialService(test_db, user_repo).get_trial_status(user.id, now=T0 + timedelta(days=20))

    assert status.has_subscription is False
    assert gate_state(status) is GateState.EXPIRED


@pytest.mark.asyncio
async def test_service_missing_tenant(test_db):
    with pytest.raises(TenantNotFoundError):
        await TrialService(test_db, UserRepository(test_db)).get_trial_status(9999)
