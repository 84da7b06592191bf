"""
Tests for the quota enforcement gate.
"""
from datetime import timedelta

import pytest

from roadtrip.core.errors import NotFoundError, QuotaExceededError, SubscriptionRequiredError, ValidationError
from roadtrip.features.quotas.service import QuotaGate, build_quota_rules
from roadtrip.models.plan import PlanTier
from roadtrip.models.quota import QuotaOutcome, ResourceKind


def test_trip_boundary(gate, make_account, now):
    """maxTrips = 3: two existing trips allow, three deny."""
    user_id = make_account().user.id
    gate.check_and_reserve(user_id, "trip", now=now)
    gate.check_and_reserve(user_id, "trip", now=now)

    assert gate.check_quota(user_id, "trip", now=now).outcome is QuotaOutcome.ALLOW

    gate.check_and_reserve(user_id, "trip", now=now)

    decision = gate.check_quota(user_id, "trip", now=now)
    assert decision.outcome is QuotaOutcome.DENY
    assert decision.limit == 3
    assert decision.current == 3
    assert decision.remaining == 0


def test_fourth_trip_on_free_plan(resources, make_account, now):
    user_id = make_account().user.id
    for _ in range(3):
        assert resources.create_trip(user_id, {"title": "Lisbon"}, now=now).allowed

    with pytest.raises(QuotaExceededError) as exc:
        resources.create_trip(user_id, {"title": "Porto"}, now=now)

    err = exc.value
    assert err.feature == "maxTrips"
    assert err.limit == 3
    assert err.current == 3
    assert err.plan == "free"
    assert err.status_code == 403
    assert "free" in err.message


def test_denied_reservation_writes_nothing(gate, make_account, store, now):
    user_id = make_account().user.id
    for _ in range(3):
        gate.check_and_reserve(user_id, ResourceKind.TRIP, now=now)

    decision = gate.check_and_reserve(user_id, ResourceKind.TRIP, now=now)

    assert not decision.allowed
    assert decision.record_id is None
    with store.transaction() as tx:
        assert tx.count_by_owner(user_id, ResourceKind.TRIP) == 3


def test_allow_updates_usage_stats(gate, make_account, store, now):
    account = make_account()
    decision = gate.check_and_reserve(account.user.id, "trip", {"title": "Rome"}, now=now)

    assert decision.record_id is not None
    with store.transaction() as tx:
        usage = tx.get_subscription(account.subscription.id).usage_stats
    assert usage.trips_created == 1
    assert usage.last_used_at == now


def test_ai_consultations_use_rolling_window(gate, make_account, now):
    user_id = make_account().user.id
    assert gate.check_and_reserve(user_id, "ai_consultation", now=now).allowed
    assert not gate.check_and_reserve(user_id, "ai_consultation", now=now + timedelta(hours=23)).allowed

    later = now + timedelta(hours=24, seconds=1)
    assert gate.check_and_reserve(user_id, "ai_consultation", now=later).allowed


def test_trips_count_over_lifetime(gate, make_account, now):
    user_id = make_account().user.id
    for _ in range(3):
        gate.check_and_reserve(user_id, "trip", now=now)

    decision = gate.check_quota(user_id, "trip", now=now + timedelta(days=20))
    assert decision.outcome is QuotaOutcome.DENY


def test_upgrade_raises_limit(gate, subscriptions, make_account, now):
    user_id = make_account().user.id
    for _ in range(3):
        gate.check_and_reserve(user_id, "trip", now=now)

    subscriptions.change_plan(user_id, "standard", "card", now=now)

    decision = gate.check_quota(user_id, "trip", now=now)
    assert decision.allowed
    assert decision.limit == 10
    assert decision.plan is PlanTier.STANDARD


def test_no_subscription_requires_one(gate, subscriptions, make_account, now):
    user_id = make_account().user.id
    subscriptions.cancel(user_id, now=now)

    with pytest.raises(SubscriptionRequiredError) as exc:
        gate.check_and_reserve(user_id, "trip", now=now)
    assert exc.value.status_code == 402


def test_expired_subscription_requires_one(gate, make_account, now):
    user_id = make_account(when=now - timedelta(days=60)).user.id
    with pytest.raises(SubscriptionRequiredError):
        gate.check_quota(user_id, "trip", now=now)


def test_unknown_user(gate, now):
    with pytest.raises(NotFoundError):
        gate.check_and_reserve("ghost", "trip", now=now)


def test_unknown_kind(gate, make_account, now):
    user_id = make_account().user.id
    with pytest.raises(ValidationError):
        gate.check_quota(user_id, "postcard", now=now)


def test_custom_ai_window(store, subscriptions, make_account, now):
    gate = QuotaGate(store, subscriptions, rules=build_quota_rules(ai_window_hours=1))
    user_id = make_account().user.id
    gate.check_and_reserve(user_id, "ai_consultation", now=now)

    assert gate.check_and_reserve(user_id, "ai_consultation", now=now + timedelta(minutes=61)).allowed
