"""
roadtrip/features/subscriptions/status.py

Pure date and status rules for subscriptions. No I/O; every function takes
`now` explicitly so results are deterministic.
"""

import calendar
from datetime import datetime, timezone
from typing import Iterable, Optional

from roadtrip.models.plan import PlanTier
from roadtrip.models.subscription import TERMINAL_STATUSES, Subscription, SubscriptionStatus


def normalize_now(now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def term_end(plan: PlanTier, start: datetime, free_months: int = 1, paid_months: int = 12) -> datetime:
    """End of a fresh term starting at `start`: one month free, twelve paid."""
    return add_months(start, paid_months if plan.is_paid else free_months)


def derive_status(subscription: Subscription, now: datetime) -> SubscriptionStatus:
    if subscription.status in TERMINAL_STATUSES:
        return subscription.status
    if subscription.trial_ends_at is not None and subscription.trial_ends_at > now:
        return SubscriptionStatus.TRIALING
    if subscription.end_date < now:
        return SubscriptionStatus.EXPIRED
    return SubscriptionStatus.ACTIVE


def normalize_status(subscription: Subscription, now: datetime) -> Subscription:
    """
    Re-derive the status from stored dates.

    Canceled and suspended records keep their status; a canceled record
    missing `canceled_at` gets it stamped. Returns the same object when
    nothing changes.
    """
    update = {}
    status = derive_status(subscription, now)
    if status is not subscription.status:
        update["status"] = status
    if status is SubscriptionStatus.CANCELED and subscription.canceled_at is None:
        update["canceled_at"] = now
    if not update:
        return subscription
    return subscription.model_copy(update=update)


def select_current(subscriptions: Iterable[Subscription], now: datetime) -> Optional[Subscription]:
    """
    Pick the subscription in effect at `now` from already-normalized records.

    Several can qualify because reactivation inserts rows; the latest start
    wins, then the latest created, then the highest id.
    """
    current = [s for s in subscriptions if s.is_current(now)]
    if not current:
        return None
    return max(current, key=lambda s: (s.start_date, s.created_at, s.id))
