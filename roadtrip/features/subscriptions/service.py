"""
roadtrip/features/subscriptions/service.py

Subscription lifecycle manager.

Handles:
- Default (free) subscription creation at registration
- Current-subscription lookup with opportunistic status derivation
- Plan change, cancellation, reactivation and renewal
- Payment history entries

Every operation runs as one store transaction covering both the subscription
and the owning user's role/active-subscription fields, and locks the user
before reading, so operations on the same user never interleave.
"""

import logging
import math
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Union
from uuid import uuid4

from roadtrip.core.errors import (
    ConflictError,
    NoActiveSubscriptionError,
    NotActiveError,
    NotFoundError,
    ValidationError,
)
from roadtrip.features.catalog.service import DEFAULT_CATALOG, EntitlementCatalog, parse_plan
from roadtrip.features.roles.service import BASE_ROLE, plan_to_role
from roadtrip.features.storage.contracts import Store, StoreTransaction
from roadtrip.features.subscriptions.status import (
    add_months,
    normalize_now,
    normalize_status,
    select_current,
    term_end,
)
from roadtrip.models.plan import PlanTier
from roadtrip.models.records import Collection, OwnedRecord
from roadtrip.models.subscription import (
    TERMINAL_STATUSES,
    AvailableFeatures,
    PaymentEntry,
    PaymentEvent,
    PaymentInfo,
    PaymentMethod,
    Subscription,
    SubscriptionPage,
    SubscriptionStatus,
)


logger = logging.getLogger(__name__)


def parse_payment_method(method: Union[str, PaymentMethod, None]) -> Optional[PaymentMethod]:
    if method is None or isinstance(method, PaymentMethod):
        return method
    try:
        return PaymentMethod(str(method).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown payment method: {method!r}",
            details={"field": "paymentMethod", "value": str(method)},
        ) from None


class SubscriptionService:
    def __init__(
        self,
        store: Store,
        catalog: EntitlementCatalog = DEFAULT_CATALOG,
        *,
        free_term_months: int = 1,
        paid_term_months: int = 12,
    ):
        self.store = store
        self.catalog = catalog
        self.free_term_months = free_term_months
        self.paid_term_months = paid_term_months

    @contextmanager
    def _unit(self, tx: Optional[StoreTransaction] = None) -> Iterator[StoreTransaction]:
        if tx is not None:
            yield tx
            return
        with self.store.transaction() as own:
            yield own

    def _term_end(self, plan: PlanTier, start: datetime) -> datetime:
        return term_end(plan, start, self.free_term_months, self.paid_term_months)

    def _new_subscription(
        self, user_id: str, plan: PlanTier, method: PaymentMethod, now: datetime
    ) -> Subscription:
        subscription = Subscription(
            id=str(uuid4()),
            user_id=user_id,
            plan=plan,
            status=SubscriptionStatus.ACTIVE,
            start_date=now,
            end_date=self._term_end(plan, now),
            payment_info=PaymentInfo(method=method),
            features=self.catalog.derive_features(plan),
            created_at=now,
            updated_at=now,
        )
        return normalize_status(subscription, now)

    def _load_normalized(self, tx: StoreTransaction, user_id: str, now: datetime) -> List[Subscription]:
        """All of a user's subscriptions with derived statuses written back."""
        result = []
        for stored in tx.list_subscriptions(user_id):
            normalized = normalize_status(stored, now)
            if normalized is not stored:
                normalized = normalized.model_copy(update={"updated_at": now})
                tx.save_subscription(normalized)
                logger.info(
                    "[subscriptions] status derived",
                    extra={
                        "user_id": user_id,
                        "subscription_id": stored.id,
                        "from_status": stored.status.value,
                        "to_status": normalized.status.value,
                    },
                )
            result.append(normalized)
        return result

    def _current(self, tx: StoreTransaction, user_id: str, now: datetime) -> Optional[Subscription]:
        return select_current(self._load_normalized(tx, user_id, now), now)

    def _require_user(self, tx: StoreTransaction, user_id: str) -> None:
        if tx.get_user(user_id) is None:
            raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})

    def _locked_subscription(self, tx: StoreTransaction, subscription_id: str) -> Subscription:
        """Fetch a subscription with its owner locked, re-reading after the lock."""
        stored = tx.get_subscription(subscription_id)
        if stored is not None:
            tx.lock_user(stored.user_id)
            stored = tx.get_subscription(subscription_id)
        if stored is None:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return stored

    def current_in(self, tx: StoreTransaction, user_id: str, now: datetime) -> Optional[Subscription]:
        """Current subscription evaluated inside the caller's transaction."""
        return self._current(tx, user_id, now)

    def create_default(
        self,
        user_id: str,
        *,
        now: Optional[datetime] = None,
        tx: Optional[StoreTransaction] = None,
    ) -> Subscription:
        """
        Create the free-tier subscription and link it to the user.

        Pass `tx` to join the caller's transaction (account creation does);
        the user must already exist in it.
        """
        now = normalize_now(now)
        with self._unit(tx) as unit:
            unit.lock_user(user_id)
            self._require_user(unit, user_id)
            existing = self._current(unit, user_id, now)
            if existing is not None:
                raise ConflictError(
                    f"User {user_id} already has a current subscription",
                    details={"user_id": user_id, "subscription_id": existing.id},
                )
            subscription = self._new_subscription(user_id, PlanTier.FREE, PaymentMethod.FREE, now)
            unit.insert_subscription(subscription)
            unit.update_user(
                user_id,
                role=plan_to_role(PlanTier.FREE),
                active_subscription_id=subscription.id,
            )

        logger.info(
            "[subscriptions] default created",
            extra={"user_id": user_id, "subscription_id": subscription.id, "end_date": subscription.end_date},
        )
        return subscription

    def get_current(self, user_id: str, *, now: Optional[datetime] = None) -> Optional[Subscription]:
        """Subscription in effect now, or None. Expired rows are reported as expired."""
        now = normalize_now(now)
        with self.store.transaction() as tx:
            return self._current(tx, user_id, now)

    def change_plan(
        self,
        user_id: str,
        plan: Union[str, PlanTier],
        payment_method: Union[str, PaymentMethod, None] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Move the current subscription to another plan.

        The term restarts at `now`: one month for free, twelve for paid plans.
        Remaining time on the old plan is not carried over.
        """
        tier = parse_plan(plan)
        method = parse_payment_method(payment_method)
        now = normalize_now(now)

        with self.store.transaction() as tx:
            tx.lock_user(user_id)
            current = self._current(tx, user_id, now)
            if current is None:
                raise NoActiveSubscriptionError(user_id)

            updated = normalize_status(
                current.model_copy(update={
                    "plan": tier,
                    "features": self.catalog.derive_features(tier),
                    "end_date": self._term_end(tier, now),
                    "payment_info": current.payment_info.model_copy(
                        update={"method": method or current.payment_info.method}
                    ),
                    "updated_at": now,
                }),
                now,
            )
            tx.save_subscription(updated)
            tx.update_user(user_id, role=plan_to_role(tier), active_subscription_id=updated.id)

        logger.info(
            "[subscriptions] plan changed",
            extra={
                "user_id": user_id,
                "subscription_id": updated.id,
                "from_plan": current.plan.value,
                "to_plan": tier.value,
                "end_date": updated.end_date,
            },
        )
        return updated

    def cancel(
        self, user_id: str, reason: Optional[str] = None, *, now: Optional[datetime] = None
    ) -> Subscription:
        """Cancel immediately: no grace period, the term ends at `now`."""
        now = normalize_now(now)

        with self.store.transaction() as tx:
            tx.lock_user(user_id)
            current = self._current(tx, user_id, now)
            if current is None:
                raise NoActiveSubscriptionError(user_id)

            canceled = normalize_status(
                current.model_copy(update={
                    "status": SubscriptionStatus.CANCELED,
                    "end_date": max(now, current.start_date),
                    "canceled_at": current.canceled_at or now,
                    "cancel_reason": reason,
                    "auto_renew": False,
                    "updated_at": now,
                }),
                now,
            )
            tx.save_subscription(canceled)
            tx.update_user(user_id, role=BASE_ROLE, active_subscription_id=None)

        logger.info(
            "[subscriptions] canceled",
            extra={"user_id": user_id, "subscription_id": canceled.id, "plan": canceled.plan.value, "reason": reason},
        )
        return canceled

    def reactivate(
        self,
        user_id: str,
        plan: Union[str, PlanTier],
        payment_method: Union[str, PaymentMethod, None] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Start a fresh subscription record; canceled records stay canceled."""
        tier = parse_plan(plan)
        method = parse_payment_method(payment_method) or PaymentMethod.FREE
        now = normalize_now(now)

        with self.store.transaction() as tx:
            tx.lock_user(user_id)
            self._require_user(tx, user_id)
            existing = self._current(tx, user_id, now)
            if existing is not None:
                raise ConflictError(
                    f"User {user_id} already has a current subscription",
                    details={"user_id": user_id, "subscription_id": existing.id},
                )
            subscription = self._new_subscription(user_id, tier, method, now)
            tx.insert_subscription(subscription)
            tx.update_user(user_id, role=plan_to_role(tier), active_subscription_id=subscription.id)

        logger.info(
            "[subscriptions] reactivated",
            extra={"user_id": user_id, "subscription_id": subscription.id, "plan": tier.value},
        )
        return subscription

    def renew(self, subscription_id: str, *, now: Optional[datetime] = None) -> Subscription:
        """Extend a subscription by one term counted from its current end date."""
        now = normalize_now(now)

        with self.store.transaction() as tx:
            subscription = normalize_status(self._locked_subscription(tx, subscription_id), now)
            if subscription.status in TERMINAL_STATUSES:
                raise NotActiveError(
                    f"Subscription {subscription_id} is {subscription.status.value} and cannot be renewed",
                    details={"subscription_id": subscription_id, "status": subscription.status.value},
                )

            renewed = normalize_status(
                subscription.model_copy(update={
                    "end_date": self._term_end(subscription.plan, subscription.end_date),
                    "updated_at": now,
                }),
                now,
            )
            if renewed.is_current(now):
                other = self._current(tx, subscription.user_id, now)
                if other is not None and other.id != renewed.id:
                    raise ConflictError(
                        "Renewal would create a second current subscription",
                        details={"subscription_id": subscription_id, "current_subscription_id": other.id},
                    )
            tx.save_subscription(renewed)
            if renewed.is_current(now):
                tx.update_user(
                    renewed.user_id,
                    role=plan_to_role(renewed.plan),
                    active_subscription_id=renewed.id,
                )

        logger.info(
            "[subscriptions] renewed",
            extra={"user_id": renewed.user_id, "subscription_id": renewed.id, "end_date": renewed.end_date},
        )
        return renewed

    def record_payment(
        self, subscription_id: str, event: PaymentEvent, *, now: Optional[datetime] = None
    ) -> Subscription:
        """Append a payment entry. Only active subscriptions accept payments."""
        now = normalize_now(now)

        with self.store.transaction() as tx:
            subscription = normalize_status(self._locked_subscription(tx, subscription_id), now)
            if subscription.status is not SubscriptionStatus.ACTIVE:
                raise NotActiveError(
                    f"Subscription {subscription_id} is {subscription.status.value}",
                    details={"subscription_id": subscription_id, "status": subscription.status.value},
                )

            entry = PaymentEntry(
                date=normalize_now(event.date) if event.date else now,
                amount=event.amount,
                currency=event.currency,
                status=event.status,
                transaction_id=event.transaction_id,
                invoice_id=event.invoice_id,
            )
            updated = subscription.model_copy(update={
                "payment_history": subscription.payment_history + (entry,),
                "updated_at": now,
            })
            tx.save_subscription(updated)
            tx.insert_record(
                Collection.PAYMENTS,
                OwnedRecord(
                    id=str(uuid4()),
                    user_id=subscription.user_id,
                    subscription_id=subscription.id,
                    created_at=now,
                    data=entry.model_dump(mode="json"),
                ),
            )

        logger.info(
            "[subscriptions] payment recorded",
            extra={
                "user_id": updated.user_id,
                "subscription_id": updated.id,
                "amount": entry.amount,
                "currency": entry.currency.value,
                "payment_status": entry.status.value,
            },
        )
        return updated

    def history(
        self,
        user_id: str,
        *,
        limit: int = 50,
        page: int = 1,
        status: Union[str, SubscriptionStatus, None] = None,
        now: Optional[datetime] = None,
    ) -> SubscriptionPage:
        """Newest-first page of a user's subscriptions, optionally filtered by status."""
        if limit < 1 or page < 1:
            raise ValidationError("limit and page must be positive", details={"limit": limit, "page": page})
        if status is not None:
            try:
                status = SubscriptionStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown status: {status!r}", details={"field": "status"}) from None
        now = normalize_now(now)

        with self.store.transaction() as tx:
            rows = self._load_normalized(tx, user_id, now)

        if status is not None:
            rows = [s for s in rows if s.status is status]
        rows.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        start = (page - 1) * limit
        return SubscriptionPage(
            items=rows[start:start + limit],
            total=len(rows),
            page=page,
            total_pages=math.ceil(len(rows) / limit),
        )

    def available_features(self, user_id: str, *, now: Optional[datetime] = None) -> AvailableFeatures:
        current = self.get_current(user_id, now=now)
        if current is None:
            return AvailableFeatures(plan=None, features=self.catalog.derive_features(PlanTier.FREE))
        return AvailableFeatures(plan=current.plan, features=current.features)
