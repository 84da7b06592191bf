"""
roadtrip/features/quotas/service.py

Quota enforcement gate.

Limits come from the subscription's stored feature snapshot. Trips count over
the account lifetime; AI consultations count over a rolling window.

check_and_reserve() locks the user and bumps the (user, kind) quota guard
before counting, so concurrent reservations for the same user run one after
another and neither the count nor the usage stats can be overtaken by a
parallel write.
"""

import logging
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union
from uuid import uuid4

from roadtrip.core.errors import NotFoundError, SubscriptionRequiredError, ValidationError
from roadtrip.features.storage.contracts import KIND_COLLECTIONS, Store, StoreTransaction
from roadtrip.features.subscriptions.service import SubscriptionService
from roadtrip.features.subscriptions.status import normalize_now
from roadtrip.models.quota import CountWindow, QuotaDecision, QuotaOutcome, QuotaRule, ResourceKind
from roadtrip.models.records import OwnedRecord
from roadtrip.models.subscription import Subscription


logger = logging.getLogger(__name__)

# usage_stats counter bumped for each kind
_USAGE_COUNTERS = {
    ResourceKind.TRIP: "trips_created",
    ResourceKind.AI_CONSULTATION: "ai_consultations_used",
}


def build_quota_rules(ai_window_hours: int = 24) -> Mapping[ResourceKind, QuotaRule]:
    return MappingProxyType({
        ResourceKind.TRIP: QuotaRule(
            kind=ResourceKind.TRIP,
            feature="max_trips",
            wire_feature="maxTrips",
            window=CountWindow.LIFETIME,
        ),
        ResourceKind.AI_CONSULTATION: QuotaRule(
            kind=ResourceKind.AI_CONSULTATION,
            feature="ai_consultations",
            wire_feature="aiConsultations",
            window=CountWindow.ROLLING_24H,
            window_length=timedelta(hours=ai_window_hours),
        ),
    })


QUOTA_RULES = build_quota_rules()


def parse_kind(kind: Union[str, ResourceKind]) -> ResourceKind:
    if isinstance(kind, ResourceKind):
        return kind
    try:
        return ResourceKind(str(kind).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown resource kind: {kind!r}",
            details={"field": "kind", "value": str(kind)},
        ) from None


class QuotaGate:
    def __init__(
        self,
        store: Store,
        subscriptions: SubscriptionService,
        rules: Mapping[ResourceKind, QuotaRule] = QUOTA_RULES,
    ):
        self.store = store
        self.subscriptions = subscriptions
        self.rules = rules

    def _count(self, tx: StoreTransaction, rule: QuotaRule, user_id: str, now: datetime) -> int:
        if rule.window is CountWindow.LIFETIME:
            return tx.count_by_owner(user_id, rule.kind)
        return tx.count_by_owner_since(user_id, rule.kind, now - rule.window_length)

    def _evaluate(
        self, tx: StoreTransaction, user_id: str, kind: ResourceKind, now: datetime
    ) -> Tuple[Subscription, QuotaDecision]:
        rule = self.rules[kind]
        subscription = self.subscriptions.current_in(tx, user_id, now)
        if subscription is None:
            raise SubscriptionRequiredError(
                f"An active subscription is required to create a {kind.value}",
                details={"user_id": user_id, "kind": kind.value},
            )

        limit = getattr(subscription.features, rule.feature)
        current = self._count(tx, rule, user_id, now)

        if current >= limit:
            decision = QuotaDecision(
                outcome=QuotaOutcome.DENY,
                kind=kind,
                feature=rule.wire_feature,
                limit=limit,
                current=current,
                plan=subscription.plan,
                reason=(
                    f"Limit of {limit} reached for {rule.wire_feature} on the "
                    f"{subscription.plan.value} plan; upgrade to raise it"
                ),
            )
        else:
            decision = QuotaDecision(
                outcome=QuotaOutcome.ALLOW,
                kind=kind,
                feature=rule.wire_feature,
                limit=limit,
                current=current,
                plan=subscription.plan,
            )
        return subscription, decision

    def check_quota(
        self, user_id: str, kind: Union[str, ResourceKind], *, now: Optional[datetime] = None
    ) -> QuotaDecision:
        """Evaluate without reserving. Advisory only; use check_and_reserve() to create."""
        kind = parse_kind(kind)
        now = normalize_now(now)
        with self.store.transaction() as tx:
            _, decision = self._evaluate(tx, user_id, kind, now)
        return decision

    def check_and_reserve(
        self,
        user_id: str,
        kind: Union[str, ResourceKind],
        data: Optional[Dict[str, Any]] = None,
        *,
        now: Optional[datetime] = None,
    ) -> QuotaDecision:
        """
        Check the quota and, when allowed, create the resource record.

        Guard, count, insert and usage update share one transaction. A denial
        writes nothing and is returned, not raised; call
        `decision.raise_for_denial()` to turn it into QuotaExceededError.
        """
        kind = parse_kind(kind)
        now = normalize_now(now)

        with self.store.transaction() as tx:
            tx.lock_user(user_id)
            if tx.get_user(user_id) is None:
                raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
            tx.acquire_quota_guard(user_id, kind, now)
            subscription, decision = self._evaluate(tx, user_id, kind, now)

            if decision.allowed:
                record = OwnedRecord(
                    id=str(uuid4()),
                    user_id=user_id,
                    subscription_id=subscription.id,
                    created_at=now,
                    data=dict(data or {}),
                )
                tx.insert_record(KIND_COLLECTIONS[kind], record)

                counter = _USAGE_COUNTERS[kind]
                usage = subscription.usage_stats.model_copy(update={
                    counter: getattr(subscription.usage_stats, counter) + 1,
                    "last_used_at": now,
                })
                tx.save_subscription(subscription.model_copy(update={"usage_stats": usage, "updated_at": now}))
                decision = decision.model_copy(update={"record_id": record.id})

        if decision.allowed:
            logger.info(
                "[quota] ALLOW",
                extra={
                    "user_id": user_id,
                    "kind": kind.value,
                    "current": decision.current,
                    "limit": decision.limit,
                    "record_id": decision.record_id,
                },
            )
        else:
            logger.warning(
                "[quota] DENY",
                extra={
                    "user_id": user_id,
                    "kind": kind.value,
                    "feature": decision.feature,
                    "current": decision.current,
                    "limit": decision.limit,
                    "plan": decision.plan.value,
                },
            )
        return decision
