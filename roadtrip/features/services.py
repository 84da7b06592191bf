"""
roadtrip/features/services.py

Process-wide wiring of the engine: one store, one catalog, and the services
built on them. Route handlers call the module-level functions below.
"""

from typing import Any, Dict, Optional, Union

from roadtrip.core.config import Settings, settings
from roadtrip.features.accounts.service import AccountService
from roadtrip.features.catalog.service import DEFAULT_CATALOG, EntitlementCatalog
from roadtrip.features.quotas.service import QuotaGate, build_quota_rules
from roadtrip.features.resources.service import ResourceService
from roadtrip.features.storage.contracts import Store
from roadtrip.features.storage.store import get_store, reset_store
from roadtrip.features.subscriptions.service import SubscriptionService
from roadtrip.models.plan import PlanTier
from roadtrip.models.quota import QuotaDecision, ResourceKind
from roadtrip.models.records import DeletionReport
from roadtrip.models.subscription import PaymentMethod, Subscription


class EngineServices:
    def __init__(
        self,
        store: Store,
        catalog: EntitlementCatalog = DEFAULT_CATALOG,
        settings_obj: Optional[Settings] = None,
    ):
        cfg = settings_obj or settings
        self.store = store
        self.catalog = catalog
        self.subscriptions = SubscriptionService(
            store,
            catalog,
            free_term_months=cfg.FREE_TERM_MONTHS,
            paid_term_months=cfg.PAID_TERM_MONTHS,
        )
        self.quotas = QuotaGate(
            store,
            self.subscriptions,
            rules=build_quota_rules(cfg.AI_CONSULTATION_WINDOW_HOURS),
        )
        self.accounts = AccountService(store, self.subscriptions)
        self.resources = ResourceService(self.quotas)


_services: Optional[EngineServices] = None


def get_engine_services() -> EngineServices:
    global _services
    if _services is None:
        _services = EngineServices(get_store(), DEFAULT_CATALOG, settings)
    return _services


def reset_engine_services() -> None:
    """FOR TESTING ONLY - drops the wired services and the store behind them."""
    global _services
    _services = None
    reset_store()


# Exposed operations


def create_default_subscription(user_id: str) -> Subscription:
    return get_engine_services().subscriptions.create_default(user_id)


def get_current_subscription(user_id: str) -> Optional[Subscription]:
    return get_engine_services().subscriptions.get_current(user_id)


def change_plan(
    user_id: str,
    plan: Union[str, PlanTier],
    payment_method: Union[str, PaymentMethod, None] = None,
) -> Subscription:
    return get_engine_services().subscriptions.change_plan(user_id, plan, payment_method)


def cancel_subscription(user_id: str, reason: Optional[str] = None) -> Subscription:
    return get_engine_services().subscriptions.cancel(user_id, reason)


def reactivate_subscription(
    user_id: str,
    plan: Union[str, PlanTier],
    payment_method: Union[str, PaymentMethod, None] = None,
) -> Subscription:
    return get_engine_services().subscriptions.reactivate(user_id, plan, payment_method)


def check_quota(user_id: str, kind: Union[str, ResourceKind]) -> QuotaDecision:
    return get_engine_services().quotas.check_quota(user_id, kind)


def check_and_reserve(
    user_id: str, kind: Union[str, ResourceKind], data: Optional[Dict[str, Any]] = None
) -> QuotaDecision:
    return get_engine_services().quotas.check_and_reserve(user_id, kind, data)


def delete_account(user_id: str) -> DeletionReport:
    return get_engine_services().accounts.delete_account(user_id)
