"""
roadtrip/models/subscription.py

Subscription record and its embedded value objects.

Records are frozen: lifecycle operations produce updated copies with
`model_copy(update=...)` and hand them to the store.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from roadtrip.models.plan import FeatureSet, PlanTier


_WIRE = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


# Statuses that the date-based derivation never overrides
TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELED, SubscriptionStatus.SUSPENDED})
CURRENT_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


class PaymentMethod(str, Enum):
    CARD = "card"
    PAYPAL = "paypal"
    TRANSFER = "transfer"
    FREE = "free"
    STRIPE = "stripe"


class Currency(str, Enum):
    EUR = "EUR"
    USD = "USD"
    GBP = "GBP"
    CAD = "CAD"


class PaymentStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"
    PENDING = "pending"


class PaymentInfo(BaseModel):
    model_config = _WIRE

    method: PaymentMethod = PaymentMethod.FREE
    last_four_digits: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    card_brand: Optional[str] = None
    processor_customer_id: Optional[str] = None
    processor_subscription_id: Optional[str] = None
    processor_price_id: Optional[str] = None


class PaymentEvent(BaseModel):
    """Input to `record_payment`. `date` defaults to the operation time."""
    model_config = _WIRE

    amount: float = Field(ge=0)
    currency: Currency = Currency.EUR
    status: PaymentStatus = PaymentStatus.SUCCESS
    transaction_id: Optional[str] = None
    invoice_id: Optional[str] = None
    date: Optional[datetime] = None


class PaymentEntry(BaseModel):
    model_config = _WIRE

    date: datetime
    amount: float
    currency: Currency
    status: PaymentStatus
    transaction_id: Optional[str] = None
    invoice_id: Optional[str] = None


class UsageStats(BaseModel):
    model_config = _WIRE

    trips_created: int = 0
    ai_consultations_used: int = 0
    last_used_at: Optional[datetime] = None


class Subscription(BaseModel):
    """
    Time-bounded binding of a user to a plan.

    `features` is the snapshot taken at creation or plan change; it is never
    re-read from the catalog. `status` as stored may be stale, callers gate on
    `normalize_status()` / `is_current()` instead.
    """
    model_config = _WIRE

    id: str
    user_id: str
    plan: PlanTier
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    start_date: datetime
    end_date: datetime
    trial_ends_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    auto_renew: bool = True
    payment_info: PaymentInfo = Field(default_factory=PaymentInfo)
    payment_history: Tuple[PaymentEntry, ...] = ()
    features: FeatureSet
    usage_stats: UsageStats = Field(default_factory=UsageStats)
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _check_term(self) -> "Subscription":
        # Cancellation at the start instant is the only zero-length term
        if self.end_date < self.start_date or (
            self.end_date == self.start_date and self.status is not SubscriptionStatus.CANCELED
        ):
            raise ValueError("end_date must be after start_date")
        return self

    def is_current(self, now: datetime) -> bool:
        return self.status in CURRENT_STATUSES and self.end_date > now


class SubscriptionPage(BaseModel):
    model_config = _WIRE

    items: List[Subscription]
    total: int
    page: int
    total_pages: int


class AvailableFeatures(BaseModel):
    """Entitlements in effect for a user; `plan` is None without a current subscription."""
    model_config = _WIRE

    plan: Optional[PlanTier]
    features: FeatureSet
