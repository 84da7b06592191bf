"""
roadtrip/models/quota.py

Quota-limited resource kinds and gate decisions.
"""

from datetime import timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from roadtrip.core.errors import QuotaExceededError
from roadtrip.models.plan import PlanTier


class ResourceKind(str, Enum):
    TRIP = "trip"
    AI_CONSULTATION = "ai_consultation"


class CountWindow(str, Enum):
    LIFETIME = "lifetime"
    ROLLING_24H = "rolling_24h"


class QuotaRule(BaseModel):
    """How a resource kind is counted and which feature bounds it."""
    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    feature: str  # FeatureSet attribute
    wire_feature: str  # name exposed to clients
    window: CountWindow
    window_length: Optional[timedelta] = None


class QuotaOutcome(str, Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"


class QuotaDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: QuotaOutcome
    kind: ResourceKind
    feature: str
    limit: int
    current: int
    plan: PlanTier
    reason: Optional[str] = None
    record_id: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome is QuotaOutcome.ALLOW

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current)

    def raise_for_denial(self) -> "QuotaDecision":
        if not self.allowed:
            raise QuotaExceededError(
                self.reason or f"Limit reached for {self.feature}",
                feature=self.feature,
                limit=self.limit,
                current=self.current,
                plan=self.plan.value,
            )
        return self
