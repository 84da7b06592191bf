"""
roadtrip/models/plan.py

Plan tiers and the capability snapshot attached to them.

A FeatureSet is computed once from the catalog when a subscription is created
or changes plan, then stored on the subscription as-is.
"""

from enum import Enum
from typing import Any, Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PlanTier(str, Enum):
    """Commercial tier. Determines entitlements, never system privileges."""
    FREE = "free"
    STANDARD = "standard"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"

    @property
    def is_paid(self) -> bool:
        return self is not PlanTier.FREE


class ExportFormat(str, Enum):
    PDF = "pdf"
    CSV = "csv"
    EXCEL = "excel"
    GPX = "gpx"


class FeatureSet(BaseModel):
    """
    Capability limits of a plan.

    Numeric fields are ceilings (`ai_consultations` is per rolling 24h),
    boolean fields are feature flags. Wire names are camelCase
    (`maxTrips`, `aiConsultations`, ...).
    """
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    max_trips: int = Field(ge=0)
    ai_consultations: int = Field(ge=0)
    max_collaborators: int = Field(ge=0)
    customization: bool = False
    priority_support: bool = False
    offline_access: bool = False
    advertising_free: bool = False
    export_formats: Tuple[ExportFormat, ...] = (ExportFormat.PDF,)


class PlanDefinition(BaseModel):
    """Catalog entry. Pricing lives with the payment provider, not here."""
    model_config = ConfigDict(frozen=True)

    tier: PlanTier
    name: str
    description: str = ""
    rank: int
    features: FeatureSet


class FeatureChange(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_value: Any = Field(alias="from")
    to_value: Any = Field(alias="to")
    change: str


class PlanDiff(BaseModel):
    """Upgrade/downgrade delta between two plans, for display only."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    current_plan: PlanTier
    target_plan: PlanTier
    is_upgrade: bool
    differences: Dict[str, FeatureChange] = Field(default_factory=dict)
