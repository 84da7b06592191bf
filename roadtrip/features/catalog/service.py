"""
roadtrip/features/catalog/service.py

Entitlement catalog.

Handles:
- The immutable plan table (free, standard, premium, enterprise)
- Feature derivation for new or changed subscriptions
- Plan comparison for upgrade/downgrade display
"""

from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Union

from pydantic.alias_generators import to_camel

from roadtrip.core.errors import InvalidPlanError, NotFoundError
from roadtrip.models.plan import ExportFormat, FeatureChange, FeatureSet, PlanDefinition, PlanDiff, PlanTier


_ALL_FORMATS = (ExportFormat.PDF, ExportFormat.CSV, ExportFormat.EXCEL, ExportFormat.GPX)

DEFAULT_PLANS = (
    PlanDefinition(
        tier=PlanTier.FREE,
        name="Free",
        description="Discover the basics of trip planning",
        rank=1,
        features=FeatureSet(
            max_trips=3,
            ai_consultations=1,
            max_collaborators=0,
            export_formats=(ExportFormat.PDF,),
        ),
    ),
    PlanDefinition(
        tier=PlanTier.STANDARD,
        name="Standard",
        description="For occasional travellers",
        rank=2,
        features=FeatureSet(
            max_trips=10,
            ai_consultations=5,
            max_collaborators=1,
            advertising_free=True,
            export_formats=(ExportFormat.PDF, ExportFormat.CSV),
        ),
    ),
    PlanDefinition(
        tier=PlanTier.PREMIUM,
        name="Premium",
        description="For passionate globe-trotters",
        rank=3,
        features=FeatureSet(
            max_trips=50,
            ai_consultations=20,
            max_collaborators=5,
            customization=True,
            priority_support=True,
            offline_access=True,
            advertising_free=True,
            export_formats=_ALL_FORMATS,
        ),
    ),
    PlanDefinition(
        tier=PlanTier.ENTERPRISE,
        name="Enterprise",
        description="For travel agencies",
        rank=4,
        features=FeatureSet(
            max_trips=1000,
            ai_consultations=100,
            max_collaborators=20,
            customization=True,
            priority_support=True,
            offline_access=True,
            advertising_free=True,
            export_formats=_ALL_FORMATS,
        ),
    ),
)


def parse_plan(plan: Union[str, PlanTier]) -> PlanTier:
    """Coerce user input to a PlanTier or raise InvalidPlanError."""
    if isinstance(plan, PlanTier):
        return plan
    try:
        return PlanTier(str(plan).strip().lower())
    except ValueError:
        raise InvalidPlanError(plan) from None


def _describe_change(before: Any, after: Any) -> str:
    if isinstance(after, tuple):
        return f"{len(after) - len(before):+d} format(s)"
    if isinstance(after, bool):
        return "enabled" if after else "disabled"
    return f"{after - before:+d}"


class EntitlementCatalog:
    """
    Immutable plan table.

    Built once at startup and passed to the services that need it; there is
    no way to mutate it afterwards.
    """

    def __init__(self, plans: Iterable[PlanDefinition] = DEFAULT_PLANS):
        table = {p.tier: p for p in plans}
        missing = set(PlanTier) - set(table)
        if missing:
            raise ValueError(f"Catalog missing plans: {sorted(t.value for t in missing)}")
        self._plans: Mapping[PlanTier, PlanDefinition] = MappingProxyType(table)

    def get_plan(self, plan_id: Union[str, PlanTier]) -> PlanDefinition:
        try:
            tier = parse_plan(plan_id)
        except InvalidPlanError:
            raise NotFoundError(f"Plan not found: {plan_id}", details={"plan": str(plan_id)}) from None
        return self._plans[tier]

    def derive_features(self, plan: Union[str, PlanTier]) -> FeatureSet:
        """Snapshot of a plan's limits; raises InvalidPlanError for unknown plans."""
        return self._plans[parse_plan(plan)].features

    def all_plans(self) -> List[PlanDefinition]:
        return sorted(self._plans.values(), key=lambda p: p.rank)

    def diff(self, current_plan: Union[str, PlanTier], target_plan: Union[str, PlanTier]) -> PlanDiff:
        """
        Compare two plans feature by feature.

        Unknown plan ids compare as the free plan. Display only: quota
        decisions read the subscription snapshot, never this.
        """
        current = self._lenient(current_plan)
        target = self._lenient(target_plan)

        differences = {}
        for name in FeatureSet.model_fields:
            before = getattr(current.features, name)
            after = getattr(target.features, name)
            if before != after:
                differences[to_camel(name)] = FeatureChange(
                    from_value=before,
                    to_value=after,
                    change=_describe_change(before, after),
                )

        return PlanDiff(
            current_plan=current.tier,
            target_plan=target.tier,
            is_upgrade=target.rank > current.rank,
            differences=differences,
        )

    def _lenient(self, plan_id: Union[str, PlanTier]) -> PlanDefinition:
        try:
            return self._plans[parse_plan(plan_id)]
        except InvalidPlanError:
            return self._plans[PlanTier.FREE]


DEFAULT_CATALOG = EntitlementCatalog()


def derive_features(plan: Union[str, PlanTier]) -> FeatureSet:
    """Pure plan -> FeatureSet lookup against the default catalog."""
    return DEFAULT_CATALOG.derive_features(plan)
