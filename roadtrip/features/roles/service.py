"""
roadtrip/features/roles/service.py

Plan -> role projection.

The role mirrors the commercial tier only. Administrative privilege is the
separate `User.is_admin` flag and no plan ever grants it.
"""

from types import MappingProxyType
from typing import Union

from roadtrip.features.catalog.service import parse_plan
from roadtrip.models.plan import PlanTier
from roadtrip.models.user import Role


BASE_ROLE = Role.USER

PLAN_ROLES = MappingProxyType({
    PlanTier.FREE: Role.USER,
    PlanTier.STANDARD: Role.USER,
    PlanTier.PREMIUM: Role.PREMIUM,
    PlanTier.ENTERPRISE: Role.ENTERPRISE,
})


def plan_to_role(plan: Union[str, PlanTier]) -> Role:
    """Raises InvalidPlanError for unknown plans."""
    return PLAN_ROLES[parse_plan(plan)]
