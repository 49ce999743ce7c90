"""
pawfect/features/plans/service.py

Plan catalog (read-only reference data).

Handles:
- Default plan definitions (free, premium, elite + yearly variants)
- Plan lookup by plan id or tier
"""

from typing import Dict, Iterable, List, Optional, Union

from pawfect.core.errors import PlanNotFoundError
from pawfect.models.plan import UNLIMITED, FeatureFlag, Plan, PlanTier


# Default plan configurations
DEFAULT_PLANS = {
    "free": {
        "tier": PlanTier.FREE,
        "name": "Free",
        "is_default": True,
        "features": [],
        "swipe_daily_cap": 5,
        "super_likes_per_day": 0,
        "boosts_per_week": 0,
        "adoption_listing_limit": 1,
    },
    "premium": {
        "tier": PlanTier.PREMIUM,
        "name": "Premium",
        "features": [
            FeatureFlag.UNLIMITED_SWIPES,
            FeatureFlag.SEE_WHO_LIKED_YOU,
            FeatureFlag.ADVANCED_FILTER,
            FeatureFlag.READ_RECEIPT,
        ],
        "swipe_daily_cap": UNLIMITED,
        "super_likes_per_day": 0,
        "boosts_per_week": 1,
        "adoption_listing_limit": 3,
    },
    "elite": {
        "tier": PlanTier.ELITE,
        "name": "Elite",
        "features": [
            FeatureFlag.UNLIMITED_SWIPES,
            FeatureFlag.SEE_WHO_LIKED_YOU,
            FeatureFlag.VIDEO_CALL,
            FeatureFlag.ADVANCED_FILTER,
            FeatureFlag.READ_RECEIPT,
        ],
        "swipe_daily_cap": UNLIMITED,
        "super_likes_per_day": 10,
        "boosts_per_week": 2,
        "adoption_listing_limit": 10,
    },
}

# Billing-cycle variants share their tier's bundle
PLAN_ALIASES = {
    "premium_yearly": "premium",
    "elite_yearly": "elite",
}


def _build_plan(plan_id: str, config: dict) -> Plan:
    return Plan(
        plan_id=plan_id,
        tier=config["tier"],
        name=config["name"],
        is_default=config.get("is_default", False),
        features=frozenset(config.get("features", [])),
        swipe_daily_cap=config["swipe_daily_cap"],
        super_likes_per_day=config["super_likes_per_day"],
        boosts_per_week=config["boosts_per_week"],
        adoption_listing_limit=config["adoption_listing_limit"],
    )


class PlanCatalog:
    """Immutable plan lookup table. Safe to share across requests."""

    def __init__(self, plans: Optional[Iterable[Plan]] = None, aliases: Optional[Dict[str, str]] = None):
        if plans is None:
            plans = [_build_plan(pid, cfg) for pid, cfg in DEFAULT_PLANS.items()]
            aliases = PLAN_ALIASES if aliases is None else aliases
        self._plans: Dict[str, Plan] = {}
        for plan in plans:
            self._plans[plan.plan_id] = plan
        for alias, target in (aliases or {}).items():
            base = self._plans[target]
            self._plans[alias] = base.model_copy(update={"plan_id": alias, "is_default": False})

        defaults = [p for p in self._plans.values() if p.is_default]
        if len(defaults) != 1:
            raise ValueError("plan catalog must define exactly one default plan")
        self._default = defaults[0]

    def get_plan(self, plan_id: str) -> Plan:
        plan = self._plans.get(str(plan_id).strip())
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    def has_plan(self, plan_id: str) -> bool:
        return str(plan_id).strip() in self._plans

    def get_default_plan(self) -> Plan:
        return self._default

    def plan_for_tier(self, tier: Union[PlanTier, str]) -> Plan:
        """Canonical plan for a tier (the one whose plan_id is the tier name)."""
        tier = PlanTier(tier)
        return self.get_plan(tier.value)

    def list_plans(self) -> List[Plan]:
        return list(self._plans.values())


_default_catalog: Optional[PlanCatalog] = None


def get_plan_catalog() -> PlanCatalog:
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = PlanCatalog()
    return _default_catalog
