"""
pawfect/models/entitlement.py

Resolved entitlements for one user, and the typed result of plan lookup.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pawfect.models.plan import Cap, FeatureFlag, Plan, PlanTier, validate_cap


class Entitlements(BaseModel):
    """
    Effective feature flags, numeric caps and consumable balances.

    Caps are non-negative ints or "unlimited"; consumable balances are
    never negative.
    """
    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None
    plan_id: str
    tier: PlanTier
    features: FrozenSet[FeatureFlag] = frozenset()
    swipe_daily_cap: Cap
    super_likes_per_day: int = Field(ge=0)
    boosts_per_week: int = Field(ge=0)
    adoption_listing_limit: int = Field(ge=0)
    consumables: Dict[str, int] = Field(default_factory=dict)

    @field_validator("swipe_daily_cap")
    @classmethod
    def _check_swipe_cap(cls, value):
        return validate_cap(value)

    @field_validator("consumables")
    @classmethod
    def _check_consumables(cls, value):
        for kind, count in value.items():
            if count < 0:
                raise ValueError(f"consumable {kind} cannot be negative")
        return value

    def has(self, feature: Union[FeatureFlag, str]) -> bool:
        try:
            return FeatureFlag(feature) in self.features
        except ValueError:
            return False

    def consumable_balance(self, kind: str) -> int:
        return self.consumables.get(kind, 0)


class PlanResolutionSource(str, Enum):
    RESOLVED = "resolved"    # stored assignment found
    DEFAULTED = "defaulted"  # no assignment stored; user is on the default plan
    FALLBACK = "fallback"    # store failed or held an unusable value


class PlanResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan: Plan
    source: PlanResolutionSource
    error: Optional[str] = None

    @property
    def tier(self) -> PlanTier:
        return self.plan.tier

    @property
    def is_fallback(self) -> bool:
        return self.source == PlanResolutionSource.FALLBACK
