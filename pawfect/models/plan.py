"""
pawfect/models/plan.py

Plan model: a capability tier with its static entitlement bundle.
"""

from enum import Enum
from typing import FrozenSet, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNLIMITED = "unlimited"

Cap = Union[int, Literal["unlimited"]]


class PlanTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    ELITE = "elite"


class FeatureFlag(str, Enum):
    UNLIMITED_SWIPES = "unlimited_swipes"
    SEE_WHO_LIKED_YOU = "see_who_liked_you"
    VIDEO_CALL = "video_call"
    ADVANCED_FILTER = "advanced_filter"
    READ_RECEIPT = "read_receipt"


def is_unlimited(cap: Cap) -> bool:
    return cap == UNLIMITED


def validate_cap(value):
    if value == UNLIMITED:
        return value
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"cap must be a non-negative int or '{UNLIMITED}'")
    if value < 0:
        raise ValueError("cap must be non-negative")
    return value


class Plan(BaseModel):
    """
    Plan represents a capability tier from the plan catalog.

    Plans carry no pricing; the catalog is reference data and is never
    written by the entitlement core.
    """
    model_config = ConfigDict(frozen=True)

    plan_id: str
    tier: PlanTier
    name: str
    is_default: bool = False
    features: FrozenSet[FeatureFlag] = frozenset()
    swipe_daily_cap: Cap = 0
    super_likes_per_day: int = Field(default=0, ge=0)
    boosts_per_week: int = Field(default=0, ge=0)
    adoption_listing_limit: int = Field(default=0, ge=0)

    @field_validator("swipe_daily_cap")
    @classmethod
    def _check_swipe_cap(cls, value):
        return validate_cap(value)
