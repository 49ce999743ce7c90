"""
pawfect/models/usage.py

Usage counters and the results handed back to gate/metering callers.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MeteredAction(str, Enum):
    SWIPE = "swipe"
    SUPER_LIKE = "super_like"
    BOOST = "boost"


class GateAction(str, Enum):
    SWIPE = "swipe"
    SUPER_LIKE = "super_like"
    BOOST = "boost"
    SEE_WHO_LIKED = "see_who_liked"
    VIDEO_CALL = "video_call"
    ADVANCED_FILTER = "advanced_filter"
    READ_RECEIPT = "read_receipt"
    ADOPTION_LISTING = "adoption_listing"


# Consumable kinds that can stand in for an exhausted plan cap
CONSUMABLE_FOR_ACTION = {
    MeteredAction.SUPER_LIKE: "super_likes",
    MeteredAction.BOOST: "boosts",
}


class UsageCounter(BaseModel):
    """
    Today's usage for one user.

    swipes/super_likes are daily; boosts_this_week belongs to `week` and
    reads as zero once `week` is no longer the current week.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    day: str
    week: str
    swipes: int = Field(default=0, ge=0)
    super_likes: int = Field(default=0, ge=0)
    boosts_this_week: int = Field(default=0, ge=0)
    updated_at: datetime


class UsageResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    remaining: Optional[int] = None
    limit: Optional[int] = None
    replayed: bool = False
    consumable_used: bool = False


class ActionDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[str] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None
