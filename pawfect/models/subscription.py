"""
pawfect/models/subscription.py

Subscription records (owned by the billing API) and the immutable events
emitted when they change.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"


class SubscriptionStore(str, Enum):
    WEB = "web"
    IOS = "ios"
    ANDROID = "android"
    COMP = "comp"


class SubscriptionEventType(str, Enum):
    CREATED = "created"
    CANCEL_SCHEDULED = "cancel_scheduled"
    CANCELED = "canceled"
    REFUNDED = "refunded"
    COMP_GRANTED = "comp_granted"


class Subscription(BaseModel):
    """
    Subscription lifecycle:
    active -> active(cancel_at_period_end=True) -> canceled (period end, external)
    active -> canceled (hard cancel)
    """
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    plan_id: str
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    store: SubscriptionStore
    start_date: datetime
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    is_comp: bool = False
    comp_reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_live(self) -> bool:
        return self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING, SubscriptionStatus.PAST_DUE)


class SubscriptionEvent(BaseModel):
    """Notification/analytics fact; never authoritative state."""
    model_config = ConfigDict(frozen=True)

    id: str
    subscription_id: str
    user_id: str
    type: SubscriptionEventType
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class UserEntitlementsRecord(BaseModel):
    """Billing-side view of a user's plan tier and grants."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    plan_tier: str
    entitlements: list = Field(default_factory=list)
    consumables: Dict[str, int] = Field(default_factory=dict)
    updated_at: datetime


class BillingIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    subscription_id: Optional[str] = None
    kind: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    resolved: bool = False


class RevenueMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    active_subscriptions: int = 0
    canceled_subscriptions: int = 0
    comp_subscriptions: int = 0
    pending_cancellations: int = 0
    by_plan: Dict[str, int] = Field(default_factory=dict)
    refunded_amount: float = 0.0
