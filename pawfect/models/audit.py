"""
pawfect/models/audit.py

AuditEntry: immutable record of an administrative or billing action.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditEntry(BaseModel):
    """
    Audit actions in use:
    - refund: refund issued against a subscription
    - cancel: soft or hard cancellation
    - grant: complimentary subscription granted
    - plan_change: entitlement tier changed on the user's behalf
    """
    model_config = ConfigDict(frozen=True)

    id: str
    actor_user_id: Optional[str] = None
    action: str
    target_user_id: Optional[str] = None
    target_subscription_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None
    timestamp: datetime
