"""
Billing API protocol.

Defines the interface to the external billing provider. The provider is
the source of truth for subscription records; the core reads and writes
them only through this boundary and never keeps its own copy.
"""
from typing import Any, Dict, List, Optional, Protocol

from pawfect.models.audit import AuditEntry
from pawfect.models.subscription import (
    BillingIssue,
    RevenueMetrics,
    Subscription,
    UserEntitlementsRecord,
)


class BillingApi(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Subscription records (create, list, update)
    - Plan tier assignment (entitlements)
    - Consumable grants
    - Billing issues, audit history and revenue reporting
    """

    async def get_user_subscription(self, user_id: str) -> Optional[Subscription]:
        """Return the user's authoritative (non-canceled) subscription, if any."""
        ...

    async def create_subscription(
        self,
        user_id: str,
        plan_id: str,
        store: str,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        is_comp: bool = False,
        comp_reason: Optional[str] = None,
    ) -> Subscription:
        """
        Create an active subscription.

        Raises:
            BillingApiError: If the provider rejects the request
        """
        ...

    async def get_all_subscriptions(self) -> List[Subscription]:
        """Every subscription, including historical ones."""
        ...

    async def update_subscription(self, subscription_id: str, updates: Dict[str, Any]) -> Subscription:
        """
        Apply a partial update and return the new record.

        Raises:
            SubscriptionNotFoundError: If subscription_id is unknown
        """
        ...

    async def get_user_entitlements(self, user_id: str) -> UserEntitlementsRecord:
        ...

    async def update_entitlements(
        self,
        user_id: str,
        plan_tier: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> UserEntitlementsRecord:
        """Assign a plan tier; must propagate to the store the resolver reads."""
        ...

    async def add_consumable(self, user_id: str, kind: str, quantity: int = 1) -> int:
        """Credit consumables; returns the new balance."""
        ...

    async def redeem_consumable(self, user_id: str, kind: str) -> bool:
        ...

    async def create_billing_issue(
        self,
        user_id: str,
        kind: str,
        details: Optional[Dict[str, Any]] = None,
        subscription_id: Optional[str] = None,
    ) -> BillingIssue:
        ...

    async def get_audit_logs(self, limit: Optional[int] = None) -> List[AuditEntry]:
        ...

    async def get_revenue_metrics(self) -> RevenueMetrics:
        ...
