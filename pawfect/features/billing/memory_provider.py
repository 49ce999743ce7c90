"""
In-process billing API.

Implements the BillingApi protocol for local development and tests. Plan
tier changes are written to the `entitlements:{user_id}` assignment that
the entitlement resolver reads, so downgrades take effect immediately.
"""
import logging
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from pawfect.core.clock import Clock, SystemClock
from pawfect.core.errors import BillingApiError, PlanNotFoundError, SubscriptionNotFoundError, ValidationError
from pawfect.core.store import KeyValueStore
from pawfect.features.audit.service import AuditLog
from pawfect.features.entitlements.service import entitlements_key
from pawfect.features.plans.service import PlanCatalog, get_plan_catalog
from pawfect.features.usage.consumables import ConsumableLedger
from pawfect.models.audit import AuditEntry
from pawfect.models.plan import PlanTier
from pawfect.models.subscription import (
    BillingIssue,
    RevenueMetrics,
    Subscription,
    SubscriptionStatus,
    SubscriptionStore,
    UserEntitlementsRecord,
)

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "status",
    "cancel_at_period_end",
    "current_period_start",
    "current_period_end",
    "metadata",
    "plan_id",
}


def _period_for(plan_id: str) -> timedelta:
    return timedelta(days=365) if plan_id.endswith("_yearly") else timedelta(days=30)


class InMemoryBillingApi:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Optional[Clock] = None,
        catalog: Optional[PlanCatalog] = None,
        consumables: Optional[ConsumableLedger] = None,
        audit_log: Optional[AuditLog] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._catalog = catalog or get_plan_catalog()
        self._consumables = consumables or ConsumableLedger(store)
        self._audit_log = audit_log
        self._id_factory = id_factory or (lambda: f"sub_{uuid.uuid4().hex[:12]}")
        self._subscriptions: Dict[str, Subscription] = {}
        self._issues: List[BillingIssue] = []

    async def get_user_subscription(self, user_id: str) -> Optional[Subscription]:
        live = [s for s in self._subscriptions.values() if s.user_id == user_id and s.is_live]
        if not live:
            return None
        return max(live, key=lambda s: s.start_date)

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
        if not self._catalog.has_plan(plan_id):
            raise BillingApiError(f"Unknown plan: {plan_id}", code="unknown_plan")
        try:
            channel = SubscriptionStore(store)
        except ValueError as exc:
            raise BillingApiError(f"Unsupported store: {store}", code="unsupported_store") from exc

        now = self._clock.now()
        subscription = Subscription(
            id=self._id_factory(),
            user_id=user_id,
            plan_id=plan_id,
            status=SubscriptionStatus.ACTIVE,
            store=channel,
            start_date=now,
            current_period_start=now,
            current_period_end=now + _period_for(plan_id),
            is_comp=is_comp,
            comp_reason=comp_reason,
            metadata=dict(metadata or {}),
        )
        if subscription.id in self._subscriptions:
            raise BillingApiError(f"Duplicate subscription id: {subscription.id}", code="duplicate_subscription")
        self._subscriptions[subscription.id] = subscription
        logger.info(
            "[billing] subscription created",
            extra={"user_id": user_id, "subscription_id": subscription.id, "plan_id": plan_id},
        )
        return subscription

    async def get_all_subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions.values())

    async def update_subscription(self, subscription_id: str, updates: Dict[str, Any]) -> Subscription:
        current = self._subscriptions.get(subscription_id)
        if current is None:
            raise SubscriptionNotFoundError(subscription_id)
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        updated = Subscription.model_validate({**current.model_dump(), **updates})
        self._subscriptions[subscription_id] = updated
        return updated

    async def get_user_entitlements(self, user_id: str) -> UserEntitlementsRecord:
        data = await self._store.get(entitlements_key(user_id)) or {}
        plan_id = data.get("plan", self._catalog.get_default_plan().plan_id)
        try:
            plan = self._catalog.get_plan(plan_id)
        except PlanNotFoundError:
            plan = self._catalog.get_default_plan()
        return UserEntitlementsRecord(
            user_id=user_id,
            plan_tier=plan.tier.value,
            entitlements=sorted(f.value for f in plan.features),
            consumables=await self._consumables.balances(user_id),
            updated_at=data.get("updated_at") or self._clock.now(),
        )

    async def update_entitlements(
        self,
        user_id: str,
        plan_tier: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> UserEntitlementsRecord:
        try:
            tier = PlanTier(plan_tier)
            plan = self._catalog.plan_for_tier(tier)
        except (ValueError, PlanNotFoundError) as exc:
            raise BillingApiError(f"Unknown plan tier: {plan_tier}", code="unknown_tier") from exc
        await self._store.set(
            entitlements_key(user_id),
            {
                "plan": plan.plan_id,
                "updated_at": self._clock.now().isoformat(),
                "reason": reason,
                "actor_id": actor_id,
            },
        )
        logger.info(
            "[billing] entitlements updated",
            extra={"user_id": user_id, "plan_tier": tier.value, "reason": reason, "actor_id": actor_id},
        )
        return await self.get_user_entitlements(user_id)

    async def add_consumable(self, user_id: str, kind: str, quantity: int = 1) -> int:
        return await self._consumables.add(user_id, kind, quantity)

    async def redeem_consumable(self, user_id: str, kind: str) -> bool:
        return await self._consumables.redeem(user_id, kind)

    async def create_billing_issue(
        self,
        user_id: str,
        kind: str,
        details: Optional[Dict[str, Any]] = None,
        subscription_id: Optional[str] = None,
    ) -> BillingIssue:
        issue = BillingIssue(
            id=f"iss_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            subscription_id=subscription_id,
            kind=kind,
            details=dict(details or {}),
            created_at=self._clock.now(),
        )
        self._issues.append(issue)
        logger.warning(
            "[billing] billing issue opened",
            extra={"user_id": user_id, "subscription_id": subscription_id, "kind": kind},
        )
        return issue

    async def get_audit_logs(self, limit: Optional[int] = None) -> List[AuditEntry]:
        if self._audit_log is None:
            return []
        return await self._audit_log.entries(limit=limit)

    async def get_revenue_metrics(self) -> RevenueMetrics:
        subs = list(self._subscriptions.values())
        by_plan: Dict[str, int] = {}
        for sub in subs:
            if sub.is_live:
                by_plan[sub.plan_id] = by_plan.get(sub.plan_id, 0) + 1
        refunded = 0.0
        for entry in await self.get_audit_logs():
            if entry.action == "refund":
                refunded += float(entry.details.get("amount", 0))
        return RevenueMetrics(
            active_subscriptions=sum(1 for s in subs if s.is_live),
            canceled_subscriptions=sum(1 for s in subs if s.status == SubscriptionStatus.CANCELED),
            comp_subscriptions=sum(1 for s in subs if s.is_comp and s.is_live),
            pending_cancellations=sum(1 for s in subs if s.is_live and s.cancel_at_period_end),
            by_plan=by_plan,
            refunded_amount=refunded,
        )
