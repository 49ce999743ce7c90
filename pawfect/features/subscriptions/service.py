"""
pawfect/features/subscriptions/service.py

Subscription lifecycle manager.

Handles:
- Creation (delegated to the billing API)
- Soft cancel (cancel_at_period_end) and hard cancel with downgrade to free
- Refund audit trail
- Complimentary grants
- Audit entries and subscription events (always logged at warning level)

Subscription records are owned by the billing API; this service keeps no
copy of its own.
"""

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from pawfect.core.clock import Clock, SystemClock
from pawfect.core.errors import PlanNotFoundError, SubscriptionNotFoundError, ValidationError
from pawfect.core.logging import get_actor_id, log_event
from pawfect.features.audit.service import AuditLog
from pawfect.features.billing.provider import BillingApi
from pawfect.features.plans.service import PlanCatalog, get_plan_catalog
from pawfect.models.audit import AuditEntry
from pawfect.models.plan import PlanTier
from pawfect.models.subscription import (
    Subscription,
    SubscriptionEvent,
    SubscriptionEventType,
    SubscriptionStatus,
    SubscriptionStore,
)


class SubscriptionService:
    def __init__(
        self,
        billing: BillingApi,
        *,
        audit_log: Optional[AuditLog] = None,
        catalog: Optional[PlanCatalog] = None,
        clock: Optional[Clock] = None,
        event_sink: Optional[Callable[[SubscriptionEvent], None]] = None,
    ):
        self._billing = billing
        self._audit_log = audit_log
        self._catalog = catalog or get_plan_catalog()
        self._clock = clock or SystemClock()
        self._event_sink = event_sink or (lambda event: None)

    def _now(self) -> datetime:
        return self._clock.now()

    async def get_user_subscription(self, user_id: str) -> Optional[Subscription]:
        return await self._billing.get_user_subscription(user_id)

    async def create_subscription(
        self,
        user_id: str,
        plan_id: str,
        store: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Subscription:
        """Create a subscription through the billing API.

        Entitlements are not touched here; they follow the plan assignment.
        """
        if not self._catalog.has_plan(plan_id):
            log_event("error", "subscription.create_failed", user_id=user_id, error_code="plan_not_found", extra={"plan_id": plan_id})
            raise PlanNotFoundError(plan_id)
        try:
            subscription = await self._billing.create_subscription(user_id, plan_id, store, metadata or {})
        except Exception as exc:
            log_event(
                "error",
                "subscription.create_failed",
                user_id=user_id,
                error_code=getattr(exc, "code", "billing_error"),
                extra={"plan_id": plan_id, "error": str(exc)},
            )
            raise

        self.create_subscription_event(
            subscription_id=subscription.id,
            user_id=user_id,
            type=SubscriptionEventType.CREATED,
            metadata={"plan_id": plan_id, "store": str(store)},
        )
        return subscription

    async def _find_subscription(self, subscription_id: str, operation: str) -> Subscription:
        subscriptions = await self._billing.get_all_subscriptions()
        for subscription in subscriptions:
            if subscription.id == subscription_id:
                return subscription
        log_event(
            "error",
            f"subscription.{operation}_failed",
            subscription_id=subscription_id,
            error_code="subscription_not_found",
        )
        raise SubscriptionNotFoundError(subscription_id)

    async def cancel_subscription(
        self,
        subscription_id: str,
        immediate: bool = False,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Subscription:
        """Cancel at period end (default) or immediately.

        Immediate cancellation also downgrades the user to the free tier,
        tagged with reason and actor_id.

        Raises:
            SubscriptionNotFoundError: unknown subscription_id (no mutation)
        """
        subscription = await self._find_subscription(subscription_id, "cancel")

        if immediate:
            updated = await self._billing.update_subscription(subscription_id, {"status": SubscriptionStatus.CANCELED.value})
            try:
                await self._billing.update_entitlements(subscription.user_id, PlanTier.FREE.value, reason, actor_id)
            except Exception as exc:
                await self._restore_after_failed_cancel(subscription, exc)
                raise
            event_type = SubscriptionEventType.CANCELED
        else:
            updated = await self._billing.update_subscription(subscription_id, {"cancel_at_period_end": True})
            event_type = SubscriptionEventType.CANCEL_SCHEDULED

        await self.log_audit(
            actor_user_id=actor_id,
            action="cancel",
            target_user_id=subscription.user_id,
            target_subscription_id=subscription_id,
            details={"immediate": immediate, "plan_id": subscription.plan_id},
            reason=reason,
        )
        self.create_subscription_event(
            subscription_id=subscription_id,
            user_id=subscription.user_id,
            type=event_type,
            metadata={"immediate": immediate, "reason": reason},
        )
        return updated

    async def _restore_after_failed_cancel(self, subscription: Subscription, exc: Exception) -> None:
        # The downgrade failed after the status flip; put the status back
        restored = True
        try:
            await self._billing.update_subscription(subscription.id, {"status": subscription.status.value})
        except Exception as restore_exc:
            restored = False
            log_event(
                "error",
                "subscription.cancel_restore_failed",
                user_id=subscription.user_id,
                subscription_id=subscription.id,
                error_code=getattr(restore_exc, "code", "billing_error"),
                extra={"error": str(restore_exc)},
            )
        log_event(
            "error",
            "subscription.cancel_failed",
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            error_code=getattr(exc, "code", "billing_error"),
            extra={
                "error": str(exc),
                "status_restored": restored,
                "previous_status": subscription.status.value,
            },
        )

    async def refund_subscription(
        self,
        subscription_id: str,
        amount: float,
        actor_id: str,
        reason: str,
    ) -> Subscription:
        """Record a refund. Subscription status is left as is.

        Raises:
            SubscriptionNotFoundError: unknown subscription_id
        """
        if amount is None or amount < 0:
            raise ValidationError("refund amount must be non-negative")
        subscription = await self._find_subscription(subscription_id, "refund")

        await self.log_audit(
            actor_user_id=actor_id,
            action="refund",
            target_user_id=subscription.user_id,
            target_subscription_id=subscription_id,
            details={"amount": amount, "reason": reason},
            reason=reason,
        )
        self.create_subscription_event(
            subscription_id=subscription_id,
            user_id=subscription.user_id,
            type=SubscriptionEventType.REFUNDED,
            metadata={"amount": amount},
        )
        return subscription

    async def grant_comp_subscription(
        self,
        user_id: str,
        plan_id: str,
        actor_id: str,
        reason: str,
    ) -> Subscription:
        """Grant a complimentary subscription and assign its tier."""
        if not reason:
            raise ValidationError("comp grants require a reason")
        plan = self._catalog.get_plan(plan_id)

        subscription = await self._billing.create_subscription(
            user_id,
            plan_id,
            SubscriptionStore.COMP.value,
            {"granted_by": actor_id},
            is_comp=True,
            comp_reason=reason,
        )
        await self._billing.update_entitlements(user_id, plan.tier.value, reason, actor_id)

        await self.log_audit(
            actor_user_id=actor_id,
            action="grant",
            target_user_id=user_id,
            target_subscription_id=subscription.id,
            details={"plan_id": plan_id, "tier": plan.tier.value},
            reason=reason,
        )
        self.create_subscription_event(
            subscription_id=subscription.id,
            user_id=user_id,
            type=SubscriptionEventType.COMP_GRANTED,
            metadata={"plan_id": plan_id},
        )
        return subscription

    async def log_audit(
        self,
        *,
        action: str,
        actor_user_id: Optional[str] = None,
        target_user_id: Optional[str] = None,
        target_subscription_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> AuditEntry:
        actor_user_id = actor_user_id or get_actor_id()
        entry = AuditEntry(
            id=f"aud_{uuid.uuid4().hex}",
            actor_user_id=actor_user_id,
            action=action,
            target_user_id=target_user_id,
            target_subscription_id=target_subscription_id,
            details=dict(details or {}),
            reason=reason,
            timestamp=self._now(),
        )
        # logged before persistence so the action is visible even if the write fails
        log_event(
            "warning",
            "audit.entry",
            user_id=target_user_id,
            subscription_id=target_subscription_id,
            event_type=action,
            extra={"audit_id": entry.id, "actor_user_id": actor_user_id, "reason": reason, "details": entry.details},
        )
        if self._audit_log is not None:
            await self._audit_log.append(entry)
        return entry

    def create_subscription_event(
        self,
        *,
        subscription_id: str,
        user_id: str,
        type: SubscriptionEventType,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SubscriptionEvent:
        event = SubscriptionEvent(
            id=f"evt_{uuid.uuid4().hex}",
            subscription_id=subscription_id,
            user_id=user_id,
            type=type,
            metadata=dict(metadata or {}),
            timestamp=self._now(),
        )
        log_event(
            "warning",
            "subscription.event",
            user_id=user_id,
            subscription_id=subscription_id,
            event_type=event.type.value,
            extra={"event_id": event.id, "metadata": event.metadata},
        )
        self._event_sink(event)
        return event
