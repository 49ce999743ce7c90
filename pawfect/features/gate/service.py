"""
pawfect/features/gate/service.py

Action authorization gate.

Answers "can this user do X now?" without side effects, and offers a
separate commit step for metered actions. Denials are results, not errors.
"""

import logging
from typing import Optional, Union

from pawfect.core.errors import ValidationError
from pawfect.features.entitlements.service import EntitlementResolver
from pawfect.features.gate.listings import ListingDirectory
from pawfect.features.usage.service import UsageCounterStore, check_usage_within_limits
from pawfect.models.plan import FeatureFlag
from pawfect.models.usage import ActionDecision, GateAction, MeteredAction, UsageResult


logger = logging.getLogger(__name__)

FEATURE_FOR_ACTION = {
    GateAction.SEE_WHO_LIKED: FeatureFlag.SEE_WHO_LIKED_YOU,
    GateAction.VIDEO_CALL: FeatureFlag.VIDEO_CALL,
    GateAction.ADVANCED_FILTER: FeatureFlag.ADVANCED_FILTER,
    GateAction.READ_RECEIPT: FeatureFlag.READ_RECEIPT,
}

METERED_ACTIONS = {
    GateAction.SWIPE: MeteredAction.SWIPE,
    GateAction.SUPER_LIKE: MeteredAction.SUPER_LIKE,
    GateAction.BOOST: MeteredAction.BOOST,
}


class ActionGate:
    def __init__(
        self,
        resolver: EntitlementResolver,
        usage: UsageCounterStore,
        *,
        listings: Optional[ListingDirectory] = None,
    ):
        self._resolver = resolver
        self._usage = usage
        self._listings = listings

    async def can_perform_action(self, user_id: str, action: Union[GateAction, str]) -> ActionDecision:
        try:
            action = GateAction(action)
        except ValueError:
            return ActionDecision(allowed=False, reason="Unknown action")

        entitlements = await self._resolver.get_user_entitlements(user_id)

        if action in METERED_ACTIONS:
            try:
                usage = await self._usage.get_usage_counter(user_id)
            except Exception as exc:
                logger.warning(
                    "[gate] usage unavailable, denying",
                    extra={"user_id": user_id, "action": action.value, "error": str(exc)},
                )
                return ActionDecision(allowed=False, reason="Usage temporarily unavailable")
            return check_usage_within_limits(entitlements, usage, METERED_ACTIONS[action])

        if action in FEATURE_FOR_ACTION:
            if entitlements.has(FEATURE_FOR_ACTION[action]):
                return ActionDecision(allowed=True)
            return ActionDecision(allowed=False, reason="Upgrade required")

        # adoption_listing
        limit = entitlements.adoption_listing_limit
        if self._listings is None:
            active = 0
        else:
            try:
                active = await self._listings.count_active_listings(user_id)
            except Exception as exc:
                logger.warning(
                    "[gate] listings unavailable, denying",
                    extra={"user_id": user_id, "error": str(exc)},
                )
                return ActionDecision(allowed=False, reason="Listings temporarily unavailable", limit=limit)
        if active >= limit:
            return ActionDecision(
                allowed=False,
                reason="Adoption listing limit reached",
                limit=limit,
                remaining=0,
            )
        return ActionDecision(allowed=True, limit=limit, remaining=limit - active)

    async def commit_action(
        self,
        user_id: str,
        action: Union[GateAction, str],
        operation_id: Optional[str] = None,
    ) -> UsageResult:
        """Commit a metered action previously cleared by can_perform_action."""
        try:
            metered = METERED_ACTIONS[GateAction(action)]
        except (ValueError, KeyError) as exc:
            raise ValidationError(f"Action {action} is not metered") from exc
        return await self._usage.increment_usage(user_id, metered, operation_id)
