"""
pawfect/features/usage/service.py

Usage accounting for metered actions.

Handles:
- Today's usage counter (daily swipes/super likes, weekly boosts)
- Pure limit checks against resolved entitlements
- Exactly-once increments keyed by caller operation ids
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pawfect.core.clock import Clock, SystemClock, day_key, days_of_week_before, week_key
from pawfect.core.config import settings
from pawfect.core.errors import ValidationError
from pawfect.core.locks import KeyedLock
from pawfect.core.store import KeyValueStore
from pawfect.features.entitlements.service import EntitlementResolver
from pawfect.features.usage.consumables import ConsumableLedger
from pawfect.models.entitlement import Entitlements
from pawfect.models.plan import Cap, is_unlimited
from pawfect.models.usage import (
    CONSUMABLE_FOR_ACTION,
    ActionDecision,
    MeteredAction,
    UsageCounter,
    UsageResult,
)


logger = logging.getLogger(__name__)

_DAY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Operation ids kept in the daily record for replay once markers expire
MAX_RECORDED_OPERATIONS = 200

LIMIT_REASONS = {
    MeteredAction.SWIPE: "Daily swipe limit reached",
    MeteredAction.SUPER_LIKE: "Daily super like limit reached",
    MeteredAction.BOOST: "Weekly boost limit reached",
}


def usage_key(user_id: str, day: str) -> str:
    return f"usage:{user_id}:{day}"


def operation_marker_key(user_id: str, operation_id: str) -> str:
    return f"usage:{user_id}:{operation_id}"


def _metered(action: Union[MeteredAction, str]) -> MeteredAction:
    try:
        return MeteredAction(action)
    except ValueError as exc:
        raise ValidationError(f"Unknown metered action: {action}") from exc


def recorded_operations(record: Optional[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    """Operation id -> action applied, oldest first."""
    if not record:
        return {}
    ops = record.get("operations") or {}
    if isinstance(ops, list):
        return {op: None for op in ops}
    return dict(ops)


def cap_for(entitlements: Entitlements, action: MeteredAction) -> Cap:
    if action == MeteredAction.SWIPE:
        return entitlements.swipe_daily_cap
    if action == MeteredAction.SUPER_LIKE:
        return entitlements.super_likes_per_day
    return entitlements.boosts_per_week


def count_for(usage: UsageCounter, action: MeteredAction) -> int:
    if action == MeteredAction.SWIPE:
        return usage.swipes
    if action == MeteredAction.SUPER_LIKE:
        return usage.super_likes
    return usage.boosts_this_week


def check_usage_within_limits(
    entitlements: Entitlements,
    usage: UsageCounter,
    action: Union[MeteredAction, str],
) -> ActionDecision:
    """Pure limit check; never mutates anything."""
    action = _metered(action)
    cap = cap_for(entitlements, action)
    if is_unlimited(cap):
        return ActionDecision(allowed=True)

    used = count_for(usage, action)
    if used >= cap:
        kind = CONSUMABLE_FOR_ACTION.get(action)
        if kind and entitlements.consumable_balance(kind) > 0:
            return ActionDecision(allowed=True, reason="consumable", limit=cap, remaining=0)
        return ActionDecision(allowed=False, reason=LIMIT_REASONS[action], limit=cap, remaining=0)
    return ActionDecision(allowed=True, limit=cap, remaining=cap - used)


class UsageCounterStore:
    """Owns usage records and idempotency markers.

    Increments for one user are serialized, so a check-and-increment near
    the cap admits exactly one caller.
    """

    def __init__(
        self,
        store: KeyValueStore,
        resolver: EntitlementResolver,
        *,
        clock: Optional[Clock] = None,
        consumables: Optional[ConsumableLedger] = None,
        locks: Optional[KeyedLock] = None,
        idempotency_ttl_seconds: Optional[int] = None,
    ):
        self._store = store
        self._resolver = resolver
        self._clock = clock or SystemClock()
        self._consumables = consumables
        self._locks = locks or KeyedLock()
        self._idempotency_ttl = idempotency_ttl_seconds or settings.USAGE_IDEMPOTENCY_TTL_SECONDS

    async def get_usage_counter(self, user_id: str) -> UsageCounter:
        now = self._clock.now()
        today = day_key(now)
        record = await self._store.get(usage_key(user_id, today))
        return await self._counter_from(user_id, now, record)

    async def _counter_from(self, user_id: str, now: datetime, record: Optional[Dict[str, Any]]) -> UsageCounter:
        today = day_key(now)
        week = week_key(now)
        swipes = super_likes = boosts = 0

        if record:
            if record.get("day", today) == today:
                swipes = int(record.get("swipes", 0))
                super_likes = int(record.get("super_likes", 0))
            if record.get("week") == week:
                boosts = int(record.get("boosts_this_week", 0))
        else:
            boosts = await self._carried_boosts(user_id, today, week)

        return UsageCounter(
            user_id=user_id,
            day=today,
            week=week,
            swipes=swipes,
            super_likes=super_likes,
            boosts_this_week=boosts,
            updated_at=now,
        )

    async def _carried_boosts(self, user_id: str, today: str, week: str) -> int:
        # The most recent record earlier this week holds the running total
        for day in days_of_week_before(today):
            record = await self._store.get(usage_key(user_id, day))
            if record:
                if record.get("week") == week:
                    return int(record.get("boosts_this_week", 0))
                return 0
        return 0

    async def check_limit(self, user_id: str, action: Union[MeteredAction, str]) -> ActionDecision:
        entitlements = await self._resolver.get_user_entitlements(user_id)
        usage = await self.get_usage_counter(user_id)
        return check_usage_within_limits(entitlements, usage, action)

    async def increment_usage(
        self,
        user_id: str,
        action: Union[MeteredAction, str],
        operation_id: Optional[str] = None,
    ) -> UsageResult:
        """Commit one unit of a metered action.

        With an operation_id, a repeat of an already applied operation returns
        the original result (replayed=True) without incrementing again.
        """
        action = _metered(action)
        if operation_id is not None:
            operation_id = str(operation_id).strip()
            if not operation_id or _DAY_PATTERN.match(operation_id):
                raise ValidationError("operation_id must be a non-empty token that is not a date")

        async with self._locks.hold(user_id):
            now = self._clock.now()
            today = day_key(now)
            record = await self._store.get(usage_key(user_id, today))

            if operation_id:
                replay = await self._find_replay(user_id, action, operation_id, now, record)
                if replay is not None:
                    return replay

            entitlements = await self._resolver.get_user_entitlements(user_id)
            usage = await self._counter_from(user_id, now, record)
            cap = cap_for(entitlements, action)
            used = count_for(usage, action)
            unlimited = is_unlimited(cap)

            consumable_used = False
            if not unlimited and used >= cap:
                kind = CONSUMABLE_FOR_ACTION.get(action)
                if kind and self._consumables is not None and await self._consumables.redeem(user_id, kind):
                    consumable_used = True
                else:
                    logger.warning(
                        "[usage] LIMIT_REACHED",
                        extra={"user_id": user_id, "action": action.value, "limit": cap, "current_usage": used},
                    )
                    return UsageResult(success=False, remaining=0, limit=cap)

            counts = {
                MeteredAction.SWIPE: usage.swipes,
                MeteredAction.SUPER_LIKE: usage.super_likes,
                MeteredAction.BOOST: usage.boosts_this_week,
            }
            counts[action] += 1

            operations = {}
            if record and record.get("day", today) == today:
                operations = recorded_operations(record)
            if operation_id:
                operations[operation_id] = action.value
                if len(operations) > MAX_RECORDED_OPERATIONS:
                    operations = dict(list(operations.items())[-MAX_RECORDED_OPERATIONS:])

            try:
                await self._store.set(
                    usage_key(user_id, today),
                    {
                        "day": today,
                        "week": usage.week,
                        "swipes": counts[MeteredAction.SWIPE],
                        "super_likes": counts[MeteredAction.SUPER_LIKE],
                        "boosts_this_week": counts[MeteredAction.BOOST],
                        "operations": operations,
                        "updated_at": now.isoformat(),
                    },
                )
            except Exception:
                if consumable_used:
                    await self._refund_consumable(user_id, action)
                raise

            result = UsageResult(
                success=True,
                remaining=None if unlimited else max(0, cap - counts[action]),
                limit=None if unlimited else cap,
                consumable_used=consumable_used,
            )

            if operation_id:
                await self._store.set(
                    operation_marker_key(user_id, operation_id),
                    {
                        "action": action.value,
                        "applied_at": now.isoformat(),
                        "day": today,
                        "result": result.model_dump(),
                    },
                    ttl_seconds=self._idempotency_ttl,
                )

            logger.info(
                "[usage] incremented",
                extra={
                    "user_id": user_id,
                    "action": action.value,
                    "new_count": counts[action],
                    "limit": None if unlimited else cap,
                    "operation_id": operation_id,
                    "consumable_used": consumable_used,
                },
            )
            return result

    async def _refund_consumable(self, user_id: str, action: MeteredAction) -> None:
        kind = CONSUMABLE_FOR_ACTION[action]
        try:
            await self._consumables.add(user_id, kind, 1)
        except Exception as exc:
            logger.error(
                "[usage] consumable refund failed after usage write error",
                extra={"user_id": user_id, "kind": kind, "error": str(exc)},
            )
            return
        logger.warning(
            "[usage] usage write failed, consumable returned",
            extra={"user_id": user_id, "kind": kind},
        )

    def _check_same_action(self, operation_id: str, action: MeteredAction, applied: Optional[str]) -> None:
        if applied is not None and applied != action.value:
            raise ValidationError(
                f"operation_id {operation_id} was already used for {applied}, not {action.value}"
            )

    async def _find_replay(
        self,
        user_id: str,
        action: MeteredAction,
        operation_id: str,
        now: datetime,
        record: Optional[Dict[str, Any]],
    ) -> Optional[UsageResult]:
        marker = await self._store.get(operation_marker_key(user_id, operation_id))
        if marker:
            self._check_same_action(operation_id, action, marker.get("action"))
            logger.info(
                "[usage] idempotent replay",
                extra={"user_id": user_id, "operation_id": operation_id, "applied_at": marker.get("applied_at")},
            )
            stored = dict(marker.get("result") or {"success": True})
            stored["replayed"] = True
            return UsageResult(**stored)

        # Marker expired or was never written; today's record still lists the id
        operations = recorded_operations(record)
        if operation_id in operations:
            self._check_same_action(operation_id, action, operations[operation_id])
            entitlements = await self._resolver.get_user_entitlements(user_id)
            usage = await self._counter_from(user_id, now, record)
            cap = cap_for(entitlements, action)
            logger.info(
                "[usage] idempotent replay from usage record",
                extra={"user_id": user_id, "operation_id": operation_id},
            )
            if is_unlimited(cap):
                return UsageResult(success=True, replayed=True)
            return UsageResult(
                success=True,
                remaining=max(0, cap - count_for(usage, action)),
                limit=cap,
                replayed=True,
            )
        return None
