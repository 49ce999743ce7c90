"""
pawfect/features/usage/consumables.py

Prepaid consumable balances (boosts, super likes bought outside a plan).
"""

import logging
from typing import Dict, Optional

from pawfect.core.errors import ValidationError
from pawfect.core.locks import KeyedLock
from pawfect.core.store import KeyValueStore

logger = logging.getLogger(__name__)

CONSUMABLE_KINDS = ("boosts", "super_likes")


def _key(user_id: str) -> str:
    return f"consumables:{user_id}"


def _check_kind(kind: str) -> str:
    if kind not in CONSUMABLE_KINDS:
        raise ValidationError(f"Unknown consumable kind: {kind}")
    return kind


class ConsumableLedger:
    def __init__(self, store: KeyValueStore, *, locks: Optional[KeyedLock] = None):
        self._store = store
        self._locks = locks or KeyedLock()

    async def balances(self, user_id: str) -> Dict[str, int]:
        raw = await self._store.get(_key(user_id)) or {}
        return {kind: max(0, int(raw.get(kind, 0))) for kind in CONSUMABLE_KINDS}

    async def add(self, user_id: str, kind: str, quantity: int = 1) -> int:
        """Credit quantity units; returns the new balance."""
        _check_kind(kind)
        if quantity <= 0:
            raise ValidationError("quantity must be positive")
        async with self._locks.hold(user_id):
            current = await self.balances(user_id)
            current[kind] += quantity
            await self._store.set(_key(user_id), current)
        logger.info(
            "[consumables] credited",
            extra={"user_id": user_id, "kind": kind, "quantity": quantity, "balance": current[kind]},
        )
        return current[kind]

    async def redeem(self, user_id: str, kind: str) -> bool:
        """Spend one unit. False when the balance is already zero."""
        _check_kind(kind)
        async with self._locks.hold(user_id):
            current = await self.balances(user_id)
            if current[kind] <= 0:
                return False
            current[kind] -= 1
            await self._store.set(_key(user_id), current)
        logger.info(
            "[consumables] redeemed",
            extra={"user_id": user_id, "kind": kind, "balance": current[kind]},
        )
        return True
