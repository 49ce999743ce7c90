import asyncio
import logging
from typing import List, Optional

from pawfect.core.config import settings
from pawfect.core.errors import StoreUnavailableError
from pawfect.core.store import KeyValueStore
from pawfect.models.audit import AuditEntry

logger = logging.getLogger(__name__)

AUDIT_KEY = "audit:entries"


class AuditLog:
    """Append-only audit trail persisted in the KV store.

    There is no update or delete path. Entries that cannot be persisted
    are kept in a process-local buffer and retried on the next append.
    """

    def __init__(self, store: KeyValueStore, *, enabled: Optional[bool] = None):
        self._store = store
        self._enabled = settings.AUDIT_ENABLED if enabled is None else enabled
        self._lock = asyncio.Lock()
        self._buffer: List[dict] = []  # Fallback buffer when the store is unavailable

    async def append(self, entry: AuditEntry) -> None:
        if not self._enabled:
            return
        async with self._lock:
            pending = self._buffer + [entry.model_dump(mode="json")]
            try:
                existing = await self._store.get(AUDIT_KEY) or []
                await self._store.set(AUDIT_KEY, existing + pending)
            except StoreUnavailableError as exc:
                logger.warning(
                    "Audit event write failed, buffering",
                    extra={"audit_id": entry.id, "buffered": len(pending), "error": str(exc)},
                )
                self._buffer = pending
                return
            self._buffer = []

    async def entries(
        self,
        *,
        target_user_id: Optional[str] = None,
        target_subscription_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEntry]:
        raw = await self._store.get(AUDIT_KEY) or []
        result = [AuditEntry.model_validate(item) for item in raw + self._buffer]
        if target_user_id is not None:
            result = [e for e in result if e.target_user_id == target_user_id]
        if target_subscription_id is not None:
            result = [e for e in result if e.target_subscription_id == target_subscription_id]
        if limit is not None:
            result = result[-limit:]
        return result

    def buffered(self) -> int:
        return len(self._buffer)
