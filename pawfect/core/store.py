"""
Key-value persistence boundary.

The core only ever talks to a KeyValueStore: an async get/set/delete over
JSON documents. Keys in use:

- entitlements:{user_id}            plan assignment
- usage:{user_id}:{day}             daily usage record
- usage:{user_id}:{operation_id}    idempotency marker
- consumables:{user_id}             prepaid consumable balances
- adoption-listings                 adoption listing index
- audit:entries                     append-only audit log
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Protocol, Tuple

from pawfect.core.clock import Clock, SystemClock
from pawfect.core.config import Settings, settings
from pawfect.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Async JSON document store.

    Implementations should raise StoreUnavailableError when the backend
    cannot be reached; callers that must not fail treat any error the same.
    """

    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when absent or expired."""
        ...

    async def set(self, key: str, value: Any, *, ttl_seconds: Optional[int] = None) -> None:
        """Store value, optionally expiring after ttl_seconds."""
        ...

    async def delete(self, key: str) -> None:
        ...


def _roundtrip(value: Any) -> Any:
    try:
        return json.loads(json.dumps(value))
    except (TypeError, ValueError) as exc:
        raise StoreUnavailableError(f"Value is not JSON serializable: {exc}") from exc


class InMemoryKeyValueStore:
    """Process-local store with clock-driven expiry.

    Values are copied through JSON on the way in and out so callers cannot
    mutate stored state by holding a reference.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()
        self._data: Dict[str, Tuple[Any, Optional[datetime]]] = {}

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[datetime]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock.now():
            self._data.pop(key, None)
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live(key)
        if entry is None:
            return None
        return _roundtrip(entry[0])

    async def set(self, key: str, value: Any, *, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None
        if ttl_seconds is not None:
            expires_at = self._clock.now() + timedelta(seconds=ttl_seconds)
        self._data[key] = (_roundtrip(value), expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list:
        """Live keys (testing/debugging only)."""
        return [k for k in list(self._data) if self._live(k) is not None]


class RedisKeyValueStore:
    """Redis-backed store using the redis-py asyncio client."""

    def __init__(self, client, *, namespace: str = "pawfect"):
        self._client = client
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisKeyValueStore":
        from redis import asyncio as aioredis

        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    async def get(self, key: str) -> Optional[Any]:
        from redis.exceptions import RedisError

        try:
            raw = await self._client.get(self._key(key))
        except RedisError as exc:
            logger.warning("kv.get failed", extra={"key": key, "error": str(exc)})
            raise StoreUnavailableError(f"Redis get failed for {key}") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise StoreUnavailableError(f"Corrupt value stored at {key}") from exc

    async def set(self, key: str, value: Any, *, ttl_seconds: Optional[int] = None) -> None:
        from redis.exceptions import RedisError

        payload = json.dumps(value)
        try:
            await self._client.set(self._key(key), payload, ex=ttl_seconds)
        except RedisError as exc:
            logger.warning("kv.set failed", extra={"key": key, "error": str(exc)})
            raise StoreUnavailableError(f"Redis set failed for {key}") from exc

    async def delete(self, key: str) -> None:
        from redis.exceptions import RedisError

        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            logger.warning("kv.delete failed", extra={"key": key, "error": str(exc)})
            raise StoreUnavailableError(f"Redis delete failed for {key}") from exc


def build_store(settings_obj: Optional[Settings] = None, clock: Optional[Clock] = None) -> KeyValueStore:
    """Construct the configured KV backend."""
    cfg = settings_obj or settings
    backend = str(cfg.KV_BACKEND).lower()
    if backend == "redis":
        if not cfg.REDIS_URL:
            raise RuntimeError("KV_BACKEND=redis requires REDIS_URL")
        return RedisKeyValueStore.from_url(cfg.REDIS_URL)
    return InMemoryKeyValueStore(clock=clock)
