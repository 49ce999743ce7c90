"""Adoption listing counts used by the listing-limit gate."""

from typing import Protocol

from pawfect.core.store import KeyValueStore

LISTINGS_KEY = "adoption-listings"


class ListingDirectory(Protocol):
    async def count_active_listings(self, user_id: str) -> int:
        ...


class StoredListingDirectory:
    """Reads the shared adoption listing index: [{"user_id", "status", ...}]."""

    def __init__(self, store: KeyValueStore):
        self._store = store

    async def count_active_listings(self, user_id: str) -> int:
        listings = await self._store.get(LISTINGS_KEY) or []
        return sum(
            1
            for listing in listings
            if listing.get("user_id") == user_id and listing.get("status") == "active"
        )
