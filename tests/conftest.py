"""Shared fixtures: an in-memory store with injectable failures and a wired service."""

from typing import Any

import pytest

from parts_ledger.cache.query_cache import NullQueryCache
from parts_ledger.core.service import InventoryService, create_inventory_service
from parts_ledger.shared.config import Settings
from parts_ledger.shared.errors import StoreUnavailableError
from parts_ledger.store.base import Collection, ListQuery, StoreRecord
from parts_ledger.store.memory_store import InMemoryListStore


class FlakyListStore(InMemoryListStore):
    """In-memory store that fails a chosen call.

    ``fail_after(Collection.TRANSACTIONS, "create", 1)`` lets one create on
    Transactions succeed and fails the next one; later calls succeed again.
    """

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._failures: dict[tuple[Collection, str], list[Any]] = {}
        self.calls: list[tuple[str, str]] = []

    def fail_after(
        self,
        collection: Collection,
        operation: str,
        successes: int = 0,
        error: Exception | None = None,
    ) -> None:
        self._failures[(collection, operation)] = [
            successes,
            error or StoreUnavailableError(f"{operation} on {collection.value} failed", 503),
        ]

    def _maybe_fail(self, collection: Collection, operation: str) -> None:
        self.calls.append((collection.value, operation))
        failure = self._failures.get((collection, operation))
        if failure is None:
            return
        if failure[0] == 0:
            del self._failures[(collection, operation)]
            raise failure[1]
        failure[0] -= 1

    async def list(self, collection: Collection, query: ListQuery | None = None) -> list[StoreRecord]:
        self._maybe_fail(collection, "list")
        return await super().list(collection, query)

    async def get(self, collection: Collection, item_id: str) -> StoreRecord | None:
        self._maybe_fail(collection, "get")
        return await super().get(collection, item_id)

    async def create(self, collection: Collection, fields: dict[str, Any]) -> StoreRecord:
        self._maybe_fail(collection, "create")
        return await super().create(collection, fields)

    async def update(
        self,
        collection: Collection,
        item_id: str,
        fields: dict[str, Any],
        etag: str | None = None,
    ) -> StoreRecord:
        self._maybe_fail(collection, "update")
        return await super().update(collection, item_id, fields, etag)


@pytest.fixture
def settings() -> Settings:
    return Settings(store_provider="memory", cache_enabled=False)


@pytest.fixture
def store(settings: Settings) -> FlakyListStore:
    return FlakyListStore(settings)


@pytest.fixture
def service(settings: Settings, store: FlakyListStore) -> InventoryService:
    return create_inventory_service(settings, store=store, cache=NullQueryCache())
