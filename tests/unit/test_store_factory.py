"""Unit tests for list store factory.

Tests cover:
- Store registry lookups
- Factory function store creation
- Configuration-based selection
- Error handling for unknown stores
"""

import logging
from typing import Any

import pytest

from parts_ledger.shared.config import Settings
from parts_ledger.store.base import Collection, ListQuery, RemoteListStore, StoreRecord
from parts_ledger.store.factory import StoreRegistry, create_list_store
from parts_ledger.store.graph_store import GraphListStore
from parts_ledger.store.memory_store import InMemoryListStore


def test_store_registry_default_stores() -> None:
    """Test that registry contains default stores."""
    stores = StoreRegistry.list_stores()

    assert "graph" in stores
    assert "memory" in stores


def test_store_registry_get_graph() -> None:
    assert StoreRegistry.get_store_class("graph") is GraphListStore


def test_store_registry_unknown_store() -> None:
    """Test that unknown store raises ValueError listing the available ones."""
    with pytest.raises(ValueError, match="Unknown list store") as exc_info:
        StoreRegistry.get_store_class("nonexistent")

    assert "Available stores" in str(exc_info.value)
    assert "graph" in str(exc_info.value)


def test_store_registry_register_new_store() -> None:
    """Test registering a new store."""

    class ReadOnlyStore(RemoteListStore):
        async def list(
            self, collection: Collection, query: ListQuery | None = None
        ) -> list[StoreRecord]:
            return []

        async def get(self, collection: Collection, item_id: str) -> StoreRecord | None:
            return None

        async def create(self, collection: Collection, fields: dict[str, Any]) -> StoreRecord:
            raise NotImplementedError

        async def update(
            self,
            collection: Collection,
            item_id: str,
            fields: dict[str, Any],
            etag: str | None = None,
        ) -> StoreRecord:
            raise NotImplementedError

        async def delete(self, collection: Collection, item_id: str) -> None:
            raise NotImplementedError

        def is_available(self) -> bool:
            return True

        async def health_check(self) -> dict[str, bool]:
            return {}

        @property
        def provider_name(self) -> str:
            return "read-only"

    StoreRegistry.register("read-only", ReadOnlyStore)
    try:
        assert StoreRegistry.get_store_class("read-only") is ReadOnlyStore
    finally:
        StoreRegistry._stores.pop("read-only")


def test_create_memory_store() -> None:
    store = create_list_store(Settings(store_provider="memory"))

    assert isinstance(store, InMemoryListStore)


def test_create_unconfigured_graph_store_warns(caplog: pytest.LogCaptureFixture) -> None:
    """Missing site id/token is logged, not raised, at construction time."""
    with caplog.at_level(logging.WARNING):
        store = create_list_store(
            Settings(store_provider="graph", graph_site_id="", graph_access_token="")
        )

    assert isinstance(store, GraphListStore)
    assert "not fully available" in caplog.text
