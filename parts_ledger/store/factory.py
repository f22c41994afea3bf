"""Factory for creating list stores based on configuration.

Implements Factory Pattern for store selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging

from parts_ledger.shared.config import Settings
from parts_ledger.store.base import RemoteListStore
from parts_ledger.store.graph_store import GraphListStore
from parts_ledger.store.memory_store import InMemoryListStore

logger = logging.getLogger(__name__)


class StoreRegistry:
    """Registry of available list store implementations.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new stores.
    """

    _stores: dict[str, type[RemoteListStore]] = {
        "graph": GraphListStore,
        "memory": InMemoryListStore,
    }

    @classmethod
    def register(cls, name: str, store_class: type[RemoteListStore]) -> None:
        """Register a new store.

        Args:
            name: Provider identifier (must match Settings.store_provider)
            store_class: Class implementing RemoteListStore
        """
        cls._stores[name] = store_class
        logger.info(f"Registered list store: {name}")

    @classmethod
    def get_store_class(cls, name: str) -> type[RemoteListStore]:
        """Get store class by name.

        Raises:
            ValueError: If store not found in registry
        """
        if name not in cls._stores:
            available = ", ".join(cls._stores.keys())
            raise ValueError(f"Unknown list store: '{name}'. Available stores: {available}")
        return cls._stores[name]

    @classmethod
    def list_stores(cls) -> list[str]:
        return list(cls._stores.keys())


def create_list_store(settings: Settings) -> RemoteListStore:
    """Create the list store named by settings.store_provider.

    Logs a warning if the store is not fully configured (e.g. missing site id
    or token); calls will then fail with a typed error rather than here.

    Args:
        settings: Application settings with store_provider field

    Returns:
        Configured list store instance

    Raises:
        ValueError: If configured store is unknown
    """
    store_name = settings.store_provider
    store_class = StoreRegistry.get_store_class(store_name)

    store = store_class(settings)

    if not store.is_available():
        logger.warning(
            f"List store '{store_name}' is not fully available. "
            f"Check configuration (e.g., site id, access token)."
        )

    logger.info(f"Created list store: {store_name}")
    return store
