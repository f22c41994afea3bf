"""Abstract base class for remote list stores.

The core talks to its backing store only through this CRUD contract, so the
SharePoint/Graph implementation can be swapped for an in-memory one in tests.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python

Records are plain dicts in list-item shape::

    {
        "id": "17",
        "createdDateTime": "2025-03-01T10:00:00Z",
        "lastModifiedDateTime": "2025-03-01T10:00:00Z",
        "@odata.etag": "\"4f1c...,2\"",
        "fields": {"Title": "BH001", "InventoryOnHand": 12, ...},
    }

Column names inside ``fields`` are the store's native names; translating them
to domain models is the entity mapper's job.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from parts_ledger.shared.config import Settings

StoreRecord = dict[str, Any]


class Collection(str, Enum):
    """Lists the core reads and writes."""

    PARTS = "Parts"
    BUYERS = "Buyers"
    INVOICES = "Invoices"
    TRANSACTIONS = "Transactions"


class ListQuery(BaseModel):
    """Filter/order/limit options for ``RemoteListStore.list``.

    Attributes:
        filters: Native column name -> value; all must match (AND of equalities)
        order_by: Native column name to sort on (``Created`` sorts by creation time)
        descending: Sort direction
        top: Maximum number of records to return
    """

    filters: dict[str, str | int | float | bool] = Field(default_factory=dict)
    order_by: str | None = None
    descending: bool = False
    top: int | None = Field(None, ge=1)

    def cache_key(self) -> str:
        return self.model_dump_json()


class RemoteListStore(ABC):
    """Abstract base class for CRUD-over-HTTP list stores.

    All operations are async and may fail with a ``StoreUnavailableError``
    subclass. None of them are transactional and none are retried here.

    Example implementations:
    - GraphListStore: SharePoint lists through Microsoft Graph
    - InMemoryListStore: process-local dict, for tests and local runs
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize store with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    async def list(self, collection: Collection, query: ListQuery | None = None) -> list[StoreRecord]:
        """Return records matching the query."""
        pass

    @abstractmethod
    async def get(self, collection: Collection, item_id: str) -> StoreRecord | None:
        """Return one record by store id, or None if it does not exist."""
        pass

    @abstractmethod
    async def create(self, collection: Collection, fields: dict[str, Any]) -> StoreRecord:
        """Create a record and return it with its assigned id."""
        pass

    @abstractmethod
    async def update(
        self,
        collection: Collection,
        item_id: str,
        fields: dict[str, Any],
        etag: str | None = None,
    ) -> StoreRecord:
        """Patch fields of a record and return the updated record.

        Args:
            collection: Target list
            item_id: Store id of the record
            fields: Native columns to change
            etag: When given, the write only succeeds if the record still has
                this etag (raises StorePreconditionFailedError otherwise)
        """
        pass

    @abstractmethod
    async def delete(self, collection: Collection, item_id: str) -> None:
        """Delete a record."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this store is configured well enough to be used.

        Returns:
            True if the store can be used, False otherwise
        """
        pass

    @abstractmethod
    async def health_check(self) -> dict[str, bool]:
        """Check each collection.

        Returns:
            Mapping of collection name to reachability
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics."""
        pass

    async def close(self) -> None:
        """Release network resources. No-op by default."""
        return None
