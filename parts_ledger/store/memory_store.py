"""In-memory list store.

Keeps records in process, in the same item shape the Graph store returns.
Used by the test suite and for running the API locally without a SharePoint
site. Every operation yields to the event loop once so concurrent callers
interleave the way they would against a network store.
"""

import asyncio
import copy
import itertools
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from parts_ledger.shared.config import Settings
from parts_ledger.shared.errors import StoreNotFoundError, StorePreconditionFailedError
from parts_ledger.store.base import Collection, ListQuery, RemoteListStore, StoreRecord

logger = logging.getLogger(__name__)


class InMemoryListStore(RemoteListStore):
    """Process-local list store with store-assigned ids and etags."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._records: dict[Collection, dict[str, StoreRecord]] = {c: {} for c in Collection}
        self._ids = itertools.count(1)

    @property
    def provider_name(self) -> str:
        return "memory"

    def is_available(self) -> bool:
        return True

    @staticmethod
    def _now() -> str:
        return datetime.now(UTC).isoformat()

    @staticmethod
    def _etag(version: int) -> str:
        return f'"{uuid.uuid4()},{version}"'

    @staticmethod
    def _sort_value(record: StoreRecord, column: str) -> Any:
        if column == "Created":
            return (record["createdDateTime"], int(record["id"]))
        if column == "Modified":
            return (record["lastModifiedDateTime"], int(record["id"]))
        value = record["fields"].get(column)
        # None sorts first, like an empty column
        return (value is not None, value if value is not None else 0)

    async def list(self, collection: Collection, query: ListQuery | None = None) -> list[StoreRecord]:
        await asyncio.sleep(0)
        query = query or ListQuery()
        records = [
            record
            for record in self._records[collection].values()
            if all(record["fields"].get(name) == value for name, value in query.filters.items())
        ]
        records.sort(key=lambda r: int(r["id"]))
        if query.order_by:
            records.sort(
                key=lambda r: self._sort_value(r, query.order_by or ""),
                reverse=query.descending,
            )
        if query.top:
            records = records[: query.top]
        return copy.deepcopy(records)

    async def get(self, collection: Collection, item_id: str) -> StoreRecord | None:
        await asyncio.sleep(0)
        record = self._records[collection].get(str(item_id))
        return copy.deepcopy(record) if record is not None else None

    async def create(self, collection: Collection, fields: dict[str, Any]) -> StoreRecord:
        await asyncio.sleep(0)
        item_id = str(next(self._ids))
        now = self._now()
        record: StoreRecord = {
            "id": item_id,
            "createdDateTime": now,
            "lastModifiedDateTime": now,
            "@odata.etag": self._etag(1),
            "_version": 1,
            "fields": copy.deepcopy(fields),
        }
        self._records[collection][item_id] = record
        logger.debug(f"Created {collection.value} item {item_id}")
        return copy.deepcopy(record)

    async def update(
        self,
        collection: Collection,
        item_id: str,
        fields: dict[str, Any],
        etag: str | None = None,
    ) -> StoreRecord:
        await asyncio.sleep(0)
        record = self._records[collection].get(str(item_id))
        if record is None:
            raise StoreNotFoundError(f"update on {collection.value} failed: item {item_id} not found", 404)
        if etag is not None and etag != record["@odata.etag"]:
            raise StorePreconditionFailedError(
                f"update on {collection.value} failed: item {item_id} was modified", 412
            )
        record["fields"].update(copy.deepcopy(fields))
        record["_version"] += 1
        record["@odata.etag"] = self._etag(record["_version"])
        record["lastModifiedDateTime"] = self._now()
        return copy.deepcopy(record)

    async def delete(self, collection: Collection, item_id: str) -> None:
        await asyncio.sleep(0)
        if self._records[collection].pop(str(item_id), None) is None:
            raise StoreNotFoundError(f"delete on {collection.value} failed: item {item_id} not found", 404)

    async def health_check(self) -> dict[str, bool]:
        return {collection.value: True for collection in Collection}
