"""Typed reads and writes over the list store.

Combines the store, the entity mapper and the query cache. Reads go through
the cache unless ``fresh=True``; the ledger and lifecycle guards always read
fresh. Every successful write invalidates the cached reads of the collection
it touched.
"""

import logging
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import cast

from parts_ledger.cache.query_cache import QueryCache
from parts_ledger.domain.schema import (
    Buyer,
    BuyerCreate,
    BuyerUpdate,
    Invoice,
    InvoiceStatus,
    MovementType,
    Part,
    PartCreate,
    PartStatus,
    PartUpdate,
    Transaction,
)
from parts_ledger.mapping.mapper import EntityMapper
from parts_ledger.store.base import Collection, ListQuery, RemoteListStore, StoreRecord

logger = logging.getLogger(__name__)


class InventoryRepository:
    """Entity-level access to Parts, Buyers, Invoices and Transactions."""

    def __init__(self, store: RemoteListStore, mapper: EntityMapper, cache: QueryCache) -> None:
        self.store = store
        self.mapper = mapper
        self.cache = cache

    # Cache plumbing

    async def _cached(
        self,
        collection: Collection,
        key: str,
        loader: Callable[[], Awaitable[object]],
        fresh: bool,
    ) -> object:
        prefix = f"{collection.value}:"
        if not fresh:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        generation = self.cache.generation(prefix)
        value = await loader()
        # A write to the collection landed while loading; the value may predate it
        if value is not None and self.cache.generation(prefix) == generation:
            self.cache.set(key, value)
        return value

    async def _list_records(
        self, collection: Collection, query: ListQuery, fresh: bool = False
    ) -> list[StoreRecord]:
        key = f"{collection.value}:list:{query.cache_key()}"
        records = await self._cached(
            collection, key, lambda: self.store.list(collection, query), fresh
        )
        return cast(list[StoreRecord], records)

    async def _get_record(
        self, collection: Collection, item_id: str, fresh: bool = False
    ) -> StoreRecord | None:
        key = f"{collection.value}:item:{item_id}"
        record = await self._cached(
            collection, key, lambda: self.store.get(collection, item_id), fresh
        )
        return record if isinstance(record, dict) else None

    def _invalidate(self, collection: Collection) -> None:
        self.cache.invalidate(f"{collection.value}:")

    def _query(
        self,
        collection: Collection,
        order_by: str | None = None,
        descending: bool = False,
        top: int | None = None,
        **criteria: object,
    ) -> ListQuery:
        return ListQuery(
            filters=self.mapper.filters(collection, **criteria),
            order_by=self.mapper.native_field(collection, order_by) if order_by else None,
            descending=descending,
            top=top,
        )

    # Parts

    async def get_part_by_part_id(self, part_id: str, fresh: bool = False) -> Part | None:
        query = self._query(Collection.PARTS, top=1, part_id=part_id)
        records = await self._list_records(Collection.PARTS, query, fresh)
        return self.mapper.to_part(records[0]) if records else None

    async def get_part(self, item_id: str, fresh: bool = False) -> Part | None:
        record = await self._get_record(Collection.PARTS, item_id, fresh)
        return self.mapper.to_part(record) if record else None

    async def list_parts(
        self,
        category: str | None = None,
        status: PartStatus | None = None,
        top: int | None = None,
    ) -> list[Part]:
        query = self._query(
            Collection.PARTS, order_by="part_id", top=top, category=category, status=status
        )
        records = await self._list_records(Collection.PARTS, query)
        return [self.mapper.to_part(record) for record in records]

    async def create_part(self, part: PartCreate) -> Part:
        record = await self.store.create(Collection.PARTS, self.mapper.part_fields(part))
        self._invalidate(Collection.PARTS)
        return self.mapper.to_part(record)

    async def update_part(self, item_id: str, update: PartUpdate) -> Part:
        record = await self.store.update(
            Collection.PARTS, item_id, self.mapper.part_update_fields(update)
        )
        self._invalidate(Collection.PARTS)
        return self.mapper.to_part(record)

    async def set_inventory(self, part: Part, inventory_on_hand: int) -> Part:
        """Patch only the stock column of a part."""
        record = await self.store.update(
            Collection.PARTS, part.require_id(), self.mapper.inventory_fields(inventory_on_hand)
        )
        self._invalidate(Collection.PARTS)
        return self.mapper.to_part(record)

    # Buyers

    async def get_buyer(self, item_id: str, fresh: bool = False) -> Buyer | None:
        record = await self._get_record(Collection.BUYERS, item_id, fresh)
        return self.mapper.to_buyer(record) if record else None

    async def list_buyers(self, top: int | None = None) -> list[Buyer]:
        query = self._query(Collection.BUYERS, order_by="buyer_name", top=top)
        records = await self._list_records(Collection.BUYERS, query)
        return [self.mapper.to_buyer(record) for record in records]

    async def create_buyer(self, buyer: BuyerCreate) -> Buyer:
        record = await self.store.create(Collection.BUYERS, self.mapper.buyer_fields(buyer))
        self._invalidate(Collection.BUYERS)
        return self.mapper.to_buyer(record)

    async def update_buyer(self, item_id: str, update: BuyerUpdate) -> Buyer:
        record = await self.store.update(
            Collection.BUYERS, item_id, self.mapper.buyer_fields(update)
        )
        self._invalidate(Collection.BUYERS)
        return self.mapper.to_buyer(record)

    async def delete_buyer(self, item_id: str) -> None:
        await self.store.delete(Collection.BUYERS, item_id)
        self._invalidate(Collection.BUYERS)

    # Invoices

    async def get_invoice(self, item_id: str, fresh: bool = False) -> Invoice | None:
        record = await self._get_record(Collection.INVOICES, item_id, fresh)
        return self.mapper.to_invoice(record) if record else None

    async def get_invoice_by_number(
        self, invoice_number: str, fresh: bool = False
    ) -> Invoice | None:
        query = self._query(Collection.INVOICES, top=1, invoice_number=invoice_number)
        records = await self._list_records(Collection.INVOICES, query, fresh)
        return self.mapper.to_invoice(records[0]) if records else None

    async def list_invoices(
        self,
        status: InvoiceStatus | None = None,
        buyer_id: str | None = None,
        top: int | None = None,
    ) -> list[Invoice]:
        """Invoices, newest first."""
        query = self._query(
            Collection.INVOICES,
            order_by="created_at",
            descending=True,
            top=top,
            status=status,
            buyer_id=buyer_id,
        )
        records = await self._list_records(Collection.INVOICES, query)
        return [self.mapper.to_invoice(record) for record in records]

    async def create_invoice(self, invoice: Invoice) -> Invoice:
        record = await self.store.create(Collection.INVOICES, self.mapper.invoice_fields(invoice))
        self._invalidate(Collection.INVOICES)
        return self.mapper.to_invoice(record)

    async def update_invoice_status(
        self,
        invoice: Invoice,
        status: InvoiceStatus,
        total_amount: Decimal | None = None,
        conditional: bool = False,
    ) -> Invoice:
        """Write a new status (and optionally total).

        Args:
            invoice: Invoice as read by the caller's guard
            status: New status
            total_amount: New cached total, left unchanged when None
            conditional: Send the invoice's etag so the write fails if the
                record changed since it was read
        """
        etag = invoice.etag if conditional else None
        record = await self.store.update(
            Collection.INVOICES,
            invoice.require_id(),
            self.mapper.invoice_status_fields(status, total_amount),
            etag=etag,
        )
        self._invalidate(Collection.INVOICES)
        return self.mapper.to_invoice(record)

    # Transactions

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        record = await self.store.create(
            Collection.TRANSACTIONS, self.mapper.transaction_fields(transaction)
        )
        self._invalidate(Collection.TRANSACTIONS)
        return self.mapper.to_transaction(record)

    async def list_transactions(
        self,
        part_id: str | None = None,
        invoice_ref: str | None = None,
        movement_type: MovementType | None = None,
        descending: bool = True,
        top: int | None = None,
        fresh: bool = False,
    ) -> list[Transaction]:
        """Ledger rows matching all given criteria, ordered by creation time."""
        query = self._query(
            Collection.TRANSACTIONS,
            order_by="created_at",
            descending=descending,
            top=top,
            part_id=part_id,
            invoice_ref=invoice_ref,
            movement_type=movement_type,
        )
        records = await self._list_records(Collection.TRANSACTIONS, query, fresh)
        return [self.mapper.to_transaction(record) for record in records]
