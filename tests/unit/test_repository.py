"""Unit tests for InventoryRepository caching and invalidation."""

import asyncio
from decimal import Decimal
from unittest.mock import patch

import pytest

from parts_ledger.cache.query_cache import TTLQueryCache
from parts_ledger.domain.schema import (
    Invoice,
    InvoiceStatus,
    MovementType,
    PartCreate,
    PartUpdate,
    Transaction,
)
from parts_ledger.mapping.mapper import EntityMapper
from parts_ledger.shared.config import Settings
from parts_ledger.shared.errors import ValidationError
from parts_ledger.store.base import Collection, ListQuery, StoreRecord
from parts_ledger.store.memory_store import InMemoryListStore
from parts_ledger.store.repository import InventoryRepository


@pytest.fixture
def store() -> InMemoryListStore:
    return InMemoryListStore(Settings(store_provider="memory"))


@pytest.fixture
def cache() -> TTLQueryCache:
    return TTLQueryCache()


@pytest.fixture
def repository(store: InMemoryListStore, cache: TTLQueryCache) -> InventoryRepository:
    return InventoryRepository(store, EntityMapper(), cache)


class TestCachedReads:
    """Reads are cached until a write to the same collection."""

    @pytest.mark.asyncio
    async def test_second_read_served_from_cache(
        self, repository: InventoryRepository, store: InMemoryListStore
    ) -> None:
        await repository.create_part(PartCreate(part_id="A1", description="Filter"))

        with patch.object(store, "list", wraps=store.list) as spy:
            await repository.list_parts()
            await repository.list_parts()

        assert spy.call_count == 1

    @pytest.mark.asyncio
    async def test_fresh_read_bypasses_cache(
        self, repository: InventoryRepository, store: InMemoryListStore
    ) -> None:
        await repository.create_part(PartCreate(part_id="A1", description="Filter"))
        await repository.get_part_by_part_id("A1")

        with patch.object(store, "list", wraps=store.list) as spy:
            await repository.get_part_by_part_id("A1", fresh=True)

        assert spy.call_count == 1

    @pytest.mark.asyncio
    async def test_write_invalidates_collection(
        self, repository: InventoryRepository, cache: TTLQueryCache
    ) -> None:
        part = await repository.create_part(
            PartCreate(part_id="A1", description="Filter", inventory_on_hand=4)
        )
        await repository.get_part_by_part_id("A1")
        await repository.list_buyers()

        await repository.set_inventory(part, 9)

        assert not any(key.startswith("Parts:") for key in cache._entries)
        assert any(key.startswith("Buyers:") for key in cache._entries)
        reread = await repository.get_part_by_part_id("A1")
        assert reread is not None
        assert reread.inventory_on_hand == 9

    @pytest.mark.asyncio
    async def test_missing_part_returns_none(self, repository: InventoryRepository) -> None:
        assert await repository.get_part_by_part_id("NOPE") is None


class TestWrites:
    @pytest.mark.asyncio
    async def test_update_part_keeps_stock(self, repository: InventoryRepository) -> None:
        part = await repository.create_part(
            PartCreate(part_id="A1", description="Filter", inventory_on_hand=4)
        )
        assert part.id is not None

        updated = await repository.update_part(part.id, PartUpdate(unit_price=Decimal("12.00")))

        assert updated.unit_price == Decimal("12.00")
        assert updated.inventory_on_hand == 4

    @pytest.mark.asyncio
    async def test_update_invoice_status_conditional(
        self, repository: InventoryRepository
    ) -> None:
        invoice = await repository.create_invoice(Invoice(invoice_number="INV-1", buyer_id="1"))
        assert invoice.etag is not None

        updated = await repository.update_invoice_status(
            invoice, InvoiceStatus.FINALIZED, Decimal("10.00"), conditional=True
        )

        assert updated.status == InvoiceStatus.FINALIZED
        assert updated.total_amount == Decimal("10.00")
        assert updated.etag != invoice.etag

    @pytest.mark.asyncio
    async def test_list_invoices_newest_first(self, repository: InventoryRepository) -> None:
        await repository.create_invoice(Invoice(invoice_number="INV-1", buyer_id="1"))
        await repository.create_invoice(Invoice(invoice_number="INV-2", buyer_id="1"))

        invoices = await repository.list_invoices()

        assert [i.invoice_number for i in invoices] == ["INV-2", "INV-1"]

    @pytest.mark.asyncio
    async def test_list_transactions_filters(self, repository: InventoryRepository) -> None:
        for movement_type, invoice_ref in [
            (MovementType.SOLD, "9"),
            (MovementType.SOLD, "10"),
            (MovementType.VOID_ADJUSTMENT, "9"),
        ]:
            await repository.create_transaction(
                Transaction(
                    part_id="A1",
                    movement_type=movement_type,
                    quantity=1,
                    invoice_ref=invoice_ref,
                )
            )

        rows = await repository.list_transactions(
            invoice_ref="9", movement_type=MovementType.SOLD
        )

        assert len(rows) == 1
        assert rows[0].invoice_ref == "9"
        assert rows[0].movement_type == MovementType.SOLD


class PausingListStore(InMemoryListStore):
    """Memory store whose list calls can be held after reading their records."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.pause = False
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def list(self, collection: Collection, query: ListQuery | None = None) -> list[StoreRecord]:
        records = await super().list(collection, query)
        if self.pause:
            self.entered.set()
            await self.release.wait()
        return records


class TestReadOverlappingWrite:
    @pytest.mark.asyncio
    async def test_stale_read_not_cached(self) -> None:
        store = PausingListStore(Settings(store_provider="memory"))
        repository = InventoryRepository(store, EntityMapper(), TTLQueryCache())
        part = await repository.create_part(
            PartCreate(part_id="P1", description="Pad", inventory_on_hand=10)
        )

        store.pause = True
        read = asyncio.create_task(repository.get_part_by_part_id("P1"))
        await store.entered.wait()
        store.pause = False
        await repository.set_inventory(part, 15)
        store.release.set()
        overlapping = await read

        assert overlapping is not None
        assert overlapping.inventory_on_hand == 10
        cached = await repository.get_part_by_part_id("P1")
        assert cached is not None
        assert cached.inventory_on_hand == 15

    @pytest.mark.asyncio
    async def test_read_after_write_is_cached(self) -> None:
        store = PausingListStore(Settings(store_provider="memory"))
        repository = InventoryRepository(store, EntityMapper(), TTLQueryCache())
        part = await repository.create_part(
            PartCreate(part_id="P1", description="Pad", inventory_on_hand=10)
        )
        await repository.set_inventory(part, 15)
        await repository.get_part_by_part_id("P1")

        with patch.object(store, "list", wraps=store.list) as spy:
            cached = await repository.get_part_by_part_id("P1")

        assert spy.call_count == 0
        assert cached is not None
        assert cached.inventory_on_hand == 15


class TestMissingIds:
    @pytest.mark.asyncio
    async def test_set_inventory_needs_stored_part(self, repository: InventoryRepository) -> None:
        part = await repository.create_part(PartCreate(part_id="A1", description="Pad"))
        unsaved = part.model_copy(update={"id": None})

        with pytest.raises(ValidationError, match="Part A1 has no store id"):
            await repository.set_inventory(unsaved, 3)

    @pytest.mark.asyncio
    async def test_status_update_needs_stored_invoice(
        self, repository: InventoryRepository
    ) -> None:
        invoice = Invoice(invoice_number="INV-1", buyer_id="1")

        with pytest.raises(ValidationError, match="Invoice INV-1 has no store id"):
            await repository.update_invoice_status(invoice, InvoiceStatus.FINALIZED)
