"""Inventory service facade.

Single entry point for callers (the HTTP API, scripts). Wires the store,
cache, repository, ledger, orchestrator, lifecycle and catalog together and
exposes the invoice, stock movement and query operations.

Usage:
    service = create_inventory_service(get_settings())
    result = await service.finalize_invoice(invoice_id, line_items)
"""

import logging
from decimal import Decimal
from typing import Any

from parts_ledger.cache.query_cache import QueryCache, create_query_cache
from parts_ledger.catalog.service import CatalogService, InventoryStats
from parts_ledger.domain.schema import (
    Buyer,
    BuyerCreate,
    BuyerUpdate,
    Invoice,
    InvoiceDraft,
    InvoiceStatus,
    LineItem,
    MovementType,
    Part,
    PartCreate,
    PartStatus,
    PartUpdate,
    Transaction,
)
from parts_ledger.invoicing.lifecycle import InvoiceLifecycle, InvoiceResult
from parts_ledger.ledger.service import InventoryLedger, LedgerAudit, MovementResult
from parts_ledger.mapping.mapper import EntityMapper
from parts_ledger.reconciliation.orchestrator import ReconciliationOrchestrator
from parts_ledger.shared.config import Settings, get_settings
from parts_ledger.shared.errors import StoreUnavailableError, ValidationError
from parts_ledger.store.base import RemoteListStore
from parts_ledger.store.factory import create_list_store
from parts_ledger.store.repository import InventoryRepository

logger = logging.getLogger(__name__)


class InventoryService:
    """Facade over invoicing, the inventory ledger and the catalog."""

    def __init__(
        self,
        store: RemoteListStore,
        repository: InventoryRepository,
        ledger: InventoryLedger,
        lifecycle: InvoiceLifecycle,
        catalog: CatalogService,
    ) -> None:
        self.store = store
        self.repository = repository
        self.ledger = ledger
        self.lifecycle = lifecycle
        self.catalog = catalog

    # Invoices

    async def create_invoice(self, draft: InvoiceDraft) -> Invoice:
        return await self.lifecycle.create(draft)

    async def finalize_invoice(self, invoice_id: str, line_items: list[LineItem]) -> InvoiceResult:
        return await self.lifecycle.finalize(invoice_id, line_items)

    async def create_and_finalize_invoice(
        self, draft: InvoiceDraft, line_items: list[LineItem]
    ) -> InvoiceResult:
        return await self.lifecycle.create_and_finalize(draft, line_items)

    async def void_invoice(self, invoice_id: str) -> InvoiceResult:
        return await self.lifecycle.void(invoice_id)

    async def mark_invoice_paid(self, invoice_id: str) -> InvoiceResult:
        return await self.lifecycle.mark_paid(invoice_id)

    async def cancel_invoice(self, invoice_id: str) -> InvoiceResult:
        return await self.lifecycle.cancel(invoice_id)

    async def get_invoice(self, invoice_id: str) -> Invoice:
        return await self.catalog.get_invoice(invoice_id)

    async def get_invoice_by_number(self, invoice_number: str) -> Invoice:
        return await self.catalog.get_invoice_by_number(invoice_number)

    async def list_invoices(
        self, status: InvoiceStatus | None = None, buyer_id: str | None = None
    ) -> list[Invoice]:
        return await self.catalog.list_invoices(status=status, buyer_id=buyer_id)

    async def invoice_line_items(self, invoice_id: str) -> list[Transaction]:
        return await self.catalog.invoice_line_items(invoice_id)

    # Stock movements outside invoicing

    async def record_inbound_receipt(
        self,
        part_id: str,
        quantity: int,
        unit_cost: Decimal | None = None,
        supplier: str = "",
        notes: str = "",
    ) -> MovementResult:
        """Record stock received from a supplier.

        Args:
            part_id: Business key of the part
            quantity: Units received
            unit_cost: Cost per unit, defaults to the part's unit cost
            supplier: Supplier name
            notes: Free-text note

        Raises:
            ValidationError: If unit_cost is negative or quantity is invalid
            PartNotFoundError: If the part does not exist
        """
        if unit_cost is not None and unit_cost < 0:
            raise ValidationError("Unit cost must not be negative", "unit_cost")
        return await self.ledger.apply_movement(
            part_id,
            MovementType.RECEIVED,
            quantity,
            unit_cost=unit_cost,
            supplier=supplier,
            notes=notes or (f"Received from {supplier}" if supplier else "Stock received"),
        )

    async def record_adjustment(self, part_id: str, quantity: int, reason: str) -> MovementResult:
        """Add stock found on a count, returned or otherwise unaccounted for.

        Raises:
            ValidationError: If no reason is given or quantity is invalid
            PartNotFoundError: If the part does not exist
        """
        if not reason or not reason.strip():
            raise ValidationError("Adjustment reason is required", "reason")
        return await self.ledger.apply_movement(
            part_id, MovementType.ADJUSTMENT, quantity, notes=reason.strip()
        )

    # Catalog

    async def create_part(self, part: PartCreate) -> Part:
        return await self.catalog.create_part(part)

    async def update_part(self, part_id: str, update: PartUpdate) -> Part:
        return await self.catalog.update_part(part_id, update)

    async def get_part(self, part_id: str) -> Part:
        return await self.catalog.get_part(part_id)

    async def list_parts(
        self, category: str | None = None, status: PartStatus | None = None
    ) -> list[Part]:
        return await self.catalog.list_parts(category=category, status=status)

    async def part_history(self, part_id: str, limit: int | None = None) -> list[Transaction]:
        return await self.catalog.part_history(part_id, limit)

    async def create_buyer(self, buyer: BuyerCreate) -> Buyer:
        return await self.catalog.create_buyer(buyer)

    async def update_buyer(self, buyer_id: str, update: BuyerUpdate) -> Buyer:
        return await self.catalog.update_buyer(buyer_id, update)

    async def get_buyer(self, buyer_id: str) -> Buyer:
        return await self.catalog.get_buyer(buyer_id)

    async def list_buyers(self) -> list[Buyer]:
        return await self.catalog.list_buyers()

    async def delete_buyer(self, buyer_id: str) -> None:
        await self.catalog.delete_buyer(buyer_id)

    async def inventory_stats(self) -> InventoryStats:
        return await self.catalog.inventory_stats()

    # Audit and health

    async def audit_part(self, part_id: str, starting_inventory: int | None = None) -> LedgerAudit:
        return await self.ledger.audit_part(part_id, starting_inventory)

    async def reconcile_part(self, part_id: str) -> LedgerAudit:
        """Restore a part's stored stock to its ledger replay; returns the audit before repair."""
        return await self.ledger.reconcile_part(part_id)

    async def audit_inventory(self) -> list[LedgerAudit]:
        """Audit every part against its ledger."""
        parts = await self.repository.list_parts()
        return [await self.ledger.audit_part(part.part_id) for part in parts]

    async def health_check(self) -> dict[str, Any]:
        """Reachability of each list in the store."""
        try:
            lists = await self.store.health_check()
        except StoreUnavailableError as e:
            logger.error(f"Store health check failed: {e}")
            return {"healthy": False, "store": self.store.provider_name, "error": e.message}
        return {"healthy": all(lists.values()), "store": self.store.provider_name, "lists": lists}

    async def close(self) -> None:
        await self.store.close()


def create_inventory_service(
    settings: Settings | None = None,
    store: RemoteListStore | None = None,
    cache: QueryCache | None = None,
) -> InventoryService:
    """Build a fully wired InventoryService.

    Args:
        settings: Application settings, defaults to get_settings()
        store: List store to use instead of the configured one
        cache: Query cache to use instead of the configured one

    Returns:
        InventoryService ready for use
    """
    settings = settings or get_settings()
    if store is None:
        store = create_list_store(settings)
    if cache is None:
        cache = create_query_cache(settings)

    repository = InventoryRepository(store, EntityMapper(), cache)
    ledger = InventoryLedger(repository)
    orchestrator = ReconciliationOrchestrator(ledger, repository, settings)
    lifecycle = InvoiceLifecycle(repository, orchestrator, settings)
    catalog = CatalogService(repository, low_stock_threshold=settings.low_stock_threshold)

    logger.info(
        f"Inventory service ready (store={store.provider_name}, "
        f"oversell_policy={settings.oversell_policy})"
    )
    return InventoryService(store, repository, ledger, lifecycle, catalog)
