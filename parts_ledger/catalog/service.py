"""Catalog operations: parts, buyers, read-only invoice queries and dashboard stats.

Catalog edits never touch a part's stock level; a new part may start with
stock, after which only the ledger moves it.
"""

import logging
from datetime import UTC, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from parts_ledger.domain.schema import (
    Buyer,
    BuyerCreate,
    BuyerUpdate,
    Invoice,
    InvoiceStatus,
    Part,
    PartCreate,
    PartStatus,
    PartUpdate,
    Transaction,
)
from parts_ledger.shared.errors import (
    BuyerNotFoundError,
    InvoiceNotFoundError,
    PartNotFoundError,
    ValidationError,
)
from parts_ledger.store.repository import InventoryRepository

logger = logging.getLogger(__name__)

REVENUE_STATUSES = (InvoiceStatus.FINALIZED, InvoiceStatus.PAID)


class CategoryStats(BaseModel):
    total_parts: int = 0
    total_units: int = 0
    total_value: Decimal = Decimal("0")
    low_stock_parts: int = 0
    out_of_stock_parts: int = 0


class InventoryStats(BaseModel):
    """Dashboard overview of stock and sales."""

    total_parts: int
    total_units: int
    total_value: Decimal = Field(..., description="Sum of on-hand x unit cost")
    low_stock_parts: int
    out_of_stock_parts: int
    total_buyers: int
    total_invoices: int
    invoices_by_status: dict[str, int]
    total_revenue: Decimal = Field(..., description="Finalized and Paid invoice totals")
    categories: dict[str, CategoryStats]
    generated_at: datetime


class CatalogService:
    """Parts and buyers CRUD plus read-only views over invoices and the ledger."""

    def __init__(self, repository: InventoryRepository, low_stock_threshold: int = 5) -> None:
        self.repository = repository
        self.low_stock_threshold = low_stock_threshold

    # Parts

    async def create_part(self, part: PartCreate) -> Part:
        """Create a part with its starting stock.

        Raises:
            ValidationError: If the part id is already in use
        """
        if await self.repository.get_part_by_part_id(part.part_id, fresh=True) is not None:
            raise ValidationError(f"Part {part.part_id} already exists", "part_id")
        created = await self.repository.create_part(part)
        logger.info(f"Created part {created.part_id} with {created.inventory_on_hand} on hand")
        return created

    async def update_part(self, part_id: str, update: PartUpdate) -> Part:
        part = await self.get_part(part_id, fresh=True)
        return await self.repository.update_part(part.require_id(), update)

    async def get_part(self, part_id: str, fresh: bool = False) -> Part:
        part = await self.repository.get_part_by_part_id(part_id, fresh=fresh)
        if part is None:
            raise PartNotFoundError(part_id)
        return part

    async def list_parts(
        self, category: str | None = None, status: PartStatus | None = None
    ) -> list[Part]:
        return await self.repository.list_parts(category=category, status=status)

    async def part_history(self, part_id: str, limit: int | None = None) -> list[Transaction]:
        """Ledger rows for a part, newest first."""
        part = await self.get_part(part_id)
        return await self.repository.list_transactions(part_id=part.part_id, top=limit)

    # Buyers

    async def create_buyer(self, buyer: BuyerCreate) -> Buyer:
        return await self.repository.create_buyer(buyer)

    async def update_buyer(self, buyer_id: str, update: BuyerUpdate) -> Buyer:
        await self.get_buyer(buyer_id)
        return await self.repository.update_buyer(buyer_id, update)

    async def get_buyer(self, buyer_id: str) -> Buyer:
        buyer = await self.repository.get_buyer(buyer_id)
        if buyer is None:
            raise BuyerNotFoundError(buyer_id)
        return buyer

    async def list_buyers(self) -> list[Buyer]:
        return await self.repository.list_buyers()

    async def delete_buyer(self, buyer_id: str) -> None:
        """Delete a buyer that no invoice refers to.

        Raises:
            BuyerNotFoundError: If the buyer does not exist
            ValidationError: If invoices still reference the buyer
        """
        await self.get_buyer(buyer_id)
        invoices = await self.repository.list_invoices(buyer_id=buyer_id, top=1)
        if invoices:
            raise ValidationError(f"Buyer {buyer_id} has invoices and cannot be deleted", "buyer_id")
        await self.repository.delete_buyer(buyer_id)

    # Invoices

    async def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.repository.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    async def get_invoice_by_number(self, invoice_number: str) -> Invoice:
        invoice = await self.repository.get_invoice_by_number(invoice_number)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_number)
        return invoice

    async def list_invoices(
        self, status: InvoiceStatus | None = None, buyer_id: str | None = None
    ) -> list[Invoice]:
        return await self.repository.list_invoices(status=status, buyer_id=buyer_id)

    async def invoice_line_items(self, invoice_id: str) -> list[Transaction]:
        """Ledger rows written for an invoice (sales and their reversals), oldest first."""
        invoice = await self.get_invoice(invoice_id)
        return await self.repository.list_transactions(
            invoice_ref=invoice.require_id(), descending=False
        )

    # Stats

    async def inventory_stats(self) -> InventoryStats:
        parts = await self.repository.list_parts()
        buyers = await self.repository.list_buyers()
        invoices = await self.repository.list_invoices()

        categories: dict[str, CategoryStats] = {}
        for part in parts:
            stats = categories.setdefault(part.category, CategoryStats())
            stats.total_parts += 1
            stats.total_units += part.inventory_on_hand
            stats.total_value += part.inventory_on_hand * part.unit_cost
            if part.inventory_on_hand == 0:
                stats.out_of_stock_parts += 1
            elif part.inventory_on_hand <= self.low_stock_threshold:
                stats.low_stock_parts += 1

        invoices_by_status = {status.value: 0 for status in InvoiceStatus}
        for invoice in invoices:
            invoices_by_status[invoice.status.value] += 1

        return InventoryStats(
            total_parts=len(parts),
            total_units=sum(c.total_units for c in categories.values()),
            total_value=sum((c.total_value for c in categories.values()), Decimal("0")),
            low_stock_parts=sum(c.low_stock_parts for c in categories.values()),
            out_of_stock_parts=sum(c.out_of_stock_parts for c in categories.values()),
            total_buyers=len(buyers),
            total_invoices=len(invoices),
            invoices_by_status=invoices_by_status,
            total_revenue=sum(
                (i.total_amount for i in invoices if i.status in REVENUE_STATUSES), Decimal("0")
            ),
            categories=dict(sorted(categories.items())),
            generated_at=datetime.now(UTC),
        )
