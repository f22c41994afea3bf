"""Invoice state machine.

    Draft -> Finalized -> Paid
    Draft -> Void            (cancel, no ledger effect)
    Finalized -> Void        (void, reverses the sale rows)

Paid and Void are terminal. Every transition re-reads the invoice from the
store under a per-invoice lock, checks the guard, does its ledger work, and
writes the new status conditionally on the etag it read.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from decimal import Decimal

from pydantic import BaseModel

from parts_ledger.domain.schema import Invoice, InvoiceDraft, InvoiceStatus, LineItem
from parts_ledger.reconciliation.orchestrator import ReconciliationOrchestrator, ReconciliationReport
from parts_ledger.shared.config import Settings
from parts_ledger.shared.errors import (
    BuyerNotFoundError,
    ConcurrentModificationError,
    ConfigurationError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    StorePreconditionFailedError,
    ValidationError,
)
from parts_ledger.store.repository import InventoryRepository

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.FINALIZED, InvoiceStatus.VOID}),
    InvoiceStatus.FINALIZED: frozenset({InvoiceStatus.PAID, InvoiceStatus.VOID}),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.VOID: frozenset(),
}


def can_transition(current: InvoiceStatus, requested: InvoiceStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


class InvoiceResult(BaseModel):
    """Invoice after a transition, with the ledger report when there was ledger work."""

    invoice: Invoice
    report: ReconciliationReport | None = None


class InvoiceLifecycle:
    """Creates invoices and drives them through their states.

    Attributes:
        repository: Invoice and buyer reads/writes
        orchestrator: Ledger work for finalize and void
        settings: Enabled finalize flows and locking
    """

    def __init__(
        self,
        repository: InventoryRepository,
        orchestrator: ReconciliationOrchestrator,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.orchestrator = orchestrator
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(UTC))
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: dict[str, int] = {}

    @asynccontextmanager
    async def _guard(self, invoice_id: str) -> AsyncIterator[None]:
        """Serialize transitions of one invoice within this process.

        A lock lives only while some caller holds or waits on it.
        """
        if not self.settings.invoice_lock_enabled:
            yield
            return
        lock = self._locks.setdefault(invoice_id, asyncio.Lock())
        self._lock_holders[invoice_id] = self._lock_holders.get(invoice_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[invoice_id] -= 1
            if not self._lock_holders[invoice_id]:
                del self._lock_holders[invoice_id]
                del self._locks[invoice_id]

    def generate_invoice_number(self) -> str:
        return f"INV-{self._clock():%Y%m%d-%H%M%S}"

    async def _load(self, invoice_id: str) -> Invoice:
        invoice = await self.repository.get_invoice(invoice_id, fresh=True)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    async def _write_status(
        self,
        invoice: Invoice,
        status: InvoiceStatus,
        total_amount: Decimal | None = None,
    ) -> Invoice:
        try:
            updated = await self.repository.update_invoice_status(
                invoice, status, total_amount, conditional=True
            )
        except StorePreconditionFailedError as e:
            raise ConcurrentModificationError(
                f"Invoice {invoice.invoice_number} changed while moving to {status.value}"
            ) from e
        logger.info(
            f"Invoice {invoice.invoice_number}: {invoice.status.value} -> {status.value}"
        )
        return updated

    async def create(self, draft: InvoiceDraft) -> Invoice:
        """Create a Draft invoice. No ledger effect.

        Raises:
            BuyerNotFoundError: If the buyer does not exist
            ValidationError: If the invoice number is already taken
        """
        return await self._create(draft, InvoiceStatus.DRAFT)

    async def _create(self, draft: InvoiceDraft, status: InvoiceStatus) -> Invoice:
        if await self.repository.get_buyer(draft.buyer_id) is None:
            raise BuyerNotFoundError(draft.buyer_id)

        invoice_number = draft.invoice_number or self.generate_invoice_number()
        if await self.repository.get_invoice_by_number(invoice_number, fresh=True) is not None:
            raise ValidationError(
                f"Invoice number {invoice_number} already exists", "invoice_number"
            )

        invoice = await self.repository.create_invoice(
            Invoice(
                invoice_number=invoice_number,
                buyer_id=draft.buyer_id,
                invoice_date=draft.invoice_date or self._clock().date(),
                notes=draft.notes,
                status=status,
            )
        )
        logger.info(f"Created invoice {invoice.invoice_number} ({invoice.id}) as {status.value}")
        return invoice

    async def finalize(self, invoice_id: str, line_items: list[LineItem]) -> InvoiceResult:
        """Sell the line items against a Draft invoice and mark it Finalized.

        A call after a partial failure resumes: items already in the ledger
        for this invoice are skipped, the rest are applied.

        Raises:
            ConfigurationError: If the draft-then-finalize flow is disabled
            InvoiceNotFoundError: If the invoice does not exist
            InvalidTransitionError: If the invoice is not a Draft
            PartialReconciliationError: If a line item failed; the invoice stays Draft
            ConcurrentModificationError: If the invoice changed during the call
        """
        if not self.settings.draft_finalize_enabled:
            raise ConfigurationError("Draft finalize flow is disabled")
        async with self._guard(invoice_id):
            invoice = await self._load(invoice_id)
            report = await self.orchestrator.finalize_line_items(invoice, line_items)
            updated = await self._write_status(
                invoice, InvoiceStatus.FINALIZED, report.total_amount
            )
        return InvoiceResult(invoice=updated, report=report)

    async def create_and_finalize(
        self, draft: InvoiceDraft, line_items: list[LineItem]
    ) -> InvoiceResult:
        """Create an invoice directly in Finalized and sell its line items.

        The invoice never exists as a Draft. If a line item fails part way,
        it is left Finalized with the rows written so far; voiding it
        reverses exactly those rows.

        Raises:
            ConfigurationError: If the direct flow is disabled
            ValidationError: If there are no line items
            PartialReconciliationError: If a line item failed
        """
        if not self.settings.direct_finalize_enabled:
            raise ConfigurationError("Direct finalize flow is disabled")
        if not line_items:
            raise ValidationError("Invoice must have at least one line item", "line_items")

        invoice = await self._create(draft, InvoiceStatus.FINALIZED)
        async with self._guard(invoice.require_id()):
            report = await self.orchestrator.finalize_line_items(
                invoice, line_items, expected_status=InvoiceStatus.FINALIZED
            )
            updated = await self._write_status(
                invoice, InvoiceStatus.FINALIZED, report.total_amount
            )
        return InvoiceResult(invoice=updated, report=report)

    async def void(self, invoice_id: str) -> InvoiceResult:
        """Reverse every sale row of a Finalized invoice and mark it Void.

        Raises:
            InvoiceNotFoundError: If the invoice does not exist
            InvalidTransitionError: If the invoice is not Finalized
            PartialReconciliationError: If a reversal failed; the invoice stays Finalized
            ConcurrentModificationError: If the invoice changed during the call
        """
        async with self._guard(invoice_id):
            invoice = await self._load(invoice_id)
            report = await self.orchestrator.void_transactions(invoice)
            updated = await self._write_status(invoice, InvoiceStatus.VOID)
        return InvoiceResult(invoice=updated, report=report)

    async def mark_paid(self, invoice_id: str) -> InvoiceResult:
        """Finalized -> Paid. Status change only."""
        return await self._transition(invoice_id, InvoiceStatus.FINALIZED, InvoiceStatus.PAID)

    async def cancel(self, invoice_id: str) -> InvoiceResult:
        """Draft -> Void. A draft has no ledger rows, so nothing is reversed."""
        return await self._transition(invoice_id, InvoiceStatus.DRAFT, InvoiceStatus.VOID)

    async def _transition(
        self, invoice_id: str, expected: InvoiceStatus, requested: InvoiceStatus
    ) -> InvoiceResult:
        async with self._guard(invoice_id):
            invoice = await self._load(invoice_id)
            if invoice.status != expected or not can_transition(invoice.status, requested):
                raise InvalidTransitionError(invoice_id, invoice.status.value, requested.value)
            updated = await self._write_status(invoice, requested)
        return InvoiceResult(invoice=updated)
