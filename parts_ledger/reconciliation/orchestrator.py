"""Multi-step finalize and void against a store with no cross-record transactions.

Line items (or the sale rows being reversed) are processed one at a time. On
the first failure the remaining steps are not attempted, steps already
applied stay in place, and a PartialReconciliationError carrying the full
step report is raised.

A retry after a partial failure resumes instead of duplicating: ledger rows
the invoice already has are matched by (part, quantity) and their steps are
reported as skipped. A skipped row may be one whose stock patch was lost, so
each part with a skipped step has its stored level reconciled with its
ledger before the run continues.
"""

import logging
from collections import Counter as Multiset
from decimal import Decimal
from enum import Enum
from typing import Literal, NoReturn

from prometheus_client import Counter
from pydantic import BaseModel, Field

from parts_ledger.domain.schema import (
    Invoice,
    InvoiceStatus,
    LineItem,
    MovementType,
    Transaction,
)
from parts_ledger.ledger.service import InventoryLedger, validate_quantity
from parts_ledger.shared.config import Settings
from parts_ledger.shared.errors import (
    InvalidTransitionError,
    LedgerDivergenceError,
    PartialReconciliationError,
    PartNotFoundError,
    PartsLedgerError,
    ValidationError,
)
from parts_ledger.store.repository import InventoryRepository

logger = logging.getLogger(__name__)


reconciliation_operations_total = Counter(
    "reconciliation_operations_total",
    "Finalize and void runs by outcome",
    ["operation", "outcome"],  # completed, partial
)

stock_shortfall_warnings_total = Counter(
    "stock_shortfall_warnings_total",
    "Sale line items that exceeded the stock on hand",
)


class StepStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"  # already in the ledger from an earlier attempt
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


class StepOutcome(BaseModel):
    """Result of one line item (finalize) or one reversed sale row (void)."""

    index: int
    part_id: str
    quantity: int | None = None
    status: StepStatus = StepStatus.NOT_ATTEMPTED
    transaction_id: str | None = None
    unit_price: Decimal | None = None
    previous_on_hand: int | None = None
    new_on_hand: int | None = None
    shortfall: int = 0
    error: str | None = None
    error_code: str | None = None


class ReconciliationReport(BaseModel):
    """Which steps of a finalize or void committed."""

    operation: Literal["finalize", "void"]
    invoice_id: str
    steps: list[StepOutcome] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    total_amount: Decimal = Decimal("0")

    @property
    def failed_step(self) -> StepOutcome | None:
        return next((s for s in self.steps if s.status == StepStatus.FAILED), None)

    @property
    def applied(self) -> list[StepOutcome]:
        return [s for s in self.steps if s.status == StepStatus.APPLIED]

    @property
    def not_attempted(self) -> list[StepOutcome]:
        return [s for s in self.steps if s.status == StepStatus.NOT_ATTEMPTED]

    @property
    def written_transaction_ids(self) -> list[str]:
        """Ledger rows written by this run (a failed step may still have written one)."""
        return [
            s.transaction_id
            for s in self.steps
            if s.transaction_id and s.status in (StepStatus.APPLIED, StepStatus.FAILED)
        ]

    @property
    def ok(self) -> bool:
        return self.failed_step is None


class ReconciliationOrchestrator:
    """Runs the ledger steps of finalize and void in order.

    Attributes:
        ledger: Applies each movement
        repository: Reads invoice ledger rows and parts
        settings: Supplies the oversell policy
    """

    def __init__(
        self,
        ledger: InventoryLedger,
        repository: InventoryRepository,
        settings: Settings,
    ) -> None:
        self.ledger = ledger
        self.repository = repository
        self.settings = settings

    @staticmethod
    def require_status(invoice: Invoice, expected: InvoiceStatus, requested: InvoiceStatus) -> None:
        """Raise InvalidTransitionError unless the invoice is in the expected status."""
        if invoice.status != expected:
            raise InvalidTransitionError(
                invoice.id or invoice.invoice_number, invoice.status.value, requested.value
            )

    async def finalize_line_items(
        self,
        invoice: Invoice,
        line_items: list[LineItem],
        expected_status: InvoiceStatus = InvoiceStatus.DRAFT,
    ) -> ReconciliationReport:
        """Write one Out (Sold) row per line item, in order.

        Args:
            invoice: Invoice as read under the caller's guard
            line_items: Items to sell; at least one
            expected_status: Status the invoice must be in

        Returns:
            Report with every step applied or skipped and the invoice total

        Raises:
            InvalidTransitionError: If the invoice is not in expected_status
            ValidationError: If there are no line items, or stock is short
                under the reject policy
            PartialReconciliationError: If a step failed after earlier steps
                may have committed
        """
        invoice_id = invoice.require_id()
        self.require_status(invoice, expected_status, InvoiceStatus.FINALIZED)
        if not line_items:
            raise ValidationError("Invoice must have at least one line item", "line_items")
        if self.settings.oversell_policy == "reject":
            await self._check_stock(line_items)

        report = ReconciliationReport(
            operation="finalize",
            invoice_id=invoice_id,
            steps=[
                StepOutcome(index=i, part_id=item.part_id, quantity=item.quantity)
                for i, item in enumerate(line_items)
            ],
        )
        existing = await self.repository.list_transactions(
            invoice_ref=invoice_id, movement_type=MovementType.SOLD, descending=False, fresh=True
        )
        already_written = _RowMatcher(existing)
        reconciled: set[str] = set()

        for item, step in zip(line_items, report.steps, strict=True):
            try:
                validate_quantity(item.quantity)
                previous = already_written.take(item.part_id, item.quantity)
                if previous is not None:
                    await self._reconcile_skipped(report, item.part_id, reconciled)
                    step.status = StepStatus.SKIPPED
                    step.transaction_id = previous.id
                    step.unit_price = (
                        item.unit_price if item.unit_price is not None else previous.unit_price
                    )
                    continue

                result = await self.ledger.apply_movement(
                    item.part_id,
                    MovementType.SOLD,
                    item.quantity,
                    unit_price=item.unit_price,
                    invoice_ref=invoice_id,
                    buyer_ref=invoice.buyer_id or None,
                    notes=f"Sale - Invoice {invoice.invoice_number}",
                )
            except PartsLedgerError as e:
                self._fail(report, step, e)

            step.status = StepStatus.APPLIED
            step.transaction_id = result.transaction.id
            step.unit_price = result.transaction.unit_price
            step.previous_on_hand = result.previous_on_hand
            step.new_on_hand = result.new_on_hand
            step.shortfall = result.shortfall
            if result.shortfall:
                stock_shortfall_warnings_total.inc()
                warning = (
                    f"Stock shortfall for {item.part_id}: sold {item.quantity}, "
                    f"{result.previous_on_hand} on hand"
                )
                report.warnings.append(warning)
                logger.warning(f"Invoice {invoice.invoice_number}: {warning}")

        report.total_amount = sum(
            (
                item.line_total(step.unit_price or Decimal("0"))
                for item, step in zip(line_items, report.steps, strict=True)
            ),
            Decimal("0"),
        )
        reconciliation_operations_total.labels(operation="finalize", outcome="completed").inc()
        return report

    async def void_transactions(self, invoice: Invoice) -> ReconciliationReport:
        """Write one Void adjustment per Out (Sold) row of the invoice, in order.

        Raises:
            InvalidTransitionError: If the invoice is not Finalized
            PartialReconciliationError: If a reversal failed part way
        """
        invoice_id = invoice.require_id()
        self.require_status(invoice, InvoiceStatus.FINALIZED, InvoiceStatus.VOID)

        sales = await self.repository.list_transactions(
            invoice_ref=invoice_id, movement_type=MovementType.SOLD, descending=False, fresh=True
        )
        reversals = await self.repository.list_transactions(
            invoice_ref=invoice_id,
            movement_type=MovementType.VOID_ADJUSTMENT,
            descending=False,
            fresh=True,
        )
        already_reversed = _RowMatcher(reversals)
        reconciled: set[str] = set()

        report = ReconciliationReport(
            operation="void",
            invoice_id=invoice_id,
            steps=[
                StepOutcome(index=i, part_id=sale.part_id, quantity=sale.quantity)
                for i, sale in enumerate(sales)
            ],
        )
        if not sales:
            warning = f"Invoice {invoice.invoice_number} has no sale rows to reverse"
            report.warnings.append(warning)
            logger.warning(warning)

        for sale, step in zip(sales, report.steps, strict=True):
            try:
                previous = already_reversed.take(sale.part_id, sale.quantity)
                if previous is not None:
                    await self._reconcile_skipped(report, sale.part_id, reconciled)
                    step.status = StepStatus.SKIPPED
                    step.transaction_id = previous.id
                    continue

                result = await self.ledger.apply_movement(
                    sale.part_id,
                    MovementType.VOID_ADJUSTMENT,
                    sale.quantity,
                    invoice_ref=invoice_id,
                    buyer_ref=sale.buyer_ref,
                    notes=f"Void adjustment - Invoice {invoice.invoice_number} voided",
                )
            except PartsLedgerError as e:
                self._fail(report, step, e)

            step.status = StepStatus.APPLIED
            step.transaction_id = result.transaction.id
            step.previous_on_hand = result.previous_on_hand
            step.new_on_hand = result.new_on_hand

        reconciliation_operations_total.labels(operation="void", outcome="completed").inc()
        return report

    async def _reconcile_skipped(
        self, report: ReconciliationReport, part_id: str, reconciled: set[str]
    ) -> None:
        """Bring a part with an already-written row back in line with its ledger, once per run."""
        if part_id in reconciled:
            return
        reconciled.add(part_id)
        audit = await self.ledger.reconcile_part(part_id)
        if audit.starting_inventory_inferred:
            warning = f"Stock for {part_id} not verified: no opening inventory recorded"
        elif not audit.consistent:
            warning = (
                f"Stock for {part_id} repaired from {audit.cached_on_hand} "
                f"to {audit.replayed_on_hand} to match its ledger"
            )
        else:
            return
        report.warnings.append(warning)
        logger.warning(f"Invoice {report.invoice_id}: {warning}")

    def _fail(
        self, report: ReconciliationReport, step: StepOutcome, error: PartsLedgerError
    ) -> NoReturn:
        """Mark step failed and raise the aggregate error; later steps stay not attempted."""
        step.status = StepStatus.FAILED
        step.error = error.message
        step.error_code = error.code
        if isinstance(error, LedgerDivergenceError):
            step.transaction_id = error.transaction.id
        reconciliation_operations_total.labels(operation=report.operation, outcome="partial").inc()
        partial = PartialReconciliationError(report)
        logger.error(partial.message)
        raise partial from error

    async def _check_stock(self, line_items: list[LineItem]) -> None:
        """Reject the whole sale up front if any part lacks the requested stock."""
        requested: Multiset[str] = Multiset()
        for item in line_items:
            requested[item.part_id] += validate_quantity(item.quantity)
        for part_id, quantity in requested.items():
            part = await self.repository.get_part_by_part_id(part_id, fresh=True)
            if part is None:
                raise PartNotFoundError(part_id)
            if part.inventory_on_hand < quantity:
                raise ValidationError(
                    f"Insufficient stock for {part_id}: {quantity} requested, "
                    f"{part.inventory_on_hand} on hand",
                    "line_items",
                )


class _RowMatcher:
    """Hands out existing ledger rows matching (part, quantity), each at most once."""

    def __init__(self, rows: list[Transaction]) -> None:
        self._rows: dict[tuple[str, int], list[Transaction]] = {}
        for row in rows:
            self._rows.setdefault((row.part_id, row.quantity), []).append(row)

    def take(self, part_id: str, quantity: int) -> Transaction | None:
        rows = self._rows.get((part_id, quantity))
        return rows.pop(0) if rows else None
