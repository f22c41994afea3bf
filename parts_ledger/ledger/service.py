"""Inventory ledger: the only code path that changes a part's stock level.

Every movement appends one immutable ledger row and then patches the part's
cached ``inventory_on_hand``. The cached level never goes below zero; a
movement that would take it negative is clamped and recorded as a floor
event instead of failing.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from prometheus_client import Counter
from pydantic import BaseModel

from parts_ledger.domain.schema import MovementType, Part, Transaction
from parts_ledger.shared.errors import (
    InvalidQuantityError,
    LedgerDivergenceError,
    PartNotFoundError,
    PartsLedgerError,
)
from parts_ledger.store.repository import InventoryRepository

logger = logging.getLogger(__name__)


ledger_movements_total = Counter(
    "ledger_movements_total",
    "Ledger rows written",
    ["movement_type"],
)

inventory_floor_events_total = Counter(
    "inventory_floor_events_total",
    "Movements whose result was clamped at zero stock",
    ["movement_type"],
)

ledger_divergence_total = Counter(
    "ledger_divergence_total",
    "Ledger rows written whose part stock update failed",
)

ledger_repairs_total = Counter(
    "ledger_repairs_total",
    "Stored stock levels patched back to the replay of their ledger",
)


@dataclass
class MovementResult:
    """Outcome of one applied movement."""

    transaction: Transaction
    part: Part
    previous_on_hand: int
    new_on_hand: int
    floor_clamped: bool = False

    @property
    def shortfall(self) -> int:
        """Units requested beyond what was on hand (0 for inbound movements)."""
        if self.transaction.movement_type.is_inbound:
            return 0
        return max(0, self.transaction.quantity - self.previous_on_hand)


class ReplayResult(BaseModel):
    starting_inventory: int
    final_on_hand: int
    net_movement: int
    floor_events: int


class LedgerAudit(BaseModel):
    """Comparison of a part's cached stock level with its ledger."""

    part_id: str
    cached_on_hand: int
    transaction_count: int
    starting_inventory: int
    starting_inventory_inferred: bool
    replayed_on_hand: int
    net_movement: int
    floor_events: int
    consistent: bool
    discrepancy: int


def validate_quantity(quantity: object) -> int:
    """Return quantity if it is a positive integer.

    Raises:
        InvalidQuantityError: For zero, negatives, non-integers and booleans
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantityError(quantity)
    return quantity


def replay(starting_inventory: int, transactions: Iterable[Transaction]) -> ReplayResult:
    """Re-apply ledger rows in order, clamping at zero after each step.

    Args:
        starting_inventory: Stock level before the first row
        transactions: Rows in creation order

    Returns:
        Final level, net signed movement and number of clamped steps
    """
    level = starting_inventory
    net = 0
    floor_events = 0
    for transaction in transactions:
        net += transaction.signed_quantity
        level += transaction.signed_quantity
        if level < 0:
            floor_events += 1
            level = 0
    return ReplayResult(
        starting_inventory=starting_inventory,
        final_on_hand=level,
        net_movement=net,
        floor_events=floor_events,
    )


class InventoryLedger:
    """Applies stock movements to parts through the repository."""

    def __init__(self, repository: InventoryRepository) -> None:
        self.repository = repository

    async def apply_movement(
        self,
        part_id: str,
        movement_type: MovementType,
        quantity: int,
        *,
        unit_cost: Decimal | None = None,
        unit_price: Decimal | None = None,
        invoice_ref: str | None = None,
        buyer_ref: str | None = None,
        supplier: str = "",
        notes: str = "",
    ) -> MovementResult:
        """Append a ledger row and move the part's stock level by its signed quantity.

        The part is read fresh so the delta applies to the stored level, not a
        cached one. Inbound rows default their cost to the part's unit cost,
        outbound rows their price to the part's unit price.

        Args:
            part_id: Business key of the part
            movement_type: Direction and kind of the movement
            quantity: Positive number of units
            unit_cost: Cost per unit (inbound rows)
            unit_price: Price per unit (outbound rows)
            invoice_ref: Invoice id for sale and void rows
            buyer_ref: Buyer id for sale and void rows
            supplier: Supplier name for receipts
            notes: Free-text note stored on the row

        Returns:
            MovementResult with the written row and the before/after levels

        Raises:
            InvalidQuantityError: If quantity is not a positive integer
            PartNotFoundError: If no part has this business key
            StoreUnavailableError: If the ledger row could not be written
            LedgerDivergenceError: If the row was written but the stock patch failed
        """
        validate_quantity(quantity)

        part = await self._read_part(part_id)

        previous = part.inventory_on_hand
        unclamped = previous + movement_type.sign * quantity
        new_level = max(0, unclamped)
        floor_clamped = unclamped < 0

        if movement_type.is_inbound:
            unit_cost = part.unit_cost if unit_cost is None else unit_cost
        else:
            unit_price = part.unit_price if unit_price is None else unit_price

        written = await self.repository.create_transaction(
            Transaction(
                part_id=part.part_id,
                movement_type=movement_type,
                quantity=quantity,
                unit_cost=unit_cost,
                unit_price=unit_price,
                invoice_ref=invoice_ref,
                buyer_ref=buyer_ref,
                supplier=supplier,
                notes=notes,
            )
        )
        ledger_movements_total.labels(movement_type=movement_type.value).inc()

        try:
            updated = await self.repository.set_inventory(part, new_level)
        except PartsLedgerError as e:
            ledger_divergence_total.inc()
            logger.error(
                f"Ledger row {written.id} written for part {part_id} "
                f"but stock update to {new_level} failed: {e}"
            )
            raise LedgerDivergenceError(written, e) from e

        if floor_clamped:
            inventory_floor_events_total.labels(movement_type=movement_type.value).inc()
            logger.warning(
                f"Inventory floor reached for part {part_id}: {previous} on hand, "
                f"{movement_type.value} of {quantity} clamped to 0"
            )

        logger.info(
            f"{movement_type.value} {quantity} x {part_id}: {previous} -> {new_level} "
            f"(transaction {written.id})"
        )
        return MovementResult(
            transaction=written,
            part=updated,
            previous_on_hand=previous,
            new_on_hand=new_level,
            floor_clamped=floor_clamped,
        )

    async def audit_part(self, part_id: str, starting_inventory: int | None = None) -> LedgerAudit:
        """Replay a part's ledger and compare it with the cached stock level.

        The replay starts from starting_inventory when given, otherwise from
        the opening inventory recorded when the part was created. Parts that
        predate that column have no recorded base; for them the start is
        inferred as the cached level minus the net ledger movement (floored
        at zero). An inferred audit only catches clamped steps: a row whose
        stock patch was lost still replays to the cached level, so such
        audits are flagged with starting_inventory_inferred.

        Raises:
            PartNotFoundError: If no part has this business key
        """
        part = await self._read_part(part_id)
        return await self._audit(part, starting_inventory)

    async def reconcile_part(self, part_id: str) -> LedgerAudit:
        """Restore a part's stored stock level to the replay of its ledger.

        Repairs the gap a LedgerDivergenceError leaves behind (row written,
        stock patch lost). No ledger row is written for the repair. Parts
        without a recorded opening inventory are audited but never patched.

        Returns:
            The audit taken before any repair

        Raises:
            PartNotFoundError: If no part has this business key
            StoreUnavailableError: If the stock patch failed
        """
        part = await self._read_part(part_id)
        audit = await self._audit(part)
        if audit.consistent or audit.starting_inventory_inferred:
            return audit

        await self.repository.set_inventory(part, audit.replayed_on_hand)
        ledger_repairs_total.inc()
        logger.warning(
            f"Repaired stock for part {part_id}: {audit.cached_on_hand} -> "
            f"{audit.replayed_on_hand} to match {audit.transaction_count} ledger row(s)"
        )
        return audit

    async def _read_part(self, part_id: str) -> Part:
        part = await self.repository.get_part_by_part_id(part_id, fresh=True)
        if part is None:
            raise PartNotFoundError(part_id)
        return part

    async def _audit(self, part: Part, starting_inventory: int | None = None) -> LedgerAudit:
        transactions = await self.repository.list_transactions(
            part_id=part.part_id, descending=False, fresh=True
        )
        if starting_inventory is None:
            starting_inventory = part.opening_inventory
        inferred = starting_inventory is None
        if starting_inventory is None:
            net = sum(t.signed_quantity for t in transactions)
            starting_inventory = max(0, part.inventory_on_hand - net)

        result = replay(starting_inventory, transactions)
        discrepancy = part.inventory_on_hand - result.final_on_hand
        audit = LedgerAudit(
            part_id=part.part_id,
            cached_on_hand=part.inventory_on_hand,
            transaction_count=len(transactions),
            starting_inventory=starting_inventory,
            starting_inventory_inferred=inferred,
            replayed_on_hand=result.final_on_hand,
            net_movement=result.net_movement,
            floor_events=result.floor_events,
            consistent=discrepancy == 0,
            discrepancy=discrepancy,
        )
        if not audit.consistent:
            logger.warning(
                f"Ledger audit mismatch for part {part.part_id}: cached {audit.cached_on_hand}, "
                f"replayed {audit.replayed_on_hand}"
            )
        return audit
