"""Bidirectional mapping between list-store records and domain models.

SharePoint column names (``Title``, ``InventoryOnHand``...) only appear in
this module. Reads apply the same defaults the lists have always had (empty
category is ``Uncategorized``, missing stock is 0); writes drop None values,
turn Decimals into numbers and enums into their choice labels.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

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
from parts_ledger.shared.errors import ValidationError
from parts_ledger.store.base import Collection, StoreRecord


FIELD_MAPS: dict[Collection, dict[str, str]] = {
    Collection.PARTS: {
        "part_id": "Title",
        "description": "Description",
        "category": "Category",
        "inventory_on_hand": "InventoryOnHand",
        "opening_inventory": "OpeningInventory",
        "unit_cost": "UnitCost",
        "unit_price": "UnitPrice",
        "status": "Status",
    },
    Collection.BUYERS: {
        "buyer_name": "Title",
        "contact_email": "ContactEmail",
        "phone": "Phone",
    },
    Collection.INVOICES: {
        "invoice_number": "Title",
        "buyer_id": "Buyer",
        "invoice_date": "InvoiceDate",
        "total_amount": "TotalAmount",
        "status": "Status",
        "notes": "Notes",
    },
    Collection.TRANSACTIONS: {
        "part_id": "Part",
        "movement_type": "MovementType",
        "quantity": "Quantity",
        "unit_cost": "UnitCost",
        "unit_price": "UnitPrice",
        "invoice_ref": "Invoice",
        "buyer_ref": "Buyer",
        "supplier": "Supplier",
        "notes": "Notes",
    },
}

# Pseudo-columns every list supports for ordering
SYSTEM_COLUMNS = {"created_at": "Created", "modified_at": "Modified"}


def _to_native(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    return value


def _decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def _optional_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _date(value: Any) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    # dateTime columns come back as 2025-03-01T00:00:00Z
    return date.fromisoformat(str(value)[:10])


class EntityMapper:
    """Translates between store records and domain models."""

    def native_field(self, collection: Collection, field: str) -> str:
        """Native column name for a domain field.

        Raises:
            ValueError: If the field is not mapped for the collection
        """
        if field in SYSTEM_COLUMNS:
            return SYSTEM_COLUMNS[field]
        try:
            return FIELD_MAPS[collection][field]
        except KeyError:
            raise ValueError(f"Unknown field '{field}' for {collection.value}") from None

    def filters(self, collection: Collection, **criteria: Any) -> dict[str, Any]:
        """Domain-field equality criteria to native-column filters; None values are skipped."""
        return {
            self.native_field(collection, name): _to_native(value)
            for name, value in criteria.items()
            if value is not None
        }

    def _native(self, collection: Collection, data: dict[str, Any]) -> dict[str, Any]:
        mapping = FIELD_MAPS[collection]
        return {
            mapping[name]: _to_native(value)
            for name, value in data.items()
            if name in mapping and value is not None
        }

    # Reads

    @staticmethod
    def _fields(record: StoreRecord) -> dict[str, Any]:
        fields: dict[str, Any] = record.get("fields") or {}
        return fields

    def to_part(self, record: StoreRecord) -> Part:
        fields = self._fields(record)
        raw_status = fields.get("Status") or PartStatus.ACTIVE.value
        # Legacy choices (Obsolete, Disposed) are treated as inactive
        status = PartStatus.ACTIVE if raw_status == PartStatus.ACTIVE.value else PartStatus.INACTIVE
        return Part(
            id=str(record["id"]),
            part_id=fields.get("Title") or "",
            description=fields.get("Description") or "",
            category=fields.get("Category") or "Uncategorized",
            inventory_on_hand=int(fields.get("InventoryOnHand") or 0),
            opening_inventory=_optional_int(fields.get("OpeningInventory")),
            unit_cost=_decimal(fields.get("UnitCost")),
            unit_price=_decimal(fields.get("UnitPrice")),
            status=status,
            created_at=record.get("createdDateTime"),
            modified_at=record.get("lastModifiedDateTime"),
        )

    def to_buyer(self, record: StoreRecord) -> Buyer:
        fields = self._fields(record)
        return Buyer(
            id=str(record["id"]),
            buyer_name=fields.get("Title") or "",
            contact_email=fields.get("ContactEmail") or "",
            phone=fields.get("Phone") or "",
        )

    def to_invoice(self, record: StoreRecord) -> Invoice:
        fields = self._fields(record)
        return Invoice(
            id=str(record["id"]),
            invoice_number=fields.get("Title") or "",
            buyer_id=str(fields.get("Buyer") or ""),
            invoice_date=_date(fields.get("InvoiceDate")),
            total_amount=_decimal(fields.get("TotalAmount")),
            status=InvoiceStatus(fields.get("Status") or InvoiceStatus.DRAFT.value),
            notes=fields.get("Notes") or "",
            created_at=record.get("createdDateTime"),
            etag=record.get("@odata.etag"),
        )

    def to_transaction(self, record: StoreRecord) -> Transaction:
        """Ledger row from a record.

        Raises:
            ValidationError: If the row has no recognised MovementType
        """
        fields = self._fields(record)
        raw_type = fields.get("MovementType")
        try:
            movement_type = MovementType(raw_type)
        except ValueError:
            raise ValidationError(
                f"Transaction {record.get('id')} has unknown movement type {raw_type!r}",
                "movement_type",
            ) from None
        return Transaction(
            id=str(record["id"]),
            part_id=fields.get("Part") or "",
            movement_type=movement_type,
            quantity=int(fields.get("Quantity") or 0),
            unit_cost=_optional_decimal(fields.get("UnitCost")),
            unit_price=_optional_decimal(fields.get("UnitPrice")),
            invoice_ref=str(fields["Invoice"]) if fields.get("Invoice") else None,
            buyer_ref=str(fields["Buyer"]) if fields.get("Buyer") else None,
            supplier=fields.get("Supplier") or "",
            notes=fields.get("Notes") or "",
            created_at=record.get("createdDateTime"),
        )

    # Writes

    def part_fields(self, part: PartCreate) -> dict[str, Any]:
        """Columns for a new part, including its starting stock.

        The starting stock is also kept as OpeningInventory, the base a ledger
        replay starts from.
        """
        data = part.model_dump()
        data["opening_inventory"] = part.inventory_on_hand
        return self._native(Collection.PARTS, data)

    def part_update_fields(self, update: PartUpdate) -> dict[str, Any]:
        """Columns for a catalog edit. Never contains InventoryOnHand."""
        return self._native(Collection.PARTS, update.model_dump(exclude_unset=True))

    def inventory_fields(self, inventory_on_hand: int) -> dict[str, Any]:
        return {FIELD_MAPS[Collection.PARTS]["inventory_on_hand"]: inventory_on_hand}

    def buyer_fields(self, buyer: BuyerCreate | BuyerUpdate) -> dict[str, Any]:
        return self._native(Collection.BUYERS, buyer.model_dump(exclude_unset=True))

    def invoice_fields(self, invoice: Invoice) -> dict[str, Any]:
        return self._native(
            Collection.INVOICES,
            invoice.model_dump(exclude={"id", "created_at", "etag"}),
        )

    def invoice_status_fields(
        self, status: InvoiceStatus, total_amount: Decimal | None = None
    ) -> dict[str, Any]:
        return self._native(
            Collection.INVOICES, {"status": status, "total_amount": total_amount}
        )

    def transaction_fields(self, transaction: Transaction) -> dict[str, Any]:
        """Columns for a new ledger row.

        Inbound rows record cost only, outbound rows price only. Invoice and
        buyer references are only kept on Out (Sold) and Void adjustment rows.
        """
        data = transaction.model_dump(exclude={"id", "created_at"})
        if transaction.movement_type.is_inbound:
            data.pop("unit_price")
        else:
            data.pop("unit_cost")
        if transaction.movement_type not in (MovementType.SOLD, MovementType.VOID_ADJUSTMENT):
            data.pop("invoice_ref")
            data.pop("buyer_ref")
        return self._native(Collection.TRANSACTIONS, data)

    def to_entity(self, collection: Collection, record: StoreRecord) -> Any:
        readers = {
            Collection.PARTS: self.to_part,
            Collection.BUYERS: self.to_buyer,
            Collection.INVOICES: self.to_invoice,
            Collection.TRANSACTIONS: self.to_transaction,
        }
        return readers[collection](record)
