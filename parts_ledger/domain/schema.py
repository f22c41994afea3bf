"""Domain models for parts, buyers, invoices and ledger transactions.

Field names are the domain's own; the list store's native column names live
in the entity mapper.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from parts_ledger.shared.errors import ValidationError

CENT = Decimal("0.01")


class MovementType(str, Enum):
    """Classification of a ledger row. Values are the stored choice labels."""

    RECEIVED = "In (Received)"
    SOLD = "Out (Sold)"
    ADJUSTMENT = "Adjustment"
    VOID_ADJUSTMENT = "Void adjustment"

    @property
    def sign(self) -> int:
        """+1 for movements that add stock, -1 for movements that remove it."""
        return -1 if self is MovementType.SOLD else 1

    @property
    def is_inbound(self) -> bool:
        return self.sign > 0


class InvoiceStatus(str, Enum):
    DRAFT = "Draft"
    FINALIZED = "Finalized"
    PAID = "Paid"
    VOID = "Void"


class PartStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class Part(BaseModel):
    """Inventory part keyed by its human-assigned ``part_id``."""

    id: str | None = Field(None, description="Store-assigned item id")
    part_id: str = Field(..., description="Business key, unique")
    description: str = ""
    category: str = "Uncategorized"
    inventory_on_hand: int = Field(0, description="Cached stock level, never negative")
    opening_inventory: int | None = Field(
        None, description="Stock level the part was created with; None for legacy items"
    )
    unit_cost: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    status: PartStatus = PartStatus.ACTIVE
    created_at: datetime | None = None
    modified_at: datetime | None = None

    def require_id(self) -> str:
        """Store item id, for parts that were read back from the store."""
        if self.id is None:
            raise ValidationError(f"Part {self.part_id} has no store id", "id")
        return self.id


class Buyer(BaseModel):
    id: str | None = None
    buyer_name: str
    contact_email: str = ""
    phone: str = ""


class Transaction(BaseModel):
    """Immutable ledger row describing one stock movement."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    part_id: str
    movement_type: MovementType
    quantity: int = Field(..., description="Positive; sign implied by movement_type")
    unit_cost: Decimal | None = Field(None, description="Recorded on inbound rows")
    unit_price: Decimal | None = Field(None, description="Recorded on outbound rows")
    invoice_ref: str | None = Field(None, description="Invoice id for Out / Void adjustment rows")
    buyer_ref: str | None = None
    supplier: str = ""
    notes: str = ""
    created_at: datetime | None = None

    @property
    def signed_quantity(self) -> int:
        return self.movement_type.sign * self.quantity


class Invoice(BaseModel):
    id: str | None = None
    invoice_number: str
    buyer_id: str
    invoice_date: date | None = None
    total_amount: Decimal = Decimal("0")
    status: InvoiceStatus = InvoiceStatus.DRAFT
    notes: str = ""
    created_at: datetime | None = None
    etag: str | None = Field(None, description="Store concurrency token", exclude=True)

    def require_id(self) -> str:
        if self.id is None:
            raise ValidationError(f"Invoice {self.invoice_number} has no store id", "id")
        return self.id


class LineItem(BaseModel):
    """Transient part + quantity + price entry supplied when finalizing.

    ``unit_price`` falls back to the part's list price when omitted.
    """

    part_id: str
    quantity: int
    unit_price: Decimal | None = Field(None, ge=0)

    def line_total(self, unit_price: Decimal) -> Decimal:
        return (unit_price * self.quantity).quantize(CENT)


class InvoiceDraft(BaseModel):
    """Input for creating an invoice."""

    invoice_number: str | None = Field(
        None, description="Generated as INV-YYYYMMDD-HHMMSS when omitted"
    )
    buyer_id: str
    invoice_date: date | None = None
    notes: str = ""


class PartCreate(BaseModel):
    part_id: str = Field(..., min_length=2, max_length=50, pattern=r"^[A-Za-z0-9_-]+$")
    description: str = Field(..., min_length=1, max_length=255)
    category: str = "Uncategorized"
    inventory_on_hand: int = Field(0, ge=0, description="Starting stock; only set at creation")
    unit_cost: Decimal = Field(Decimal("0"), ge=0)
    unit_price: Decimal = Field(Decimal("0"), ge=0)
    status: PartStatus = PartStatus.ACTIVE


class PartUpdate(BaseModel):
    """Catalog edit. Stock level is deliberately absent: it moves only via the ledger."""

    description: str | None = Field(None, min_length=1, max_length=255)
    category: str | None = None
    unit_cost: Decimal | None = Field(None, ge=0)
    unit_price: Decimal | None = Field(None, ge=0)
    status: PartStatus | None = None


class BuyerCreate(BaseModel):
    buyer_name: str = Field(..., min_length=2, max_length=100)
    contact_email: str = Field("", pattern=r"^$|^[^\s@]+@[^\s@]+\.[^\s@]+$")
    phone: str = ""


class BuyerUpdate(BaseModel):
    buyer_name: str | None = Field(None, min_length=2, max_length=100)
    contact_email: str | None = Field(None, pattern=r"^$|^[^\s@]+@[^\s@]+\.[^\s@]+$")
    phone: str | None = None
