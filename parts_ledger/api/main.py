"""FastAPI application for the parts ledger.

Thin HTTP adapter over the inventory service:
- Health, readiness and Prometheus metrics endpoints
- Invoice lifecycle (create, finalize, direct finalize, void, pay, cancel)
- Stock receipts and adjustments, part history and ledger audit
- Parts and buyers catalog, dashboard stats

Typed core errors are turned into JSON error bodies with a status code per
error kind. A partially applied finalize or void answers 207 with the step
report so the caller can see exactly which ledger rows were written.

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
from datetime import UTC, datetime
from decimal import Decimal

from fastapi import FastAPI, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from parts_ledger.api import metrics
from parts_ledger.catalog.service import InventoryStats
from parts_ledger.core.service import create_inventory_service
from parts_ledger.domain.schema import (
    Buyer,
    BuyerCreate,
    BuyerUpdate,
    Invoice,
    InvoiceDraft,
    InvoiceStatus,
    LineItem,
    Part,
    PartCreate,
    PartStatus,
    PartUpdate,
    Transaction,
)
from parts_ledger.invoicing.lifecycle import InvoiceResult
from parts_ledger.ledger.service import LedgerAudit, MovementResult
from parts_ledger.shared.config import get_settings
from parts_ledger.shared.errors import (
    ConcurrentModificationError,
    ConfigurationError,
    InvalidTransitionError,
    LedgerDivergenceError,
    NotFoundError,
    PartialReconciliationError,
    PartsLedgerError,
    StoreRateLimitedError,
    StoreUnavailableError,
    ValidationError,
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Parts Ledger",
    description="Auto-parts inventory, invoicing and stock-movement ledger API",
    version=settings.service_version,
)

inventory_service = create_inventory_service(settings)


# Most specific first; the first isinstance match wins
ERROR_STATUS: list[tuple[type[PartsLedgerError], int]] = [
    (PartialReconciliationError, status.HTTP_207_MULTI_STATUS),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_412_PRECONDITION_FAILED),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StoreRateLimitedError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StoreUnavailableError, status.HTTP_502_BAD_GATEWAY),
    (LedgerDivergenceError, status.HTTP_502_BAD_GATEWAY),
]


def status_for_error(error: PartsLedgerError) -> int:
    for error_class, status_code in ERROR_STATUS:
        if isinstance(error, error_class):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(PartsLedgerError)
async def parts_ledger_error_handler(request: Request, exc: PartsLedgerError) -> JSONResponse:
    """Render a typed core error as a JSON body."""
    status_code = status_for_error(exc)
    metrics.api_errors_total.labels(code=exc.code).inc()
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, route, and status
    - Request duration by method and route
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Label by route template so item ids don't explode cardinality
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    store: str
    lists: dict[str, bool] = Field(default_factory=dict)
    error: str | None = None


class FinalizeRequest(BaseModel):
    line_items: list[LineItem]


class DirectFinalizeRequest(BaseModel):
    invoice: InvoiceDraft
    line_items: list[LineItem]


class ReceiptRequest(BaseModel):
    quantity: int
    unit_cost: Decimal | None = None
    supplier: str = ""
    notes: str = ""


class AdjustmentRequest(BaseModel):
    quantity: int
    reason: str


class MovementResponse(BaseModel):
    """Ledger row written by a movement and the part's stock before and after."""

    transaction: Transaction
    part: Part
    previous_on_hand: int
    new_on_hand: int
    floor_clamped: bool

    @classmethod
    def from_result(cls, result: MovementResult) -> "MovementResponse":
        return cls(
            transaction=result.transaction,
            part=result.part,
            previous_on_hand=result.previous_on_hand,
            new_on_hand=result.new_on_hand,
            floor_clamped=result.floor_clamped,
        )


class AuditReport(BaseModel):
    audits: list[LedgerAudit]
    inconsistent: int
    generated_at: datetime


# Health


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Liveness check endpoint."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
async def readiness_check(response: Response) -> ReadinessResponse:
    """Readiness check: every list in the store must answer.

    Returns 503 when any list is unreachable.
    """
    health = await inventory_service.health_check()
    if not health["healthy"]:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(
        ready=health["healthy"],
        store=health["store"],
        lists=health.get("lists", {}),
        error=health.get("error"),
    )


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


# Invoices


@app.post(
    "/api/v1/invoices",
    response_model=Invoice,
    status_code=status.HTTP_201_CREATED,
    tags=["Invoices"],
)
async def create_invoice(draft: InvoiceDraft) -> Invoice:
    """Create a Draft invoice. The invoice number is generated when omitted."""
    return await inventory_service.create_invoice(draft)


@app.post(
    "/api/v1/invoices/finalized",
    response_model=InvoiceResult,
    status_code=status.HTTP_201_CREATED,
    tags=["Invoices"],
)
async def create_and_finalize_invoice(request: DirectFinalizeRequest) -> InvoiceResult:
    """Create an invoice directly in Finalized and sell its line items."""
    return await inventory_service.create_and_finalize_invoice(request.invoice, request.line_items)


@app.get("/api/v1/invoices", response_model=list[Invoice], tags=["Invoices"])
async def list_invoices(
    invoice_status: InvoiceStatus | None = Query(None, alias="status"),
    buyer_id: str | None = None,
) -> list[Invoice]:
    """List invoices, newest first."""
    return await inventory_service.list_invoices(status=invoice_status, buyer_id=buyer_id)


@app.get(
    "/api/v1/invoices/by-number/{invoice_number}", response_model=Invoice, tags=["Invoices"]
)
async def get_invoice_by_number(invoice_number: str) -> Invoice:
    return await inventory_service.get_invoice_by_number(invoice_number)


@app.get("/api/v1/invoices/{invoice_id}", response_model=Invoice, tags=["Invoices"])
async def get_invoice(invoice_id: str) -> Invoice:
    return await inventory_service.get_invoice(invoice_id)


@app.get(
    "/api/v1/invoices/{invoice_id}/line-items",
    response_model=list[Transaction],
    tags=["Invoices"],
)
async def get_invoice_line_items(invoice_id: str) -> list[Transaction]:
    """Ledger rows written for the invoice, oldest first."""
    return await inventory_service.invoice_line_items(invoice_id)


@app.post(
    "/api/v1/invoices/{invoice_id}/finalize", response_model=InvoiceResult, tags=["Invoices"]
)
async def finalize_invoice(invoice_id: str, request: FinalizeRequest) -> InvoiceResult:
    """Sell the line items against a Draft invoice and mark it Finalized.

    Returns 207 with the step report if a line item fails part way; the
    invoice stays Draft and the same call can be repeated to resume.
    """
    return await inventory_service.finalize_invoice(invoice_id, request.line_items)


@app.post("/api/v1/invoices/{invoice_id}/void", response_model=InvoiceResult, tags=["Invoices"])
async def void_invoice(invoice_id: str) -> InvoiceResult:
    """Reverse the sale rows of a Finalized invoice and mark it Void."""
    return await inventory_service.void_invoice(invoice_id)


@app.post("/api/v1/invoices/{invoice_id}/pay", response_model=InvoiceResult, tags=["Invoices"])
async def mark_invoice_paid(invoice_id: str) -> InvoiceResult:
    return await inventory_service.mark_invoice_paid(invoice_id)


@app.post(
    "/api/v1/invoices/{invoice_id}/cancel", response_model=InvoiceResult, tags=["Invoices"]
)
async def cancel_invoice(invoice_id: str) -> InvoiceResult:
    """Void a Draft invoice. No ledger effect."""
    return await inventory_service.cancel_invoice(invoice_id)


# Parts


@app.post(
    "/api/v1/parts", response_model=Part, status_code=status.HTTP_201_CREATED, tags=["Parts"]
)
async def create_part(part: PartCreate) -> Part:
    return await inventory_service.create_part(part)


@app.get("/api/v1/parts", response_model=list[Part], tags=["Parts"])
async def list_parts(
    category: str | None = None,
    part_status: PartStatus | None = Query(None, alias="status"),
) -> list[Part]:
    return await inventory_service.list_parts(category=category, status=part_status)


@app.get("/api/v1/parts/{part_id}", response_model=Part, tags=["Parts"])
async def get_part(part_id: str) -> Part:
    return await inventory_service.get_part(part_id)


@app.patch("/api/v1/parts/{part_id}", response_model=Part, tags=["Parts"])
async def update_part(part_id: str, update: PartUpdate) -> Part:
    """Edit catalog fields. Stock can only change through receipts, adjustments and invoices."""
    return await inventory_service.update_part(part_id, update)


@app.post(
    "/api/v1/parts/{part_id}/receipts",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Parts"],
)
async def record_receipt(part_id: str, request: ReceiptRequest) -> MovementResponse:
    result = await inventory_service.record_inbound_receipt(
        part_id,
        request.quantity,
        unit_cost=request.unit_cost,
        supplier=request.supplier,
        notes=request.notes,
    )
    return MovementResponse.from_result(result)


@app.post(
    "/api/v1/parts/{part_id}/adjustments",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Parts"],
)
async def record_adjustment(part_id: str, request: AdjustmentRequest) -> MovementResponse:
    result = await inventory_service.record_adjustment(part_id, request.quantity, request.reason)
    return MovementResponse.from_result(result)


@app.get("/api/v1/parts/{part_id}/history", response_model=list[Transaction], tags=["Parts"])
async def get_part_history(
    part_id: str, limit: int | None = Query(None, ge=1, le=500)
) -> list[Transaction]:
    """Ledger rows for the part, newest first."""
    return await inventory_service.part_history(part_id, limit)


@app.get("/api/v1/parts/{part_id}/audit", response_model=LedgerAudit, tags=["Parts"])
async def audit_part(
    part_id: str, starting_inventory: int | None = Query(None, ge=0)
) -> LedgerAudit:
    """Replay the part's ledger and compare it with the stored stock level."""
    return await inventory_service.audit_part(part_id, starting_inventory)


@app.post("/api/v1/parts/{part_id}/reconcile", response_model=LedgerAudit, tags=["Parts"])
async def reconcile_part(part_id: str) -> LedgerAudit:
    """Set the stored stock level to the ledger replay; returns the audit taken before."""
    return await inventory_service.reconcile_part(part_id)


@app.get("/api/v1/audit", response_model=AuditReport, tags=["Parts"])
async def audit_inventory() -> AuditReport:
    audits = await inventory_service.audit_inventory()
    return AuditReport(
        audits=audits,
        inconsistent=sum(1 for audit in audits if not audit.consistent),
        generated_at=datetime.now(UTC),
    )


# Buyers


@app.post(
    "/api/v1/buyers", response_model=Buyer, status_code=status.HTTP_201_CREATED, tags=["Buyers"]
)
async def create_buyer(buyer: BuyerCreate) -> Buyer:
    return await inventory_service.create_buyer(buyer)


@app.get("/api/v1/buyers", response_model=list[Buyer], tags=["Buyers"])
async def list_buyers() -> list[Buyer]:
    return await inventory_service.list_buyers()


@app.get("/api/v1/buyers/{buyer_id}", response_model=Buyer, tags=["Buyers"])
async def get_buyer(buyer_id: str) -> Buyer:
    return await inventory_service.get_buyer(buyer_id)


@app.patch("/api/v1/buyers/{buyer_id}", response_model=Buyer, tags=["Buyers"])
async def update_buyer(buyer_id: str, update: BuyerUpdate) -> Buyer:
    return await inventory_service.update_buyer(buyer_id, update)


@app.delete(
    "/api/v1/buyers/{buyer_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Buyers"]
)
async def delete_buyer(buyer_id: str) -> Response:
    await inventory_service.delete_buyer(buyer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Stats


@app.get("/api/v1/stats", response_model=InventoryStats, tags=["Stats"])
async def get_inventory_stats() -> InventoryStats:
    """Dashboard overview: stock value, low/out-of-stock counts, revenue, per-category totals."""
    return await inventory_service.inventory_stats()
