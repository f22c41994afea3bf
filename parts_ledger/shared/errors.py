"""Typed errors raised by the parts ledger core.

Every error carries a machine-readable ``code`` so the API layer (and any
other caller) can branch on the kind of failure instead of parsing messages.

Hierarchy:

    PartsLedgerError
    +-- ValidationError
    |   +-- InvalidQuantityError
    +-- NotFoundError
    |   +-- PartNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- BuyerNotFoundError
    +-- InvalidTransitionError
    +-- ConfigurationError
    +-- ConcurrentModificationError
    +-- StoreUnavailableError
    |   +-- StoreUnauthorizedError      (401)
    |   +-- StoreForbiddenError         (403)
    |   +-- StoreNotFoundError          (404)
    |   +-- StorePreconditionFailedError (412)
    |   +-- StoreRateLimitedError       (429)
    |   +-- StoreServerError            (5xx)
    +-- LedgerDivergenceError
    +-- PartialReconciliationError
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from parts_ledger.domain.schema import Transaction
    from parts_ledger.reconciliation.orchestrator import ReconciliationReport


class PartsLedgerError(Exception):
    """Base class for all errors raised by the core."""

    code = "PARTS_LEDGER_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for API responses."""
        return {"code": self.code, "message": self.message}


class ValidationError(PartsLedgerError):
    """Bad input: missing required field, malformed value."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class InvalidQuantityError(ValidationError):
    """Movement quantity is not a positive integer."""

    code = "INVALID_QUANTITY"

    def __init__(self, quantity: Any) -> None:
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}", "quantity")
        self.quantity = quantity


class NotFoundError(PartsLedgerError):
    """Referenced record does not exist."""

    code = "NOT_FOUND"


class PartNotFoundError(NotFoundError):
    code = "PART_NOT_FOUND"

    def __init__(self, part_id: str) -> None:
        super().__init__(f"Part {part_id} not found")
        self.part_id = part_id


class InvoiceNotFoundError(NotFoundError):
    code = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str) -> None:
        super().__init__(f"Invoice {invoice_id} not found")
        self.invoice_id = invoice_id


class BuyerNotFoundError(NotFoundError):
    code = "BUYER_NOT_FOUND"

    def __init__(self, buyer_id: str) -> None:
        super().__init__(f"Buyer {buyer_id} not found")
        self.buyer_id = buyer_id


class InvalidTransitionError(PartsLedgerError):
    """Invoice lifecycle guard violation."""

    code = "INVALID_TRANSITION"

    def __init__(self, invoice_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Invoice {invoice_id} cannot move from {current} to {requested}"
        )
        self.invoice_id = invoice_id
        self.current = current
        self.requested = requested

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(current_status=self.current, requested_status=self.requested)
        return data


class ConfigurationError(PartsLedgerError):
    """Operation disabled or misconfigured."""

    code = "CONFIGURATION_ERROR"


class ConcurrentModificationError(PartsLedgerError):
    """Record changed between the guard read and the conditional write."""

    code = "CONCURRENT_MODIFICATION"


class StoreUnavailableError(PartsLedgerError):
    """Remote list store call failed (network, auth, throttling, server)."""

    code = "STORE_UNAVAILABLE"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.status_code is not None:
            data["status_code"] = self.status_code
        return data


class StoreUnauthorizedError(StoreUnavailableError):
    code = "STORE_UNAUTHORIZED"


class StoreForbiddenError(StoreUnavailableError):
    code = "STORE_FORBIDDEN"


class StoreNotFoundError(StoreUnavailableError):
    code = "STORE_NOT_FOUND"


class StorePreconditionFailedError(StoreUnavailableError):
    code = "STORE_PRECONDITION_FAILED"


class StoreRateLimitedError(StoreUnavailableError):
    code = "STORE_RATE_LIMITED"


class StoreServerError(StoreUnavailableError):
    code = "STORE_SERVER_ERROR"


_STATUS_ERRORS: dict[int, type[StoreUnavailableError]] = {
    401: StoreUnauthorizedError,
    403: StoreForbiddenError,
    404: StoreNotFoundError,
    412: StorePreconditionFailedError,
    429: StoreRateLimitedError,
}


def store_error_for_status(status_code: int, message: str) -> StoreUnavailableError:
    """Build the store error subclass matching an HTTP status code."""
    if status_code >= 500:
        return StoreServerError(message, status_code)
    error_class = _STATUS_ERRORS.get(status_code, StoreUnavailableError)
    return error_class(message, status_code)


class LedgerDivergenceError(PartsLedgerError):
    """Ledger row was written but the part's on-hand patch failed.

    The ledger and the cached on-hand count now disagree; the written
    transaction is attached so callers can reconcile it.
    """

    code = "LEDGER_DIVERGENCE"

    def __init__(self, transaction: "Transaction", cause: Exception) -> None:
        super().__init__(
            f"Transaction {transaction.id} for part {transaction.part_id} was written "
            f"but the inventory update failed: {cause}"
        )
        self.transaction = transaction
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["transaction_id"] = self.transaction.id
        return data


class PartialReconciliationError(PartsLedgerError):
    """Multi-step finalize/void stopped part way; report lists what committed."""

    code = "PARTIAL_RECONCILIATION"

    def __init__(self, report: "ReconciliationReport") -> None:
        failed = report.failed_step
        detail = f" at line {failed.index + 1} ({failed.part_id}): {failed.error}" if failed else ""
        super().__init__(
            f"{report.operation} of invoice {report.invoice_id} stopped{detail}; "
            f"{len(report.written_transaction_ids)} ledger row(s) written"
        )
        self.report = report

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["report"] = self.report.model_dump(mode="json")
        return data
