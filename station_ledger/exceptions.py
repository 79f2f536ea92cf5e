"""
Typed Exception Hierarchy for the Station Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the HTTP layer, scripts, tests) map ledger failures onto transport
status codes.  They must be able to do that by TYPE and by CODE, never by
parsing a message string:

    try:
        orchestrator.settlement.commit(...)
    except DuplicateBatchError as e:
        return response(409, code=e.code, reference=e.reference)
    except ValidationError as e:
        return response(400, code=e.code, detail=str(e))

Every exception:
  1. Has a class-level ``code`` (machine-readable, API-safe).
  2. Carries its context as attributes (ids, states, references).

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- ValidationError                 -> HTTP 400
    |   +-- ReasonRequiredError
    |   +-- InvoiceNotSettleableError
    |
    +-- NotFoundError                   -> HTTP 404
    |   +-- InvoiceNotFoundError
    |   +-- BatchNotFoundError
    |   +-- SimulationNotFoundError
    |   +-- VendorNotFoundError
    |
    +-- ConflictError                   -> HTTP 409
    |   +-- DuplicateInvoiceError
    |   +-- DuplicateBatchError
    |
    +-- InvalidStateError               -> HTTP 400 / 409
    |   +-- InvoiceNotPendingError
    |   +-- NotACheckError
    |   +-- CheckAlreadyClearedError
    |   +-- ImmutabilityViolationError
    |
    +-- InternalError                   -> HTTP 500
        +-- StorageError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|------------------------------------
Validation    | VALIDATION_ERROR            | Malformed input (amount, date, ids)
              | REASON_REQUIRED             | Financial edit without a reason
              | INVOICE_NOT_SETTLEABLE      | Missing / non-pending invoice in a
              |                             | commit or simulation
--------------|-----------------------------|------------------------------------
Not found     | INVOICE_NOT_FOUND           | Invoice id does not exist
              | BATCH_NOT_FOUND             | Batch id / reference does not exist
              | SIMULATION_NOT_FOUND        | Simulation id does not exist
              | VENDOR_NOT_FOUND            | Vendor id does not exist
--------------|-----------------------------|------------------------------------
Conflict      | DUPLICATE_INVOICE           | Pending invoice number reused
              | DUPLICATE_BATCH             | (payment_date, reference) reused
--------------|-----------------------------|------------------------------------
State         | INVOICE_NOT_PENDING         | Edit / delete of a paid invoice
              | NOT_A_CHECK                 | Clearing an EFT batch
              | CHECK_ALREADY_CLEARED       | Clearing twice
              | IMMUTABILITY_VIOLATION      | ORM guard blocked a write
--------------|-----------------------------|------------------------------------
Internal      | STORAGE_ERROR               | Driver / transaction failure

===============================================================================
"""


class LedgerError(Exception):
    """
    Base exception for all station ledger errors.

    All subclasses define a ``code`` class attribute.
    """

    code: str = "LEDGER_ERROR"


# Validation


class ValidationError(LedgerError):
    """Missing or malformed input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class ReasonRequiredError(ValidationError):
    """A financially meaningful field changed without a correction reason."""

    code: str = "REASON_REQUIRED"

    def __init__(self, entity_type: str, entity_id: str, fields: list[str]):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.fields = fields
        super().__init__(
            f"A reason is required to change {', '.join(fields)} "
            f"on {entity_type} {entity_id}",
            field="reason",
        )


class InvoiceNotSettleableError(ValidationError):
    """One or more invoices are missing or no longer pending."""

    code: str = "INVOICE_NOT_SETTLEABLE"

    def __init__(self, invoice_ids: list[str]):
        self.invoice_ids = invoice_ids
        super().__init__(
            f"Invoices not found or not pending: {', '.join(invoice_ids)}",
            field="invoice_ids",
        )


# Not found


class NotFoundError(LedgerError):
    """Referenced record does not exist."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class BatchNotFoundError(NotFoundError):
    """Payment batch was not found by id or by reference."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str | None = None, reference: str | None = None):
        self.batch_id = batch_id
        self.reference = reference
        if reference is not None:
            message = f"No payment batch found with reference: {reference}"
        else:
            message = f"Payment batch not found: {batch_id}"
        super().__init__(message)


class SimulationNotFoundError(NotFoundError):
    """Payment simulation was not found."""

    code: str = "SIMULATION_NOT_FOUND"

    def __init__(self, simulation_id: str):
        self.simulation_id = simulation_id
        super().__init__(f"Simulation not found: {simulation_id}")


class VendorNotFoundError(NotFoundError):
    """Vendor was not found."""

    code: str = "VENDOR_NOT_FOUND"

    def __init__(self, vendor_id: str):
        self.vendor_id = vendor_id
        super().__init__(f"Vendor not found: {vendor_id}")


# Conflict


class ConflictError(LedgerError):
    """Uniqueness rule violated."""

    code: str = "CONFLICT"


class DuplicateInvoiceError(ConflictError):
    """A pending invoice with the same number already exists."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, number: str, existing_id: str):
        self.number = number
        self.existing_id = existing_id
        super().__init__(
            f"An invoice with number {number} already exists (pending)"
        )


class DuplicateBatchError(ConflictError):
    """A batch with this payment date and reference already exists."""

    code: str = "DUPLICATE_BATCH"

    def __init__(self, payment_date: str, reference: str):
        self.payment_date = payment_date
        self.reference = reference
        super().__init__(
            f"A batch with payment date {payment_date} and reference "
            f"{reference} already exists"
        )


# Lifecycle state


class InvalidStateError(LedgerError):
    """Operation attempted against a record in the wrong lifecycle state."""

    code: str = "INVALID_STATE"


class InvoiceNotPendingError(InvalidStateError):
    """Only pending invoices can be edited or deleted."""

    code: str = "INVOICE_NOT_PENDING"

    def __init__(self, invoice_id: str, status: str, operation: str):
        self.invoice_id = invoice_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} invoice {invoice_id}: status is {status}"
        )


class NotACheckError(InvalidStateError):
    """Only check batches can be cleared."""

    code: str = "NOT_A_CHECK"

    def __init__(self, batch_id: str, method: str):
        self.batch_id = batch_id
        self.method = method
        super().__init__(
            f"Batch {batch_id} was paid by {method}; only checks can be cleared"
        )


class CheckAlreadyClearedError(InvalidStateError):
    """The check has already been cleared."""

    code: str = "CHECK_ALREADY_CLEARED"

    def __init__(self, batch_id: str, cleared_at: str):
        self.batch_id = batch_id
        self.cleared_at = cleared_at
        super().__init__(f"Check {batch_id} already cleared at {cleared_at}")


class ImmutabilityViolationError(InvalidStateError):
    """Attempted to modify or delete an append-only or settled record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Internal


class InternalError(LedgerError):
    """Unexpected failure below the domain layer."""

    code: str = "INTERNAL_ERROR"


class StorageError(InternalError):
    """The store rejected or failed a transaction; all work was rolled back."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")
