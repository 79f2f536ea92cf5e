"""
InvoiceService / VendorInvoiceService -- the invoice store.

Responsibility:
    Owns invoice records and their pending-state lifecycle: create, edit,
    delete, get and list.  The PENDING <-> PAID transitions are not here;
    they belong to the settlement services.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Uses
    CorrectionService for the audit trail of edits.

Invariants enforced:
    - Only PENDING invoices can be edited or deleted.
    - No two PENDING invoices share a number (per vendor for vendor
      invoices).  Paid numbers may repeat.
    - Changing number, amount, invoice_date, due_date (or vat) requires a
      reason, and every changed field is logged as a correction.
    - Amounts enter the ledger through to_money(), rounded exactly once.

Failure modes:
    - ValidationError: blank number, non-positive amount, unknown kind,
      unparseable date, missing reason (ReasonRequiredError).
    - InvoiceNotFoundError, VendorNotFoundError.
    - InvoiceNotPendingError when editing or deleting a paid invoice.
    - DuplicateInvoiceError when a pending invoice already has the number.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from station_ledger.db.types import ZERO, to_money
from station_ledger.domain.dates import derive_due_date, parse_date
from station_ledger.domain.dtos import (
    CorrectionRecord,
    FieldChange,
    InvoiceEdit,
    InvoiceView,
    LedgerPolicy,
)
from station_ledger.exceptions import (
    DuplicateInvoiceError,
    InvoiceNotFoundError,
    InvoiceNotPendingError,
    ReasonRequiredError,
    ValidationError,
    VendorNotFoundError,
)
from station_ledger.logging_config import get_logger
from station_ledger.models.correction import CorrectionEntity
from station_ledger.models.invoice import Invoice, InvoiceStatus
from station_ledger.models.vendor import Vendor, VendorInvoice
from station_ledger.services.base import BaseService, unit_of_work
from station_ledger.services.correction_service import CorrectionService

logger = get_logger("services.invoice")

# Fields whose change needs a correction reason
REASON_REQUIRED_FIELDS = ("number", "amount", "invoice_date", "due_date", "vat")


def parse_uuid(value, field: str = "id") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise ValidationError(f"{field} is not a valid id: {value!r}", field=field) from exc


def parse_status(status) -> InvoiceStatus | None:
    if status is None or isinstance(status, InvoiceStatus):
        return status
    try:
        return InvoiceStatus(str(status).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown invoice status: {status!r}", field="status") from exc


def clean_number(number) -> str:
    cleaned = str(number or "").strip()
    if not cleaned:
        raise ValidationError("Invoice number is required", field="number")
    return cleaned


def positive_amount(value, field: str = "amount") -> Decimal:
    amount = to_money(value, field)
    if amount <= ZERO:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    return amount


class _InvoiceStore(BaseService):
    """Behaviour shared by both invoice populations."""

    model: type = Invoice
    entity_type: CorrectionEntity = CorrectionEntity.INVOICE

    def __init__(
        self,
        session,
        policy: LedgerPolicy | None = None,
        clock=None,
        corrections: CorrectionService | None = None,
        uow=None,
    ):
        super().__init__(session, clock, uow)
        self._policy = policy or LedgerPolicy()
        self._corrections = corrections or CorrectionService(
            session, self._clock, self._uow, self._policy.default_changed_by
        )

    # -- lookups -----------------------------------------------------------

    def _load(self, invoice_id) -> Invoice:
        invoice_id = parse_uuid(invoice_id, "invoice_id")
        invoice = self.session.get(self.model, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def _load_pending(self, invoice_id, operation: str):
        invoice = self._load(invoice_id)
        if not invoice.is_pending:
            raise InvoiceNotPendingError(str(invoice.id), invoice.status.value, operation)
        return invoice

    def _duplicate_scope(self, invoice):
        """Extra WHERE clauses limiting duplicate detection."""
        return ()

    def _ensure_number_free(self, number: str, scope=(), exclude_id=None) -> None:
        stmt = select(self.model).where(
            self.model.number == number,
            self.model.status == InvoiceStatus.PENDING,
            *scope,
        )
        if exclude_id is not None:
            stmt = stmt.where(self.model.id != exclude_id)
        existing = self.session.execute(stmt.limit(1)).scalar_one_or_none()
        if existing is not None:
            raise DuplicateInvoiceError(number, str(existing.id))

    def _due_date(self, invoice_date, due_date):
        if due_date is None:
            return derive_due_date(invoice_date, self._policy.due_date_offset_days)
        return parse_date(due_date, "due_date")

    # -- edits -------------------------------------------------------------

    def _proposed_values(self, invoice, fields: InvoiceEdit) -> dict:
        proposed = {}
        if fields.number is not None:
            proposed["number"] = clean_number(fields.number)
        if fields.amount is not None:
            proposed["amount"] = positive_amount(fields.amount)
        if fields.invoice_date is not None:
            proposed["invoice_date"] = parse_date(fields.invoice_date, "invoice_date")
        if fields.due_date is not None:
            proposed["due_date"] = parse_date(fields.due_date, "due_date")
        elif "invoice_date" in proposed:
            proposed["due_date"] = derive_due_date(
                proposed["invoice_date"], self._policy.due_date_offset_days
            )
        if fields.notes is not None:
            proposed["notes"] = fields.notes.strip()
        return proposed

    @unit_of_work("invoice_edit")
    def edit(
        self,
        invoice_id,
        fields: InvoiceEdit,
        reason: str | None = None,
        changed_by: str | None = None,
    ) -> InvoiceView:
        """
        Apply an edit to a pending invoice.

        Changing invoice_date re-derives due_date unless one is given.

        Raises:
            InvoiceNotFoundError, InvoiceNotPendingError, ValidationError,
            ReasonRequiredError, DuplicateInvoiceError.
        """
        invoice = self._load_pending(invoice_id, "edit")
        proposed = self._proposed_values(invoice, fields)

        changes = [
            FieldChange(name, getattr(invoice, name), value)
            for name, value in proposed.items()
            if getattr(invoice, name) != value
        ]
        if not changes:
            return InvoiceView.from_model(invoice)

        reason = (reason or "").strip() or None
        needs_reason = [c.field for c in changes if c.field in REASON_REQUIRED_FIELDS]
        if needs_reason and reason is None:
            raise ReasonRequiredError(self.entity_type.value, str(invoice.id), needs_reason)

        if "number" in proposed and proposed["number"] != invoice.number:
            self._ensure_number_free(
                proposed["number"], self._duplicate_scope(invoice), exclude_id=invoice.id
            )

        for change in changes:
            setattr(invoice, change.field, change.new_value)
        self.session.flush()

        if reason is not None:
            self._corrections.record_changes(
                self.entity_type, invoice.id, changes, reason, changed_by
            )

        logger.info(
            "invoice_edited",
            extra={
                "entity_type": self.entity_type.value,
                "invoice_id": str(invoice.id),
                "fields": [c.field for c in changes],
                "with_reason": reason is not None,
            },
        )
        return InvoiceView.from_model(invoice)

    @unit_of_work("invoice_delete")
    def delete(self, invoice_id) -> None:
        """
        Delete a pending invoice.

        Raises:
            InvoiceNotFoundError, InvoiceNotPendingError.
        """
        invoice = self._load_pending(invoice_id, "delete")
        self.session.delete(invoice)
        self.session.flush()
        logger.info(
            "invoice_deleted",
            extra={
                "entity_type": self.entity_type.value,
                "invoice_id": str(invoice.id),
                "number": invoice.number,
            },
        )

    def get(self, invoice_id) -> InvoiceView:
        return InvoiceView.from_model(self._load(invoice_id))

    def corrections_for(self, invoice_id) -> list[CorrectionRecord]:
        return self._corrections.history(self.entity_type, parse_uuid(invoice_id, "invoice_id"))

    def _list(self, *clauses) -> list[InvoiceView]:
        rows = self.session.execute(
            select(self.model)
            .where(*clauses)
            .order_by(self.model.invoice_date.desc(), self.model.number.asc())
        ).scalars().all()
        return [InvoiceView.from_model(row) for row in rows]


class InvoiceService(_InvoiceStore):
    """Fuel-supplier invoices."""

    model = Invoice
    entity_type = CorrectionEntity.INVOICE

    def _kind(self, kind) -> str:
        wanted = str(kind or "").strip().casefold()
        for known in self._policy.invoice_kinds:
            if known.casefold() == wanted:
                return known
        raise ValidationError(
            f"Unknown invoice kind {kind!r}; expected one of {', '.join(self._policy.invoice_kinds)}",
            field="kind",
        )

    @unit_of_work("invoice_create")
    def create(
        self,
        number,
        amount,
        kind,
        invoice_date,
        notes: str = "",
        due_date=None,
    ) -> InvoiceView:
        """
        Create a pending fuel invoice.

        Raises:
            ValidationError: Invalid number, amount, kind or date.
            DuplicateInvoiceError: A pending invoice has the same number.
        """
        number = clean_number(number)
        amount = positive_amount(amount)
        kind = self._kind(kind)
        invoice_date = parse_date(invoice_date, "invoice_date")
        due = self._due_date(invoice_date, due_date)
        self._ensure_number_free(number)

        invoice = Invoice(
            number=number,
            amount=amount,
            kind=kind,
            invoice_date=invoice_date,
            due_date=due,
            status=InvoiceStatus.PENDING,
            notes=(notes or "").strip(),
            created_at=self._clock.now(),
        )
        self.session.add(invoice)
        self.session.flush()

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "number": number,
                "amount": str(amount),
                "kind": kind,
            },
        )
        return InvoiceView.from_model(invoice)

    def _proposed_values(self, invoice, fields: InvoiceEdit) -> dict:
        proposed = super()._proposed_values(invoice, fields)
        if fields.kind is not None:
            proposed["kind"] = self._kind(fields.kind)
        if fields.vat is not None:
            raise ValidationError("Fuel invoices carry no VAT field", field="vat")
        return proposed

    def list(self, status=None) -> list[InvoiceView]:
        """Invoices ordered by invoice_date desc, number asc."""
        status = parse_status(status)
        clauses = () if status is None else (Invoice.status == status,)
        return self._list(*clauses)


class VendorInvoiceService(_InvoiceStore):
    """Invoices issued by vendors.  Duplicate numbers are checked per vendor."""

    model = VendorInvoice
    entity_type = CorrectionEntity.VENDOR_INVOICE

    def _duplicate_scope(self, invoice):
        return (VendorInvoice.vendor_id == invoice.vendor_id,)

    def _vendor(self, vendor_id) -> Vendor:
        vendor_id = parse_uuid(vendor_id, "vendor_id")
        vendor = self.session.get(Vendor, vendor_id)
        if vendor is None:
            raise VendorNotFoundError(str(vendor_id))
        return vendor

    @unit_of_work("vendor_invoice_create")
    def create(
        self,
        vendor_id,
        number,
        amount,
        invoice_date,
        vat=ZERO,
        notes: str = "",
        due_date=None,
    ) -> InvoiceView:
        """
        Create a pending vendor invoice.  due_date may be given explicitly.

        Raises:
            VendorNotFoundError, ValidationError, DuplicateInvoiceError.
        """
        vendor = self._vendor(vendor_id)
        number = clean_number(number)
        amount = positive_amount(amount)
        vat_amount = to_money(vat, "vat")
        if vat_amount < ZERO:
            raise ValidationError("vat cannot be negative", field="vat")
        invoice_date = parse_date(invoice_date, "invoice_date")
        due = self._due_date(invoice_date, due_date)
        self._ensure_number_free(number, (VendorInvoice.vendor_id == vendor.id,))

        invoice = VendorInvoice(
            vendor_id=vendor.id,
            number=number,
            amount=amount,
            vat=vat_amount,
            invoice_date=invoice_date,
            due_date=due,
            status=InvoiceStatus.PENDING,
            notes=(notes or "").strip(),
            created_at=self._clock.now(),
        )
        self.session.add(invoice)
        self.session.flush()

        logger.info(
            "vendor_invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "vendor_id": str(vendor.id),
                "number": number,
                "amount": str(amount),
            },
        )
        return InvoiceView.from_model(invoice)

    def _proposed_values(self, invoice, fields: InvoiceEdit) -> dict:
        proposed = super()._proposed_values(invoice, fields)
        if fields.kind is not None:
            raise ValidationError("Vendor invoices have a fixed kind", field="kind")
        if fields.vat is not None:
            vat = to_money(fields.vat, "vat")
            if vat < ZERO:
                raise ValidationError("vat cannot be negative", field="vat")
            proposed["vat"] = vat
        return proposed

    def list(self, vendor_id=None, status=None) -> list[InvoiceView]:
        """Vendor invoices ordered by invoice_date desc, number asc."""
        status = parse_status(status)
        clauses = []
        if vendor_id is not None:
            clauses.append(VendorInvoice.vendor_id == parse_uuid(vendor_id, "vendor_id"))
        if status is not None:
            clauses.append(VendorInvoice.status == status)
        return self._list(*clauses)
