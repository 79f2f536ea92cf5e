"""
Domain DTOs -- immutable values passed between services and callers.

Responsibility:
    Frozen dataclasses for service inputs (edits, amendments) and outputs
    (batch views, balance snapshots, simulation views, revert results), plus
    the LedgerPolicy that carries configuration into the kernel.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  from_model()
    converters read ORM attributes but never touch the session.

Invariants enforced:
    - BatchView.total_amount is always the sum of its line amounts; the
      converter takes the recomputed total, never the cached column.
    - All money fields are Decimal.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from station_ledger.db.types import sum_money

DEFAULT_INVOICE_KINDS = ("Fuel", "LPG", "Lubricants", "Rent")


@dataclass(frozen=True)
class LedgerPolicy:
    """
    Behavioural settings the services need.  Built from configuration by
    ledger_config.bridges.build_policy(); the kernel never reads config files.
    """

    due_date_offset_days: int = 5
    invoice_kinds: tuple[str, ...] = DEFAULT_INVOICE_KINDS
    simulation_ttl_hours: int = 24
    simulation_list_limit: int = 50
    fuel_defers_check_clearing: bool = False
    default_changed_by: str = "admin"


@dataclass(frozen=True)
class InvoiceEdit:
    """
    Requested changes to a pending invoice.  None means "leave unchanged".

    vendor-only: vat.
    """

    number: str | None = None
    amount: Decimal | str | int | None = None
    kind: str | None = None
    invoice_date: date | str | None = None
    due_date: date | str | None = None
    notes: str | None = None
    vat: Decimal | str | int | None = None


@dataclass(frozen=True)
class BatchAmendment:
    """Metadata corrections to a settled batch.  None means "leave unchanged"."""

    payment_date: date | str | None = None
    reference: str | None = None
    transfer_description: str | None = None


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: object
    new_value: object


@dataclass(frozen=True)
class InvoiceView:
    """An invoice of either population."""

    id: UUID
    number: str
    amount: Decimal
    kind: str
    invoice_date: date
    due_date: date
    status: str
    notes: str
    vendor_id: UUID | None = None
    vat: Decimal | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    @classmethod
    def from_model(cls, invoice) -> "InvoiceView":
        return cls(
            id=invoice.id,
            number=invoice.number,
            amount=invoice.amount,
            kind=invoice.kind,
            invoice_date=invoice.invoice_date,
            due_date=invoice.due_date,
            status=invoice.status.value,
            notes=invoice.notes,
            vendor_id=getattr(invoice, "vendor_id", None),
            vat=getattr(invoice, "vat", None),
        )


@dataclass(frozen=True)
class CorrectionRecord:
    id: UUID
    entity_type: str
    entity_id: str
    field: str
    old_value: str | None
    new_value: str | None
    reason: str
    changed_by: str
    created_at: datetime

    @classmethod
    def from_model(cls, row) -> "CorrectionRecord":
        return cls(
            id=row.id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            field=row.field,
            old_value=row.old_value,
            new_value=row.new_value,
            reason=row.reason,
            changed_by=row.changed_by,
            created_at=row.created_at,
        )


@dataclass(frozen=True)
class LineItemView:
    """An invoice as it was when paid."""

    invoice_id: UUID
    number: str
    amount: Decimal
    kind: str
    invoice_date: date
    due_date: date
    notes: str
    vat: Decimal | None = None

    @classmethod
    def from_model(cls, line) -> "LineItemView":
        return cls(
            invoice_id=line.invoice_id,
            number=line.number,
            amount=line.amount,
            kind=line.kind,
            invoice_date=line.invoice_date,
            due_date=line.due_date,
            notes=line.notes,
            vat=getattr(line, "vat", None),
        )


@dataclass(frozen=True)
class BatchView:
    """
    Read model of a payment batch.

    Guarantees:
        total_amount == sum(line.amount for line in lines).
    """

    id: UUID
    payment_date: date
    reference: str
    method: str
    total_amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    cleared_at: datetime | None
    seq: int
    lines: tuple[LineItemView, ...]
    vendor_id: UUID | None = None
    transfer_description: str | None = None

    @property
    def is_cleared(self) -> bool:
        return self.cleared_at is not None

    @property
    def invoice_ids(self) -> tuple[UUID, ...]:
        return tuple(line.invoice_id for line in self.lines)

    @classmethod
    def from_model(cls, batch, total_amount: Decimal) -> "BatchView":
        return cls(
            id=batch.id,
            payment_date=batch.payment_date,
            reference=batch.reference,
            method=batch.method.value,
            total_amount=total_amount,
            balance_before=batch.balance_before,
            balance_after=batch.balance_after,
            cleared_at=batch.cleared_at,
            seq=batch.seq,
            lines=tuple(LineItemView.from_model(line) for line in batch.lines),
            vendor_id=getattr(batch, "vendor_id", None),
            transfer_description=getattr(batch, "transfer_description", None),
        )


@dataclass(frozen=True)
class BalanceSnapshot:
    """
    The balance as callers see it.

    Guarantees:
        balance_after == available_funds - planned.
    """

    current_balance: Decimal
    available_funds: Decimal
    planned: Decimal
    balance_after: Decimal


@dataclass(frozen=True)
class NetBalance:
    """available_funds less the checks written but not yet cashed."""

    available_funds: Decimal
    uncashed_total: Decimal
    net_balance: Decimal
    uncashed_count: int = 0


@dataclass(frozen=True)
class SimulatedInvoice:
    id: UUID
    number: str
    amount: Decimal
    status: str
    due_date: date


@dataclass(frozen=True)
class SimulationView:
    """A simulation with its invoices and a total recomputed from them."""

    id: UUID
    simulation_date: date
    description: str
    invoice_ids: tuple[UUID, ...]
    invoices: tuple[SimulatedInvoice, ...]
    total_amount: Decimal
    created_at: datetime

    @property
    def pending_total(self) -> Decimal:
        return sum_money(inv.amount for inv in self.invoices if inv.status == "pending")


@dataclass(frozen=True)
class RevertResult:
    """Outcome of reverting a batch."""

    batch_id: UUID
    reference: str
    reverted_invoice_ids: tuple[UUID, ...]
    restored_amount: Decimal
    batch_deleted: bool = True


@dataclass(frozen=True)
class RecentPayment:
    """Display summary of the most recent payment batch."""

    date_paid: date
    reference: str
    total_paid: str
    available_balance: str
    invoices: tuple[tuple[str, str], ...] = field(default_factory=tuple)
