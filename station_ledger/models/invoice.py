"""
Module: station_ledger.models.invoice
Responsibility: ORM persistence for fuel-supplier invoices and the status
    enumeration shared with vendor invoices.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - status is PENDING or PAID.  PENDING -> PAID happens only through
      settlement, PAID -> PENDING only through revert.
    - A paid invoice's financial fields (number, amount, kind, dates) do not
      change while it stays paid (db/immutability.py).
    - Number uniqueness among PENDING invoices is a service-level rule, not
      a constraint: paid numbers may repeat across payment cycles.

Failure modes:
    - ImmutabilityViolationError on flush when a paid invoice's financial
      fields are modified or a paid invoice is deleted.
"""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from station_ledger.db.base import TimestampedBase
from station_ledger.db.types import enum_type


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    PENDING = "pending"
    PAID = "paid"


# Fields frozen while an invoice is paid.  Shared by both invoice
# populations; vendor invoices add "vat".
INVOICE_FINANCIAL_FIELDS = ("number", "amount", "kind", "invoice_date", "due_date")


class Invoice(TimestampedBase):
    """
    Money owed to a fuel supplier.

    Guarantees:
        - amount is positive and stored with two decimals.
        - due_date is always populated (derived from invoice_date when the
          caller does not supply one).
    """

    __tablename__ = "invoices"

    __table_args__ = (
        Index("idx_invoice_status", "status"),
        Index("idx_invoice_number", "number"),
    )

    number: Mapped[str] = mapped_column(String(64), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    # One of the configured invoice kinds (Fuel, LPG, ...)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)

    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        enum_type(InvoiceStatus),
        nullable=False,
        default=InvoiceStatus.PENDING,
    )

    notes: Mapped[str] = mapped_column(String(4000), nullable=False, default="")

    @property
    def is_pending(self) -> bool:
        return self.status == InvoiceStatus.PENDING

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    def snapshot(self) -> dict:
        """Values copied onto a settled line item at payment time."""
        return {
            "number": self.number,
            "amount": self.amount,
            "kind": self.kind,
            "invoice_date": self.invoice_date,
            "due_date": self.due_date,
            "notes": self.notes,
        }

    def __repr__(self) -> str:
        return f"<Invoice {self.number}: {self.amount} ({self.status.value})>"
