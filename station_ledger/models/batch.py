"""
Module: station_ledger.models.batch
Responsibility: ORM persistence for payment batches and their settled line
    items, for both invoice populations (fuel and vendor).
Architecture position: Kernel > Models.  May import from db/ and sibling
    model modules.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - (payment_date, reference) is unique per population.  This is the
      idempotency key that stops the same bank transaction being settled
      twice (uq_*_date_reference constraints).
    - invoice_id is unique across line items, so an invoice sits in at most
      one currently-paid batch.
    - total_amount is a cache.  The authoritative total is the sum of the
      line amounts (total_from_lines()); read paths overwrite a stale cache.
    - Line item snapshot fields never change after insert
      (db/immutability.py); reverting removes the line instead.
    - seq is a monotonic creation counter used for "latest" lookups.

Failure modes:
    - IntegrityError on a duplicate (payment_date, reference) or a second
      line for the same invoice.
    - ImmutabilityViolationError on flush when a line snapshot is modified.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from station_ledger.db.base import Base, TimestampedBase, UUIDString
from station_ledger.db.types import enum_type, sum_money
from station_ledger.models.vendor import VENDOR_INVOICE_KIND

if TYPE_CHECKING:
    from station_ledger.models.invoice import Invoice
    from station_ledger.models.vendor import Vendor, VendorInvoice


class PaymentMethod(str, Enum):
    """How a batch was paid.

    EFT clears at commit time.  A check may defer its balance effect until
    mark_cleared runs.
    """

    EFT = "eft"
    CHECK = "check"


class _BatchColumns:
    """Columns shared by fuel and vendor payment batches."""

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Bank transaction / check number
    reference: Mapped[str] = mapped_column(String(64), nullable=False)

    method: Mapped[PaymentMethod] = mapped_column(
        enum_type(PaymentMethod),
        nullable=False,
        default=PaymentMethod.EFT,
    )

    # Cached; see total_from_lines()
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    balance_before: Mapped[Decimal] = mapped_column(nullable=False)

    balance_after: Mapped[Decimal] = mapped_column(nullable=False)

    # Set when the batch's balance effect has been applied
    cleared_at: Mapped[datetime | None] = mapped_column(nullable=True)

    seq: Mapped[int] = mapped_column(nullable=False, unique=True)

    @property
    def is_cleared(self) -> bool:
        return self.cleared_at is not None

    @property
    def is_check(self) -> bool:
        return self.method == PaymentMethod.CHECK

    def total_from_lines(self) -> Decimal:
        return sum_money(line.amount for line in self.lines)


class PaymentBatch(_BatchColumns, TimestampedBase):
    """A group of fuel invoices paid by one bank transaction."""

    __tablename__ = "payment_batches"

    __table_args__ = (
        UniqueConstraint("payment_date", "reference", name="uq_batch_date_reference"),
        Index("idx_batch_reference", "reference"),
    )

    lines: Mapped[list["SettledLineItem"]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="SettledLineItem.number",
    )

    def __repr__(self) -> str:
        return f"<PaymentBatch {self.payment_date} {self.reference}: {self.total_amount}>"


class SettledLineItem(Base):
    """Snapshot of a fuel invoice at the time it was paid."""

    __tablename__ = "settled_line_items"

    __table_args__ = (Index("idx_line_batch", "batch_id"),)

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payment_batches.id"),
        nullable=False,
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
        unique=True,
    )

    number: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str] = mapped_column(String(4000), nullable=False, default="")

    batch: Mapped[PaymentBatch] = relationship(back_populates="lines")
    invoice: Mapped["Invoice"] = relationship()


class VendorPaymentBatch(_BatchColumns, TimestampedBase):
    """A group of one vendor's invoices paid by one EFT or check."""

    __tablename__ = "vendor_payment_batches"

    __table_args__ = (
        UniqueConstraint(
            "payment_date", "reference", name="uq_vendor_batch_date_reference"
        ),
        Index("idx_vendor_batch_reference", "reference"),
        Index("idx_vendor_batch_uncleared", "method", "cleared_at"),
    )

    vendor_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("vendors.id"),
        nullable=False,
    )

    # Free text printed on the bank transfer
    transfer_description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    lines: Mapped[list["VendorSettledLineItem"]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="VendorSettledLineItem.number",
    )
    vendor: Mapped["Vendor"] = relationship()

    def __repr__(self) -> str:
        return (
            f"<VendorPaymentBatch {self.payment_date} {self.reference}: "
            f"{self.total_amount} ({self.method.value})>"
        )


class VendorSettledLineItem(Base):
    """Snapshot of a vendor invoice at the time it was paid."""

    __tablename__ = "vendor_settled_line_items"

    __table_args__ = (Index("idx_vendor_line_batch", "batch_id"),)

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("vendor_payment_batches.id"),
        nullable=False,
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("vendor_invoices.id"),
        nullable=False,
        unique=True,
    )

    number: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    vat: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0.00"))
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str] = mapped_column(String(4000), nullable=False, default="")

    batch: Mapped[VendorPaymentBatch] = relationship(back_populates="lines")
    invoice: Mapped["VendorInvoice"] = relationship()

    @property
    def kind(self) -> str:
        return VENDOR_INVOICE_KIND
