"""
Module: station_ledger.models.vendor
Responsibility: ORM persistence for vendors (non-fuel suppliers) and the
    invoices they issue.
Architecture position: Kernel > Models.  May import from db/ and sibling
    model modules.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - Every vendor invoice belongs to exactly one vendor (vendor_id FK).
    - Vendor invoices follow the same pending/paid lifecycle as fuel
      invoices; their kind is fixed to "Vendor".
    - A paid vendor invoice's financial fields, vat included, do not change
      while it stays paid (db/immutability.py).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from station_ledger.db.base import TimestampedBase, UUIDString
from station_ledger.db.types import enum_type
from station_ledger.models.invoice import InvoiceStatus

VENDOR_INVOICE_KIND = "Vendor"


class Vendor(TimestampedBase):
    """A supplier other than the fuel company."""

    __tablename__ = "vendors"

    __table_args__ = (Index("idx_vendor_name", "name"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    notification_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    notes: Mapped[str] = mapped_column(String(4000), nullable=False, default="")

    invoices: Mapped[list["VendorInvoice"]] = relationship(
        back_populates="vendor",
        order_by="VendorInvoice.invoice_date",
    )

    def __repr__(self) -> str:
        return f"<Vendor {self.name}>"


class VendorInvoice(TimestampedBase):
    """
    Money owed to a vendor.

    Same shape as Invoice plus the owning vendor and the VAT portion of the
    amount (informational; the amount is already VAT-inclusive).
    """

    __tablename__ = "vendor_invoices"

    __table_args__ = (
        Index("idx_vendor_invoice_status", "status"),
        Index("idx_vendor_invoice_vendor_number", "vendor_id", "number"),
    )

    vendor_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("vendors.id"),
        nullable=False,
    )

    number: Mapped[str] = mapped_column(String(64), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    vat: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0.00"))

    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        enum_type(InvoiceStatus),
        nullable=False,
        default=InvoiceStatus.PENDING,
    )

    notes: Mapped[str] = mapped_column(String(4000), nullable=False, default="")

    vendor: Mapped[Vendor] = relationship(back_populates="invoices")

    @property
    def kind(self) -> str:
        return VENDOR_INVOICE_KIND

    @property
    def is_pending(self) -> bool:
        return self.status == InvoiceStatus.PENDING

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    def snapshot(self) -> dict:
        """Values copied onto a vendor settled line item at payment time."""
        return {
            "number": self.number,
            "amount": self.amount,
            "vat": self.vat,
            "invoice_date": self.invoice_date,
            "due_date": self.due_date,
            "notes": self.notes,
        }

    def __repr__(self) -> str:
        return f"<VendorInvoice {self.number}: {self.amount} ({self.status.value})>"
