"""
Module: station_ledger.models.simulation
Responsibility: ORM persistence for payment simulations (what-if previews).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - A simulation never changes invoice state.  It stores invoice ids only.
    - description and total_amount are informational; the authoritative
      total is recomputed from the referenced invoices on read.
    - The row with the highest seq is the "latest" simulation and feeds
      Balance.planned.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import JSON, Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from station_ledger.db.base import TimestampedBase


class PaymentSimulation(TimestampedBase):
    """A disposable grouping of pending invoices."""

    __tablename__ = "payment_simulations"

    __table_args__ = (Index("idx_simulation_created", "created_at"),)

    simulation_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Invoice ids as strings, in caller order
    invoice_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False)

    description: Mapped[str] = mapped_column(String(4000), nullable=False, default="")

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    seq: Mapped[int] = mapped_column(nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<PaymentSimulation {self.simulation_date}: {self.description}>"
