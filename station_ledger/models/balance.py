"""
Module: station_ledger.models.balance
Responsibility: The single running-balance row.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Exactly one row, keyed BALANCE_KEY (unique constraint).  It is created
      lazily with zeroed fields by the balance service.
    - balance_after == available_funds - planned after every write made by
      the balance service.
    - available_funds moves through BalanceService.apply_delta() (settlement)
      or set_manual() (operator override) only.
"""

from decimal import Decimal

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from station_ledger.db.base import Base

BALANCE_KEY = "balance"


class Balance(Base):
    """Cash position of the station's payment account."""

    __tablename__ = "balances"

    __table_args__ = (UniqueConstraint("key", name="uq_balance_key"),)

    key: Mapped[str] = mapped_column(String(32), nullable=False, default=BALANCE_KEY)

    # Operator-maintained bank statement figure
    current_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0.00"))

    # Funds available for payments; settlement deducts from here
    available_funds: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0.00"))

    # Pending total of the latest simulation
    planned: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0.00"))

    balance_after: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0.00"))

    def __repr__(self) -> str:
        return (
            f"<Balance available={self.available_funds} planned={self.planned} "
            f"after={self.balance_after}>"
        )
