"""
Module: station_ledger.models.sequence
Responsibility: Named monotonic counters backing the seq columns.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - current_value only grows.  SequenceService reads the row with
      SELECT ... FOR UPDATE before incrementing.
    - name is unique, one counter per sequence.
"""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from station_ledger.db.base import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    __table_args__ = (UniqueConstraint("name", name="uq_sequence_name"),)

    name: Mapped[str] = mapped_column(String(64), nullable=False)

    current_value: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
