"""
Module: station_ledger.models.correction
Responsibility: ORM persistence for the append-only correction log.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Corrections are never updated or deleted (db/immutability.py).
    - One row per changed field, written only when a reason was given and
      the value actually differs.
    - Values are stored as display strings so that any field type can be
      logged in one column.

Audit relevance:
    This is the trail operators read to learn why a historical batch or
    invoice differs from what was first recorded.
"""

from enum import Enum

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from station_ledger.db.base import TimestampedBase


class CorrectionEntity(str, Enum):
    """Kinds of record a correction can refer to."""

    INVOICE = "invoice"
    VENDOR_INVOICE = "vendor_invoice"
    PAYMENT_BATCH = "payment_batch"
    VENDOR_PAYMENT_BATCH = "vendor_payment_batch"


class Correction(TimestampedBase):
    """One audited change to one field of one record."""

    __tablename__ = "corrections"

    __table_args__ = (Index("idx_correction_entity", "entity_type", "entity_id"),)

    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)

    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)

    field: Mapped[str] = mapped_column(String(64), nullable=False)

    old_value: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    new_value: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    reason: Mapped[str] = mapped_column(String(4000), nullable=False)

    changed_by: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Correction {self.entity_type}:{self.entity_id} {self.field} "
            f"{self.old_value!r} -> {self.new_value!r}>"
        )
