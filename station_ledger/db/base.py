"""
Module: station_ledger.db.base
Responsibility: Declarative base for the ledger models: UUID keys, the
    column type map (money, UTC timestamps) and the created_at mixin.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Money columns are Numeric(18, 2); floats never reach the schema.
    - Timestamps are stored in UTC and always load as timezone-aware
      datetimes, on SQLite (which drops the offset) as on PostgreSQL.
    - Primary keys are uuid4 values stored as 36-character strings.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from station_ledger.db.types import MONEY_DECIMAL_PLACES


class UUIDString(TypeDecorator):
    """UUID stored as String(36)."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime normalized to UTC.

    Naive values are rejected on the way in; values read back without an
    offset (SQLite) are tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime {value!r}; ledger timestamps must be timezone-aware")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, MONEY_DECIMAL_PLACES),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TimestampedBase(Base):
    """
    Adds ``created_at``.

    Services fill it from the injected clock; the server default only
    covers rows inserted by hand.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )


UUID = PyUUID
