"""
SequenceService -- strictly increasing numbers for ``seq`` columns.

Payment batches and simulations are ordered by ``seq`` wherever the ledger
needs "the latest" one (revert by reference, the simulation that feeds
Balance.planned).  Timestamps can tie; these numbers cannot.

Each sequence is one SequenceCounter row, read with SELECT ... FOR UPDATE
and incremented inside the caller's transaction.  A rolled-back operation
therefore hands its number back, and two concurrent settlements queue on
the row instead of reading the same maximum.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from station_ledger.logging_config import get_logger
from station_ledger.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    PAYMENT_BATCH = "payment_batch"
    VENDOR_PAYMENT_BATCH = "vendor_payment_batch"
    PAYMENT_SIMULATION = "payment_simulation"

    def __init__(self, session: Session):
        self._session = session

    def _select(self, name: str, lock: bool):
        stmt = select(SequenceCounter).where(SequenceCounter.name == name)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _lock_or_create(self, name: str) -> SequenceCounter:
        counter = self._select(name, lock=True)
        if counter is not None:
            return counter

        # First use.  A concurrent first use loses on the unique name and
        # falls back to locking the winner's row.
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=name, current_value=0)
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_create_conflict", extra={"sequence_name": name})
            return self._select(name, lock=True)
        savepoint.commit()
        logger.info("sequence_created", extra={"sequence_name": name})
        return counter

    def next_value(self, name: str) -> int:
        """Increment ``name`` and return the new value (1 on first use)."""
        counter = self._lock_or_create(name)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        """Last value handed out for ``name``, or None if it was never used."""
        counter = self._select(name, lock=False)
        return None if counter is None else counter.current_value
