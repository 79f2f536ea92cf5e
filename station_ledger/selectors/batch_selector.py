"""
Module: station_ledger.selectors.batch_selector
Responsibility: Read-only access to payment batches of both populations:
    lookups, date ranges, uncashed checks, stale-cache detection and the
    most-recent-payment summary.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every BatchView carries the total recomputed from its lines, never the
      cached column.
    - Ordering is explicit: newest first is payment_date desc, seq desc;
      uncashed checks are oldest first.

Failure modes:
    - Returns None or an empty list when nothing matches (never raises on
      absence of data).
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from station_ledger.db.types import format_money
from station_ledger.domain.dtos import BatchView, RecentPayment
from station_ledger.models.balance import BALANCE_KEY, Balance
from station_ledger.models.batch import PaymentBatch, PaymentMethod, VendorPaymentBatch
from station_ledger.selectors.base import BaseSelector


def _view(batch) -> BatchView:
    return BatchView.from_model(batch, batch.total_from_lines())


class BatchSelector(BaseSelector[PaymentBatch]):
    """Queries over fuel and vendor payment batches."""

    @staticmethod
    def _model(vendor: bool):
        return VendorPaymentBatch if vendor else PaymentBatch

    def _select(self, vendor: bool = False):
        model = self._model(vendor)
        return select(model).options(selectinload(model.lines))

    def get(self, batch_id: UUID, vendor: bool = False) -> BatchView | None:
        model = self._model(vendor)
        batch = self.session.execute(
            self._select(vendor).where(model.id == batch_id)
        ).scalar_one_or_none()
        return _view(batch) if batch else None

    def for_reference(self, reference: str, vendor: bool = False) -> list[BatchView]:
        """All batches paid under ``reference``, newest first."""
        model = self._model(vendor)
        rows = self.session.execute(
            self._select(vendor)
            .where(model.reference == reference.strip())
            .order_by(model.payment_date.desc(), model.seq.desc())
        ).scalars().all()
        return [_view(row) for row in rows]

    def in_range(self, start: date, end: date, vendor: bool = False) -> list[BatchView]:
        """Batches with start <= payment_date < end, oldest first."""
        model = self._model(vendor)
        rows = self.session.execute(
            self._select(vendor)
            .where(model.payment_date >= start, model.payment_date < end)
            .order_by(model.payment_date.asc(), model.seq.asc())
        ).scalars().all()
        return [_view(row) for row in rows]

    def uncashed_checks(self) -> list[BatchView]:
        rows = self.session.execute(
            self._select(vendor=True)
            .where(
                VendorPaymentBatch.method == PaymentMethod.CHECK,
                VendorPaymentBatch.cleared_at.is_(None),
            )
            .order_by(VendorPaymentBatch.payment_date.asc(), VendorPaymentBatch.seq.asc())
        ).scalars().all()
        return [_view(row) for row in rows]

    def stale_totals(self, vendor: bool = False) -> list[UUID]:
        """Ids of batches whose cached total_amount disagrees with their lines."""
        rows = self.session.execute(self._select(vendor)).scalars().all()
        return [row.id for row in rows if row.total_amount != row.total_from_lines()]

    def recent_payment(self) -> RecentPayment | None:
        """Summary of the latest fuel payment with the available balance."""
        batch = self.session.execute(
            self._select()
            .order_by(PaymentBatch.payment_date.desc(), PaymentBatch.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        if batch is None:
            return None

        balance = self.session.execute(
            select(Balance).where(Balance.key == BALANCE_KEY)
        ).scalar_one_or_none()
        lines = sorted(batch.lines, key=lambda line: line.invoice_date, reverse=True)
        return RecentPayment(
            date_paid=batch.payment_date,
            reference=batch.reference,
            total_paid=format_money(batch.total_from_lines()),
            available_balance=format_money(balance.available_funds) if balance else "-",
            invoices=tuple((line.number, format_money(line.amount)) for line in lines),
        )
