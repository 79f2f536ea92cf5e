"""
BalanceService -- the single running-balance row.

Responsibility:
    Owns the Balance singleton: lazy creation, the planned / balance_after
    refresh on read, operator overrides and the settlement delta.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Derived values come
    from domain/balance_math.py; this module only loads and stores.

Invariants enforced:
    - The row is read with SELECT ... FOR UPDATE before any write, so
      concurrent settlements serialize on it instead of losing updates.
    - apply_delta() is the only way settlement moves available_funds.
    - balance_after = available_funds - planned after every write, where
      planned is the pending total of the latest simulation (by seq).
    - net_balance is computed on demand and never stored.

Failure modes:
    - ValidationError from set_manual() with no values, and from any
      amount that fails to_money().
"""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from station_ledger.db.types import ZERO, to_money
from station_ledger.domain.balance_math import compute_balance, planned_total, uncashed_net
from station_ledger.domain.dtos import BalanceSnapshot, NetBalance
from station_ledger.exceptions import ValidationError
from station_ledger.logging_config import get_logger
from station_ledger.models.balance import BALANCE_KEY, Balance
from station_ledger.models.batch import PaymentMethod, VendorPaymentBatch
from station_ledger.models.invoice import Invoice
from station_ledger.models.simulation import PaymentSimulation
from station_ledger.services.base import BaseService, unit_of_work

logger = get_logger("services.balance")


class BalanceService(BaseService[Balance]):
    """Reads and moves the station's cash balance."""

    def _select_locked(self) -> Balance | None:
        return self.session.execute(
            select(Balance)
            .where(Balance.key == BALANCE_KEY)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _locked_row(self) -> Balance:
        """Lock the balance row, creating it zeroed on first access."""
        row = self._select_locked()
        if row is not None:
            return row

        savepoint = self.session.begin_nested()
        try:
            row = Balance(
                key=BALANCE_KEY,
                current_balance=ZERO,
                available_funds=ZERO,
                planned=ZERO,
                balance_after=ZERO,
            )
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            logger.info("balance_row_created")
            return row
        except IntegrityError:
            savepoint.rollback()
            row = self._select_locked()
            if row is None:
                raise
            return row

    def _latest_planned(self) -> Decimal:
        simulation = self.session.execute(
            select(PaymentSimulation).order_by(PaymentSimulation.seq.desc()).limit(1)
        ).scalar_one_or_none()
        if simulation is None or not simulation.invoice_ids:
            return ZERO
        invoices = self.session.execute(
            select(Invoice).where(Invoice.id.in_(simulation.invoice_ids))
        ).scalars().all()
        return planned_total(invoices)

    def _refresh(self, row: Balance) -> BalanceSnapshot:
        """Recompute derived fields and store them if they drifted."""
        snapshot = compute_balance(row, self._latest_planned())
        if row.planned != snapshot.planned or row.balance_after != snapshot.balance_after:
            logger.debug(
                "balance_derived_fields_refreshed",
                extra={
                    "planned_before": str(row.planned),
                    "planned": str(snapshot.planned),
                },
            )
            row.planned = snapshot.planned
            row.balance_after = snapshot.balance_after
            self.session.flush()
        return snapshot

    @unit_of_work("balance_get")
    def get(self) -> BalanceSnapshot:
        """
        Current balance with planned and balance_after recomputed from the
        latest simulation's still-pending invoices.
        """
        return self._refresh(self._locked_row())

    @unit_of_work("balance_set_manual")
    def set_manual(self, current_balance=None, available_funds=None) -> BalanceSnapshot:
        """
        Operator override, e.g. after reconciling against a bank statement.

        Raises:
            ValidationError: Neither value supplied, or a value is invalid.
        """
        if current_balance is None and available_funds is None:
            raise ValidationError(
                "Provide current_balance, available_funds or both",
                field="available_funds",
            )
        row = self._locked_row()
        before = row.available_funds
        if current_balance is not None:
            row.current_balance = to_money(current_balance, "current_balance")
        if available_funds is not None:
            row.available_funds = to_money(available_funds, "available_funds")
        self.session.flush()
        snapshot = self._refresh(row)

        logger.info(
            "balance_set_manually",
            extra={
                "available_funds_before": str(before),
                "available_funds": str(snapshot.available_funds),
                "current_balance": str(snapshot.current_balance),
            },
        )
        return snapshot

    @unit_of_work("balance_apply_delta")
    def apply_delta(self, delta) -> BalanceSnapshot:
        """
        Move available_funds by ``delta`` (negative for a payment).

        Only the settlement services call this.
        """
        amount = to_money(delta, "delta")
        row = self._locked_row()
        before = row.available_funds
        row.available_funds = before + amount
        self.session.flush()
        snapshot = self._refresh(row)

        logger.info(
            "balance_delta_applied",
            extra={
                "delta": str(amount),
                "available_funds_before": str(before),
                "available_funds": str(snapshot.available_funds),
            },
        )
        return snapshot

    def locked_available_funds(self) -> Decimal:
        """Lock the balance row and return available_funds."""
        return self._locked_row().available_funds

    def uncashed_check_totals(self) -> list[Decimal]:
        batches = self.session.execute(
            select(VendorPaymentBatch)
            .where(
                VendorPaymentBatch.method == PaymentMethod.CHECK,
                VendorPaymentBatch.cleared_at.is_(None),
            )
            .options(selectinload(VendorPaymentBatch.lines))
        ).scalars().all()
        return [batch.total_from_lines() for batch in batches]

    @unit_of_work("balance_net")
    def net_balance(self) -> NetBalance:
        """available_funds less the total of uncashed vendor checks."""
        snapshot = self._refresh(self._locked_row())
        totals = self.uncashed_check_totals()
        uncashed, net = uncashed_net(snapshot.available_funds, totals)
        return NetBalance(
            available_funds=snapshot.available_funds,
            uncashed_total=uncashed,
            net_balance=net,
            uncashed_count=len(totals),
        )
