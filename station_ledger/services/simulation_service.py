"""
SimulationService -- non-committing payment previews.

Responsibility:
    Creates, reads, lists and deletes payment simulations, and purges the
    stale ones.  A simulation only records which invoices an operator is
    thinking of paying; the latest one feeds Balance.planned.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - A simulation never changes an invoice.  Creating, deleting and
      purging simulations touch the payment_simulations table only.
    - Every referenced invoice exists and is pending at creation time.
    - "Latest" means highest seq, allocated from a locked counter.
    - description and total_amount are informational; views recompute the
      total from the invoices.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import select

from station_ledger.db.types import sum_money
from station_ledger.domain.dates import parse_date
from station_ledger.domain.dtos import LedgerPolicy, SimulatedInvoice, SimulationView
from station_ledger.exceptions import (
    InvoiceNotSettleableError,
    SimulationNotFoundError,
    ValidationError,
)
from station_ledger.logging_config import get_logger
from station_ledger.models.invoice import Invoice
from station_ledger.models.simulation import PaymentSimulation
from station_ledger.services.base import BaseService, unit_of_work
from station_ledger.services.invoice_service import parse_uuid
from station_ledger.services.sequence_service import SequenceService

logger = get_logger("services.simulation")

DESCRIPTION_PREFIX = "Total Auto"


def normalize_invoice_ids(invoice_ids) -> list:
    """
    Parse a caller's invoice id list.

    Raises:
        ValidationError: Empty list, unparseable id or repeated id.
    """
    if not invoice_ids:
        raise ValidationError("At least one invoice is required", field="invoice_ids")
    ids = [parse_uuid(value, "invoice_ids") for value in invoice_ids]
    if len(set(ids)) != len(ids):
        raise ValidationError("Invoice ids must not repeat", field="invoice_ids")
    return ids


def describe(numbers) -> str:
    return " ".join([DESCRIPTION_PREFIX, *sorted(numbers)])


class SimulationService(BaseService[PaymentSimulation]):
    """What-if previews of a future payment."""

    def __init__(self, session, policy: LedgerPolicy | None = None, clock=None, sequences=None, uow=None):
        super().__init__(session, clock, uow)
        self._policy = policy or LedgerPolicy()
        self._sequences = sequences or SequenceService(session)

    def _load(self, simulation_id) -> PaymentSimulation:
        simulation_id = parse_uuid(simulation_id, "simulation_id")
        simulation = self.session.get(PaymentSimulation, simulation_id)
        if simulation is None:
            raise SimulationNotFoundError(str(simulation_id))
        return simulation

    def _view(self, simulation: PaymentSimulation) -> SimulationView:
        invoices = {
            str(inv.id): inv
            for inv in self.session.execute(
                select(Invoice).where(Invoice.id.in_(simulation.invoice_ids))
            ).scalars()
        }
        found = [invoices[i] for i in simulation.invoice_ids if i in invoices]
        return SimulationView(
            id=simulation.id,
            simulation_date=simulation.simulation_date,
            description=simulation.description,
            invoice_ids=tuple(parse_uuid(i) for i in simulation.invoice_ids),
            invoices=tuple(
                SimulatedInvoice(
                    id=inv.id,
                    number=inv.number,
                    amount=inv.amount,
                    status=inv.status.value,
                    due_date=inv.due_date,
                )
                for inv in found
            ),
            total_amount=sum_money(inv.amount for inv in found),
            created_at=simulation.created_at,
        )

    @unit_of_work("simulation_create")
    def create(self, simulation_date, invoice_ids) -> SimulationView:
        """
        Record a simulation of paying ``invoice_ids`` on ``simulation_date``.

        Raises:
            ValidationError: Bad date or id list.
            InvoiceNotSettleableError: An id is missing or not pending.
        """
        simulation_date = parse_date(simulation_date, "simulation_date")
        ids = normalize_invoice_ids(invoice_ids)

        invoices = self.session.execute(
            select(Invoice).where(Invoice.id.in_(ids))
        ).scalars().all()
        pending = {inv.id: inv for inv in invoices if inv.is_pending}
        rejected = [str(i) for i in ids if i not in pending]
        if rejected:
            raise InvoiceNotSettleableError(rejected)

        chosen = [pending[i] for i in ids]
        simulation = PaymentSimulation(
            simulation_date=simulation_date,
            invoice_ids=[str(i) for i in ids],
            description=describe(inv.number for inv in chosen),
            total_amount=sum_money(inv.amount for inv in chosen),
            seq=self._sequences.next_value(SequenceService.PAYMENT_SIMULATION),
            created_at=self._clock.now(),
        )
        self.session.add(simulation)
        self.session.flush()

        logger.info(
            "simulation_created",
            extra={
                "simulation_id": str(simulation.id),
                "invoice_count": len(chosen),
                "total_amount": str(simulation.total_amount),
            },
        )
        return self._view(simulation)

    def get(self, simulation_id) -> SimulationView:
        return self._view(self._load(simulation_id))

    def list(self, limit: int | None = None) -> list[SimulationView]:
        """Latest first."""
        limit = limit or self._policy.simulation_list_limit
        rows = self.session.execute(
            select(PaymentSimulation).order_by(PaymentSimulation.seq.desc()).limit(limit)
        ).scalars().all()
        return [self._view(row) for row in rows]

    @unit_of_work("simulation_delete")
    def delete(self, simulation_id) -> None:
        simulation = self._load(simulation_id)
        self.session.delete(simulation)
        self.session.flush()
        logger.info("simulation_deleted", extra={"simulation_id": str(simulation.id)})

    @unit_of_work("simulation_purge")
    def purge_stale(self, older_than: timedelta | None = None) -> int:
        """
        Delete simulations created before ``now - older_than``.

        Args:
            older_than: Age threshold; defaults to the configured TTL.

        Returns:
            Number of simulations deleted.
        """
        if older_than is None:
            older_than = timedelta(hours=self._policy.simulation_ttl_hours)
        if older_than < timedelta(0):
            raise ValidationError("older_than cannot be negative", field="older_than")
        cutoff = self._clock.now() - older_than
        stale = self.session.execute(
            select(PaymentSimulation).where(PaymentSimulation.created_at < cutoff)
        ).scalars().all()
        for simulation in stale:
            self.session.delete(simulation)
        if stale:
            self.session.flush()
        count = len(stale)
        logger.info(
            "simulations_purged",
            extra={"deleted": count, "cutoff": cutoff.isoformat()},
        )
        return count

    def discard_overlapping(self, invoice_ids) -> int:
        """
        Delete simulations that reference any of ``invoice_ids``.

        Runs inside the caller's unit of work (settlement commit).
        """
        wanted = {str(i) for i in invoice_ids}
        doomed = [
            sim
            for sim in self.session.execute(select(PaymentSimulation)).scalars()
            if wanted.intersection(sim.invoice_ids)
        ]
        for sim in doomed:
            self.session.delete(sim)
        if doomed:
            self.session.flush()
            logger.info(
                "simulations_discarded",
                extra={"count": len(doomed), "simulation_ids": [str(s.id) for s in doomed]},
            )
        return len(doomed)
