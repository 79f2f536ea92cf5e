"""
SettlementService -- the settlement engine.

Responsibility:
    Creates, amends, clears and reverts payment batches.  This is the only
    component that moves an invoice between PENDING and PAID, and the only
    caller of BalanceService.apply_delta().

    SettlementEngine holds the state machine for any invoice population;
    SettlementService binds it to fuel invoices and VendorSettlementService
    (services/vendor_service.py) to vendor invoices.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Each public
    operation is one unit of work: the LedgerOrchestrator's UnitOfWork
    commits it whole or rolls it back whole.

Invariants enforced:
    - (payment_date, reference) identifies at most one batch; a second
      commit with the same pair fails with DuplicateBatchError.
    - Only PENDING invoices settle.  An invoice is in at most one batch
      (line items carry a unique invoice_id).
    - Conservation: the balance moves by -total when a batch clears and by
      +total when a cleared batch is reverted, never otherwise.  cleared_at
      records whether the batch's effect has been applied.
    - total_amount is recomputed from the line items on every read and the
      cached column is overwritten when stale.
    - "Latest batch for a reference" is ordered by payment_date desc, then
      seq desc.

Failure modes:
    - ValidationError / InvoiceNotSettleableError: bad input, missing or
      non-pending invoices.
    - DuplicateBatchError: (payment_date, reference) already used.
    - BatchNotFoundError: no batch for the id or reference.
    - NotACheckError / CheckAlreadyClearedError from mark_cleared().
    - ReasonRequiredError: amend() changed something without a reason.

Audit relevance:
    Every commit, clear, amend and revert logs one event with the batch id
    bound into LogContext, and amendments are written to the correction log.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from station_ledger.db.types import ZERO, sum_money
from station_ledger.domain.balance_math import balance_after_payment
from station_ledger.domain.dates import parse_date
from station_ledger.domain.dtos import (
    BatchAmendment,
    BatchView,
    FieldChange,
    LedgerPolicy,
    RevertResult,
)
from station_ledger.exceptions import (
    BatchNotFoundError,
    CheckAlreadyClearedError,
    DuplicateBatchError,
    InvoiceNotFoundError,
    InvoiceNotSettleableError,
    NotACheckError,
    ReasonRequiredError,
    ValidationError,
)
from station_ledger.logging_config import LogContext, get_logger
from station_ledger.models.batch import PaymentBatch, PaymentMethod, SettledLineItem
from station_ledger.models.correction import CorrectionEntity
from station_ledger.models.invoice import Invoice, InvoiceStatus
from station_ledger.services.balance_service import BalanceService
from station_ledger.services.base import BaseService, unit_of_work
from station_ledger.services.correction_service import CorrectionService
from station_ledger.services.invoice_service import parse_uuid
from station_ledger.services.sequence_service import SequenceService
from station_ledger.services.simulation_service import (
    SimulationService,
    normalize_invoice_ids,
)

logger = get_logger("services.settlement")


def clean_reference(reference) -> str:
    cleaned = str(reference or "").strip()
    if not cleaned:
        raise ValidationError("Payment reference is required", field="reference")
    return cleaned


def parse_method(method) -> PaymentMethod:
    if isinstance(method, PaymentMethod):
        return method
    try:
        return PaymentMethod(str(method or "").strip().lower())
    except ValueError as exc:
        raise ValidationError(
            f"Payment method must be 'eft' or 'check', got {method!r}", field="method"
        ) from exc


class SettlementEngine(BaseService):
    """
    Batch state machine for one invoice population.

    Subclasses set the model classes and decide when a method clears.
    """

    batch_model: type = PaymentBatch
    line_model: type = SettledLineItem
    invoice_model: type = Invoice
    entity_type: CorrectionEntity = CorrectionEntity.PAYMENT_BATCH
    sequence_name: str = SequenceService.PAYMENT_BATCH
    event_prefix: str = "batch"

    def __init__(
        self,
        session,
        policy: LedgerPolicy | None = None,
        clock=None,
        balance: BalanceService | None = None,
        corrections: CorrectionService | None = None,
        sequences: SequenceService | None = None,
        uow=None,
    ):
        super().__init__(session, clock, uow)
        self._policy = policy or LedgerPolicy()
        self._balance = balance or BalanceService(session, self._clock, self._uow)
        self._corrections = corrections or CorrectionService(
            session, self._clock, self._uow, self._policy.default_changed_by
        )
        self._sequences = sequences or SequenceService(session)

    # -- hooks -------------------------------------------------------------

    def _clears_on_commit(self, method: PaymentMethod) -> bool:
        return method == PaymentMethod.EFT

    def _after_commit(self, batch, invoice_ids) -> None:
        """Population-specific work inside the commit unit of work."""

    # -- lookups -----------------------------------------------------------

    def _load(self, batch_id, lock: bool = False):
        batch_id = parse_uuid(batch_id, "batch_id")
        stmt = (
            select(self.batch_model)
            .where(self.batch_model.id == batch_id)
            .options(selectinload(self.batch_model.lines))
        )
        if lock:
            stmt = stmt.with_for_update()
        batch = self.session.execute(stmt).scalar_one_or_none()
        if batch is None:
            raise BatchNotFoundError(batch_id=str(batch_id))
        return batch

    def _latest_for_reference(self, reference: str):
        batch = self.session.execute(
            select(self.batch_model)
            .where(self.batch_model.reference == reference)
            .order_by(self.batch_model.payment_date.desc(), self.batch_model.seq.desc())
            .limit(1)
            .with_for_update()
        ).scalar_one_or_none()
        if batch is None:
            raise BatchNotFoundError(reference=reference)
        return batch

    def _ensure_unique(self, payment_date, reference: str, exclude_id=None) -> None:
        stmt = select(self.batch_model.id).where(
            self.batch_model.payment_date == payment_date,
            self.batch_model.reference == reference,
        )
        if exclude_id is not None:
            stmt = stmt.where(self.batch_model.id != exclude_id)
        if self.session.execute(stmt.limit(1)).first() is not None:
            raise DuplicateBatchError(payment_date.isoformat(), reference)

    def _flush_unique(self, payment_date, reference: str) -> None:
        """Flush, reporting a lost race on the unique pair as a conflict."""
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateBatchError(payment_date.isoformat(), reference) from exc

    def _settleable_invoices(self, ids, *scope) -> list:
        invoices = self.session.execute(
            select(self.invoice_model)
            .where(self.invoice_model.id.in_(ids), *scope)
            .with_for_update()
        ).scalars().all()
        pending = {inv.id: inv for inv in invoices if inv.is_pending}
        rejected = [str(i) for i in ids if i not in pending]
        if rejected:
            raise InvoiceNotSettleableError(rejected)
        return [pending[i] for i in ids]

    # -- derived totals ----------------------------------------------------

    def _sync_total(self, batch):
        """Recompute total_amount from the lines and overwrite a stale cache."""
        total = batch.total_from_lines()
        if batch.total_amount != total:
            logger.warning(
                f"{self.event_prefix}_total_cache_refreshed",
                extra={
                    "batch_id": str(batch.id),
                    "cached": str(batch.total_amount),
                    "recomputed": str(total),
                },
            )
            batch.total_amount = total
            self.session.flush()
        return total

    def _view(self, batch) -> BatchView:
        return BatchView.from_model(batch, self._sync_total(batch))

    # -- commit ------------------------------------------------------------

    def _commit(self, payment_date, reference, invoice_ids, method, scope=(), **batch_fields) -> BatchView:
        payment_date = parse_date(payment_date, "payment_date")
        reference = clean_reference(reference)
        method = parse_method(method)
        ids = normalize_invoice_ids(invoice_ids)

        self._ensure_unique(payment_date, reference)
        invoices = self._settleable_invoices(ids, *scope)
        total = sum_money(inv.amount for inv in invoices)

        balance_before = self._balance.locked_available_funds()
        batch = self.batch_model(
            payment_date=payment_date,
            reference=reference,
            method=method,
            total_amount=total,
            balance_before=balance_before,
            balance_after=balance_after_payment(balance_before, total),
            cleared_at=None,
            seq=self._sequences.next_value(self.sequence_name),
            created_at=self._clock.now(),
            **batch_fields,
        )
        self.session.add(batch)
        for invoice in invoices:
            batch.lines.append(self.line_model(invoice_id=invoice.id, **invoice.snapshot()))
            invoice.status = InvoiceStatus.PAID
        self._flush_unique(payment_date, reference)

        with LogContext.bind(batch_id=str(batch.id)):
            self._after_commit(batch, ids)

            if self._clears_on_commit(method):
                self._balance.apply_delta(-total)
                batch.cleared_at = self._clock.now()
                self.session.flush()

            logger.info(
                f"{self.event_prefix}_committed",
                extra={
                    "payment_date": payment_date.isoformat(),
                    "reference": reference,
                    "method": method.value,
                    "invoice_count": len(invoices),
                    "total_amount": str(total),
                    "balance_before": str(balance_before),
                    "cleared": batch.cleared_at is not None,
                },
            )
        return self._view(batch)

    # -- amend -------------------------------------------------------------

    def _proposed_metadata(self, batch, amendment: BatchAmendment) -> dict:
        proposed = {}
        if amendment.payment_date is not None:
            proposed["payment_date"] = parse_date(amendment.payment_date, "payment_date")
        if amendment.reference is not None:
            proposed["reference"] = clean_reference(amendment.reference)
        if amendment.transfer_description is not None:
            raise ValidationError(
                "Only vendor batches carry a transfer description",
                field="transfer_description",
            )
        return proposed

    @unit_of_work("batch_amend")
    def amend(
        self,
        batch_id,
        amendment: BatchAmendment,
        reason: str | None = None,
        changed_by: str | None = None,
    ) -> BatchView:
        """
        Correct a batch's metadata.  Contents and amounts are never amended.

        Raises:
            BatchNotFoundError, ValidationError, ReasonRequiredError,
            DuplicateBatchError.
        """
        batch = self._load(batch_id, lock=True)
        proposed = self._proposed_metadata(batch, amendment)
        changes = [
            FieldChange(name, getattr(batch, name), value)
            for name, value in proposed.items()
            if getattr(batch, name) != value
        ]
        if not changes:
            return self._view(batch)

        reason = (reason or "").strip() or None
        if reason is None:
            raise ReasonRequiredError(
                self.entity_type.value, str(batch.id), [c.field for c in changes]
            )

        new_date = proposed.get("payment_date", batch.payment_date)
        new_reference = proposed.get("reference", batch.reference)
        if "payment_date" in proposed or "reference" in proposed:
            self._ensure_unique(new_date, new_reference, exclude_id=batch.id)

        for change in changes:
            setattr(batch, change.field, change.new_value)
        self._flush_unique(new_date, new_reference)
        self._corrections.record_changes(self.entity_type, batch.id, changes, reason, changed_by)

        with LogContext.bind(batch_id=str(batch.id)):
            logger.info(
                f"{self.event_prefix}_amended",
                extra={"fields": [c.field for c in changes]},
            )
        return self._view(batch)

    # -- clearing ----------------------------------------------------------

    @unit_of_work("batch_mark_cleared")
    def mark_cleared(self, batch_id) -> BatchView:
        """
        Apply a deferred check's effect to the balance.

        Raises:
            BatchNotFoundError, NotACheckError, CheckAlreadyClearedError.
        """
        batch = self._load(batch_id, lock=True)
        if not batch.is_check:
            raise NotACheckError(str(batch.id), batch.method.value)
        if batch.is_cleared:
            raise CheckAlreadyClearedError(str(batch.id), batch.cleared_at.isoformat())

        total = self._sync_total(batch)
        with LogContext.bind(batch_id=str(batch.id)):
            self._balance.apply_delta(-total)
            batch.cleared_at = self._clock.now()
            self.session.flush()
            logger.info(
                "check_cleared",
                extra={"reference": batch.reference, "total_amount": str(total)},
            )
        return self._view(batch)

    # -- revert ------------------------------------------------------------

    def _revert(self, batch) -> RevertResult:
        total = batch.total_from_lines()
        restored = ZERO
        with LogContext.bind(batch_id=str(batch.id)):
            if batch.is_cleared and total != ZERO:
                self._balance.apply_delta(total)
                restored = total

            reverted = []
            for line in list(batch.lines):
                line.invoice.status = InvoiceStatus.PENDING
                reverted.append(line.invoice_id)
            self.session.flush()

            self.session.delete(batch)
            self.session.flush()

            logger.info(
                f"{self.event_prefix}_reverted",
                extra={
                    "reference": batch.reference,
                    "invoice_count": len(reverted),
                    "restored_amount": str(restored),
                },
            )
        return RevertResult(
            batch_id=batch.id,
            reference=batch.reference,
            reverted_invoice_ids=tuple(reverted),
            restored_amount=restored,
            batch_deleted=True,
        )

    @unit_of_work("batch_revert")
    def revert(self, reference) -> RevertResult:
        """
        Undo the latest batch paid under ``reference``.

        Invoices return to PENDING, line items and the batch are deleted,
        and a cleared batch's total goes back to available_funds.

        Raises:
            BatchNotFoundError: No batch has this reference.
        """
        batch = self._latest_for_reference(clean_reference(reference))
        return self._revert(self._load(batch.id, lock=True))

    @unit_of_work("batch_revert")
    def revert_batch(self, batch_id) -> RevertResult:
        return self._revert(self._load(batch_id, lock=True))

    def delete(self, batch_id) -> RevertResult:
        """Deleting a batch is reverting it; money is never left behind."""
        return self.revert_batch(batch_id)

    @unit_of_work("batch_remove_invoice")
    def remove_invoice(self, batch_id, invoice_id) -> RevertResult:
        """
        Revert a single invoice out of a batch.

        The batch total is recomputed from the remaining lines, and the
        batch is deleted once it has none left.

        Raises:
            BatchNotFoundError, InvoiceNotFoundError (invoice not in batch).
        """
        batch = self._load(batch_id, lock=True)
        invoice_id = parse_uuid(invoice_id, "invoice_id")
        line = next((ln for ln in batch.lines if ln.invoice_id == invoice_id), None)
        if line is None:
            raise InvoiceNotFoundError(str(invoice_id))
        if len(batch.lines) == 1:
            return self._revert(batch)

        restored = ZERO
        with LogContext.bind(batch_id=str(batch.id)):
            if batch.is_cleared:
                self._balance.apply_delta(line.amount)
                restored = line.amount
            line.invoice.status = InvoiceStatus.PENDING
            batch.lines.remove(line)
            total = batch.total_from_lines()
            batch.total_amount = total
            self.session.flush()
            logger.info(
                f"{self.event_prefix}_invoice_removed",
                extra={
                    "invoice_id": str(invoice_id),
                    "restored_amount": str(restored),
                    "total_amount": str(total),
                },
            )
        return RevertResult(
            batch_id=batch.id,
            reference=batch.reference,
            reverted_invoice_ids=(invoice_id,),
            restored_amount=restored,
            batch_deleted=False,
        )

    # -- reads -------------------------------------------------------------

    @unit_of_work("batch_get")
    def get(self, batch_id) -> BatchView:
        return self._view(self._load(batch_id))

    @unit_of_work("batch_list")
    def list(self, *clauses) -> list[BatchView]:
        """Batches newest first (payment_date desc, seq desc)."""
        rows = self.session.execute(
            select(self.batch_model)
            .where(*clauses)
            .options(selectinload(self.batch_model.lines))
            .order_by(self.batch_model.payment_date.desc(), self.batch_model.seq.desc())
        ).scalars().all()
        return [self._view(row) for row in rows]


class SettlementService(SettlementEngine):
    """
    Settlement of fuel-supplier invoices.

    A fuel check clears at commit unless the policy defers fuel checks, in
    which case it behaves like a vendor check and waits for mark_cleared().
    """

    def __init__(self, session, policy=None, clock=None, balance=None, corrections=None,
                 sequences=None, simulations: SimulationService | None = None, uow=None):
        super().__init__(session, policy, clock, balance, corrections, sequences, uow)
        self._simulations = simulations or SimulationService(
            session, self._policy, self._clock, self._sequences, self._uow
        )

    def _clears_on_commit(self, method: PaymentMethod) -> bool:
        if method == PaymentMethod.CHECK:
            return not self._policy.fuel_defers_check_clearing
        return True

    def _after_commit(self, batch, invoice_ids) -> None:
        self._simulations.discard_overlapping(invoice_ids)

    @unit_of_work("batch_commit")
    def commit(self, payment_date, reference, invoice_ids, method=PaymentMethod.EFT) -> BatchView:
        """
        Pay ``invoice_ids`` as one batch.

        Raises:
            ValidationError, InvoiceNotSettleableError, DuplicateBatchError.
        """
        return self._commit(payment_date, reference, invoice_ids, method)
