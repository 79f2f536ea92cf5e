"""
Tests for SettlementService -- committing, clearing, amending and reverting
fuel payment batches.

Covers:
- The REF100 example: $120.00 + $80.30 against $1000.00
- Duplicate (payment_date, reference) rejection
- No double settlement
- Revert round-trip and conservation of available_funds
- Derived totals over a corrupted cache
- Check clearing under both policies
- amend(), remove_invoice(), delete()
- Rollback of commit, revert and mark_cleared when a step fails
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from station_ledger.domain.dtos import BatchAmendment, LedgerPolicy
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
from station_ledger.models.batch import PaymentBatch
from station_ledger.services.ledger_orchestrator import LedgerOrchestrator


@pytest.fixture
def ref100(ledger, make_invoice, fund):
    """INV-1 ($120.00) and INV-2 ($80.30) against $1000.00."""
    fund("1000.00")
    return make_invoice(amount="120.00", number="INV-1"), make_invoice(amount="80.30", number="INV-2")


class TestCommit:
    def test_ref100_example(self, ledger, ref100, clock):
        inv1, inv2 = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id, inv2.id])

        assert batch.total_amount == Decimal("200.30")
        assert batch.balance_before == Decimal("1000.00")
        assert batch.balance_after == Decimal("799.70")
        assert batch.method == "eft"
        assert batch.cleared_at == clock.now()
        assert set(batch.invoice_ids) == {inv1.id, inv2.id}
        assert ledger.balance.get().available_funds == Decimal("799.70")
        assert ledger.invoices.get(inv1.id).status == "paid"
        assert ledger.invoices.get(inv2.id).status == "paid"

    def test_line_items_snapshot_invoices(self, ledger, ref100):
        inv1, _ = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])
        (line,) = batch.lines
        assert line.number == "INV-1"
        assert line.amount == Decimal("120.00")
        assert line.kind == "Fuel"
        assert line.due_date == inv1.due_date

    def test_duplicate_date_and_reference(self, ledger, ref100):
        inv1, inv2 = ref100
        ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])

        with pytest.raises(DuplicateBatchError) as exc_info:
            ledger.settlement.commit("2026-01-05", " REF100 ", [inv2.id])
        assert exc_info.value.reference == "REF100"
        assert exc_info.value.payment_date == "2026-01-05"
        assert ledger.invoices.get(inv2.id).status == "pending"
        assert ledger.balance.get().available_funds == Decimal("880.00")

    def test_same_reference_on_another_day(self, ledger, ref100):
        inv1, inv2 = ref100
        ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])
        batch = ledger.settlement.commit("2026-01-06", "REF100", [inv2.id])
        assert batch.payment_date == date(2026, 1, 6)

    def test_no_double_settlement(self, ledger, ref100):
        inv1, inv2 = ref100
        ledger.settlement.commit("2026-01-05", "REF1", [inv1.id])

        with pytest.raises(InvoiceNotSettleableError) as exc_info:
            ledger.settlement.commit("2026-01-05", "REF2", [inv2.id, inv1.id])
        assert exc_info.value.invoice_ids == [str(inv1.id)]
        assert ledger.invoices.get(inv2.id).status == "pending"
        assert len(ledger.settlement.list()) == 1

    def test_vendor_invoice_ids_are_not_fuel_invoices(self, ledger, make_vendor_invoice, fund):
        fund("100.00")
        invoice = make_vendor_invoice(amount="10.00")
        with pytest.raises(InvoiceNotSettleableError):
            ledger.settlement.commit("2026-01-05", "REF1", [invoice.id])

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"reference": "  "},
            {"invoice_ids": []},
            {"method": "cash"},
            {"payment_date": "yesterday"},
        ],
    )
    def test_validation(self, ledger, ref100, kwargs):
        inv1, _ = ref100
        args = {"payment_date": "2026-01-05", "reference": "REF1", "invoice_ids": [inv1.id]}
        args.update(kwargs)
        with pytest.raises(ValidationError):
            ledger.settlement.commit(**args)

    def test_commit_discards_overlapping_simulations(self, ledger, ref100):
        inv1, inv2 = ref100
        overlapping = ledger.simulations.create("2026-01-06", [inv1.id, inv2.id])
        unrelated_invoice = ledger.invoices.create("INV-3", "5.00", "Fuel", "2026-01-03")
        unrelated = ledger.simulations.create("2026-01-06", [unrelated_invoice.id])

        ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])

        assert [s.id for s in ledger.simulations.list()] == [unrelated.id]
        assert overlapping.id not in {s.id for s in ledger.simulations.list()}

    def test_commit_logs_with_batch_context(self, ledger, ref100, captured_logs):
        inv1, _ = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])

        (record,) = [r for r in captured_logs() if r["message"] == "batch_committed"]
        assert record["batch_id"] == str(batch.id)
        assert record["operation"] == "batch_commit"
        assert record["total_amount"] == "120.00"
        assert record["cleared"] is True
        assert "correlation_id" in record


class TestRevert:
    def test_round_trip(self, ledger, ref100):
        inv1, inv2 = ref100
        ledger.settlement.commit("2026-01-05", "REF100", [inv1.id, inv2.id])

        result = ledger.settlement.revert("REF100")

        assert set(result.reverted_invoice_ids) == {inv1.id, inv2.id}
        assert result.restored_amount == Decimal("200.30")
        assert result.batch_deleted is True
        assert ledger.balance.get().available_funds == Decimal("1000.00")
        assert ledger.invoices.get(inv1.id) == inv1
        assert ledger.invoices.get(inv2.id) == inv2
        assert ledger.batches.for_reference("REF100") == []

    def test_reverted_invoices_can_be_settled_again(self, ledger, ref100):
        inv1, _ = ref100
        ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])
        ledger.settlement.revert("REF100")
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])
        assert batch.total_amount == Decimal("120.00")

    def test_latest_batch_for_reference(self, ledger, ref100):
        inv1, inv2 = ref100
        ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])
        later = ledger.settlement.commit("2026-01-06", "REF100", [inv2.id])

        result = ledger.settlement.revert("REF100")
        assert result.batch_id == later.id
        assert ledger.invoices.get(inv1.id).status == "paid"

    def test_unknown_reference(self, ledger):
        with pytest.raises(BatchNotFoundError) as exc_info:
            ledger.settlement.revert("NOPE")
        assert exc_info.value.reference == "NOPE"

    def test_conservation_over_a_sequence(self, ledger, make_invoice, fund):
        fund("1000.00")
        amounts = ["10.01", "20.02", "30.03", "40.04"]
        invoices = [make_invoice(amount=a) for a in amounts]

        for n, invoice in enumerate(invoices):
            ledger.settlement.commit("2026-01-05", f"R{n}", [invoice.id])
        ledger.settlement.revert("R1")
        ledger.settlement.revert("R3")

        assert ledger.balance.get().available_funds == Decimal("959.96")

    def test_delete_is_revert_by_id(self, ledger, ref100):
        inv1, _ = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])

        result = ledger.settlement.delete(batch.id)

        assert result.restored_amount == Decimal("120.00")
        assert ledger.balance.get().available_funds == Decimal("1000.00")
        with pytest.raises(BatchNotFoundError):
            ledger.settlement.get(batch.id)

    def test_revert_batch_missing(self, ledger):
        with pytest.raises(BatchNotFoundError):
            ledger.settlement.revert_batch(uuid4())


class TestRemoveInvoice:
    def test_partial_revert(self, ledger, ref100):
        inv1, inv2 = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id, inv2.id])

        result = ledger.settlement.remove_invoice(batch.id, inv2.id)

        assert result.batch_deleted is False
        assert result.restored_amount == Decimal("80.30")
        assert ledger.settlement.get(batch.id).total_amount == Decimal("120.00")
        assert ledger.invoices.get(inv2.id).status == "pending"
        assert ledger.balance.get().available_funds == Decimal("880.00")

    def test_last_invoice_deletes_batch(self, ledger, ref100):
        inv1, _ = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])

        result = ledger.settlement.remove_invoice(batch.id, inv1.id)

        assert result.batch_deleted is True
        assert ledger.batches.get(batch.id) is None

    def test_invoice_not_in_batch(self, ledger, ref100):
        inv1, inv2 = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])
        with pytest.raises(InvoiceNotFoundError):
            ledger.settlement.remove_invoice(batch.id, inv2.id)


class TestDerivedTotals:
    def test_stale_cache_overwritten_on_read(self, ledger, ref100, session, captured_logs):
        inv1, inv2 = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id, inv2.id])
        session.execute(
            update(PaymentBatch).where(PaymentBatch.id == batch.id).values(total_amount=Decimal("1.00"))
        )

        assert ledger.batches.stale_totals() == [batch.id]
        assert ledger.batches.get(batch.id).total_amount == Decimal("200.30")
        assert ledger.settlement.get(batch.id).total_amount == Decimal("200.30")
        assert ledger.batches.stale_totals() == []
        assert any(r["message"] == "batch_total_cache_refreshed" for r in captured_logs())

    def test_revert_restores_line_total_not_cache(self, ledger, ref100, session):
        inv1, inv2 = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id, inv2.id])
        session.execute(
            update(PaymentBatch).where(PaymentBatch.id == batch.id).values(total_amount=Decimal("5.00"))
        )

        result = ledger.settlement.revert("REF100")
        assert result.restored_amount == Decimal("200.30")
        assert ledger.balance.get().available_funds == Decimal("1000.00")


class TestChecks:
    def test_fuel_check_clears_at_commit_by_default(self, ledger, ref100):
        inv1, _ = ref100
        batch = ledger.settlement.commit("2026-01-05", "CHK-1", [inv1.id], method="check")

        assert batch.method == "check"
        assert batch.is_cleared
        assert ledger.balance.get().available_funds == Decimal("880.00")
        with pytest.raises(CheckAlreadyClearedError):
            ledger.settlement.mark_cleared(batch.id)

    def test_deferred_fuel_check(self, session, clock, make_invoice, fund):
        deferring = LedgerOrchestrator(session, LedgerPolicy(fuel_defers_check_clearing=True), clock)
        fund("1000.00")
        invoice = make_invoice(amount="120.00")

        batch = deferring.settlement.commit("2026-01-05", "CHK-1", [invoice.id], method="check")
        assert not batch.is_cleared
        assert deferring.balance.get().available_funds == Decimal("1000.00")

        clock.advance_hours(48)
        cleared = deferring.settlement.mark_cleared(batch.id)
        assert cleared.cleared_at == clock.now()
        assert deferring.balance.get().available_funds == Decimal("880.00")

    def test_revert_of_uncleared_check_leaves_balance(self, session, clock, make_invoice, fund):
        deferring = LedgerOrchestrator(session, LedgerPolicy(fuel_defers_check_clearing=True), clock)
        fund("1000.00")
        invoice = make_invoice(amount="120.00")
        deferring.settlement.commit("2026-01-05", "CHK-1", [invoice.id], method="check")

        result = deferring.settlement.revert("CHK-1")
        assert result.restored_amount == Decimal("0.00")
        assert deferring.balance.get().available_funds == Decimal("1000.00")

    def test_eft_cannot_be_cleared(self, ledger, ref100):
        inv1, _ = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id])
        with pytest.raises(NotACheckError) as exc_info:
            ledger.settlement.mark_cleared(batch.id)
        assert exc_info.value.method == "eft"


class TestAmend:
    def test_reference_change_logged(self, ledger, ref100):
        inv1, _ = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF10", [inv1.id])

        amended = ledger.settlement.amend(
            batch.id, BatchAmendment(reference="REF100"), reason="bank statement", changed_by="maria"
        )

        assert amended.reference == "REF100"
        assert amended.total_amount == Decimal("120.00")
        (correction,) = ledger.corrections.history("payment_batch", batch.id)
        assert (correction.field, correction.old_value, correction.new_value) == ("reference", "REF10", "REF100")
        assert correction.changed_by == "maria"

    def test_reason_required(self, ledger, ref100):
        inv1, _ = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF10", [inv1.id])
        with pytest.raises(ReasonRequiredError):
            ledger.settlement.amend(batch.id, BatchAmendment(payment_date="2026-01-04"))

    def test_no_change_needs_no_reason(self, ledger, ref100):
        inv1, _ = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF10", [inv1.id])
        assert ledger.settlement.amend(batch.id, BatchAmendment(reference="REF10")).id == batch.id

    def test_amend_into_existing_pair(self, ledger, ref100):
        inv1, inv2 = ref100
        ledger.settlement.commit("2026-01-05", "REF1", [inv1.id])
        second = ledger.settlement.commit("2026-01-05", "REF2", [inv2.id])
        with pytest.raises(DuplicateBatchError):
            ledger.settlement.amend(second.id, BatchAmendment(reference="REF1"), reason="typo")

    def test_fuel_batches_have_no_transfer_description(self, ledger, ref100):
        inv1, _ = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF1", [inv1.id])
        with pytest.raises(ValidationError):
            ledger.settlement.amend(batch.id, BatchAmendment(transfer_description="x"), reason="x")

    def test_amend_leaves_balance_alone(self, ledger, ref100):
        inv1, _ = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF1", [inv1.id])
        ledger.settlement.amend(batch.id, BatchAmendment(payment_date="2026-01-04"), reason="value date")
        assert ledger.balance.get().available_funds == Decimal("880.00")


class TestRollbackOnFailure:
    """A failure after the balance moved leaves no trace of the operation."""

    @staticmethod
    def _fail_after_delta(monkeypatch, balance):
        real = balance.apply_delta

        def apply_then_fail(delta):
            real(delta)
            raise RuntimeError("storage went away")

        monkeypatch.setattr(balance, "apply_delta", apply_then_fail)

    def test_commit(self, ledger, ref100, monkeypatch):
        inv1, inv2 = ref100
        self._fail_after_delta(monkeypatch, ledger.balance)

        with pytest.raises(RuntimeError):
            ledger.settlement.commit("2026-01-05", "REF100", [inv1.id, inv2.id])
        monkeypatch.undo()

        assert ledger.invoices.get(inv1.id).status == "pending"
        assert ledger.invoices.get(inv2.id).status == "pending"
        assert ledger.settlement.list() == []
        assert ledger.balance.get().available_funds == Decimal("1000.00")

    def test_revert(self, ledger, ref100, monkeypatch):
        inv1, inv2 = ref100
        batch = ledger.settlement.commit("2026-01-05", "REF100", [inv1.id, inv2.id])
        self._fail_after_delta(monkeypatch, ledger.balance)

        with pytest.raises(RuntimeError):
            ledger.settlement.revert("REF100")
        monkeypatch.undo()

        assert ledger.invoices.get(inv1.id).status == "paid"
        assert ledger.invoices.get(inv2.id).status == "paid"
        assert ledger.settlement.get(batch.id).total_amount == Decimal("200.30")
        assert ledger.balance.get().available_funds == Decimal("799.70")

    def test_mark_cleared(self, session, clock, make_invoice, fund, monkeypatch):
        deferring = LedgerOrchestrator(session, LedgerPolicy(fuel_defers_check_clearing=True), clock)
        fund("1000.00")
        invoice = make_invoice(amount="120.00")
        batch = deferring.settlement.commit("2026-01-05", "CHK-1", [invoice.id], method="check")
        self._fail_after_delta(monkeypatch, deferring.balance)

        with pytest.raises(RuntimeError):
            deferring.settlement.mark_cleared(batch.id)
        monkeypatch.undo()

        assert deferring.settlement.get(batch.id).cleared_at is None
        assert deferring.invoices.get(invoice.id).status == "paid"
        assert deferring.balance.get().available_funds == Decimal("1000.00")
