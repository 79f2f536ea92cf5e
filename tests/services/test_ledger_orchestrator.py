"""
Tests for LedgerOrchestrator and the unit of work it shares across services.

Covers:
- A failure mid-commit rolls back the batch, invoice flips and balance move
- Driver errors surface as StorageError
- auto_commit=False leaves the transaction to the caller
- Nested service calls run in one scope with one correlation id
- Convenience reads: recent payment, monthly and due reports
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from station_ledger.domain.reporting import DueStatus
from station_ledger.exceptions import DuplicateInvoiceError, StorageError
from station_ledger.logging_config import LogContext
from station_ledger.models.batch import PaymentBatch
from station_ledger.services.ledger_orchestrator import LedgerOrchestrator


class TestAtomicity:
    def test_failure_after_invoice_flip_rolls_back_everything(
        self, ledger, session, make_invoice, fund, monkeypatch
    ):
        fund("1000.00")
        invoice = make_invoice(amount="120.00")
        simulation = ledger.simulations.create("2026-01-06", [invoice.id])

        def boom(delta):
            raise RuntimeError("balance unavailable")

        monkeypatch.setattr(ledger.balance, "apply_delta", boom)
        with pytest.raises(RuntimeError):
            ledger.settlement.commit("2026-01-05", "REF1", [invoice.id])
        monkeypatch.undo()

        assert ledger.invoices.get(invoice.id).status == "pending"
        assert session.scalar(select(func.count()).select_from(PaymentBatch)) == 0
        assert ledger.simulations.get(simulation.id).id == simulation.id
        assert ledger.balance.get().available_funds == Decimal("1000.00")

    def test_driver_error_becomes_storage_error(self, ledger, make_invoice, fund, monkeypatch):
        fund("1000.00")
        invoice = make_invoice(amount="120.00")

        def broken(delta):
            raise OperationalError("UPDATE balances", {}, Exception("disk I/O error"))

        monkeypatch.setattr(ledger.balance, "apply_delta", broken)
        with pytest.raises(StorageError) as exc_info:
            ledger.settlement.commit("2026-01-05", "REF1", [invoice.id])
        monkeypatch.undo()

        assert exc_info.value.operation == "batch_commit"
        assert exc_info.value.code == "STORAGE_ERROR"
        assert ledger.invoices.get(invoice.id).status == "pending"

    def test_failure_is_logged(self, ledger, make_invoice, captured_logs):
        make_invoice(number="INV-1")
        with pytest.raises(DuplicateInvoiceError):
            make_invoice(number="INV-1")
        assert any(
            r["message"] == "operation_rolled_back" and r["operation"] == "invoice_create"
            for r in captured_logs()
        )


class TestAutoCommitOff:
    def test_caller_owns_the_transaction(self, session, clock):
        manual = LedgerOrchestrator(session, clock=clock, auto_commit=False)
        assert manual.auto_commit is False

        manual.invoices.create("INV-1", "10.00", "Fuel", "2026-01-02")
        session.rollback()

        assert manual.invoices.list() == []


class TestScopes:
    def test_nested_calls_share_one_correlation_id(self, ledger, make_invoice, fund, captured_logs):
        fund("1000.00")
        invoice = make_invoice(amount="120.00")
        ledger.settlement.commit("2026-01-05", "REF1", [invoice.id])

        records = captured_logs()
        delta = next(r for r in records if r["message"] == "balance_delta_applied")
        committed = next(r for r in records if r["message"] == "batch_committed")
        assert delta["operation"] == "batch_commit"
        assert delta["correlation_id"] == committed["correlation_id"]

    def test_caller_correlation_id_is_kept(self, ledger, captured_logs):
        with LogContext.bind(correlation_id="req-42"):
            ledger.balance.get()
        assert all(
            r["correlation_id"] == "req-42"
            for r in captured_logs()
            if r.get("operation") == "balance_get"
        )


class TestReads:
    def test_recent_payment(self, ledger, make_invoice, fund):
        assert ledger.recent_payment() is None

        fund("1000.00")
        a = make_invoice(amount="120.00", number="INV-1", invoice_date="2026-01-01")
        b = make_invoice(amount="80.30", number="INV-2", invoice_date="2026-01-03")
        ledger.settlement.commit("2026-01-05", "REF100", [a.id, b.id])

        recent = ledger.recent_payment()
        assert recent.reference == "REF100"
        assert recent.date_paid == date(2026, 1, 5)
        assert recent.total_paid == "200.30"
        assert recent.available_balance == "799.70"
        assert recent.invoices == (("INV-2", "80.30"), ("INV-1", "120.00"))

    def test_monthly_report(self, ledger, make_invoice, fund):
        fund("1000.00")
        ledger.settlement.commit("2026-01-05", "10", [make_invoice(amount="1.00").id])
        ledger.settlement.commit("2026-01-05", "9", [make_invoice(amount="2.00").id])
        ledger.settlement.commit("2026-02-01", "11", [make_invoice(amount="4.00").id])

        report = ledger.monthly_report("2026-01")
        assert [b.reference for b in report.days[0].blocks] == ["9", "10"]
        assert report.grand_total == Decimal("3.00")

    def test_due_report_uses_clock_today(self, ledger, make_invoice):
        make_invoice(number="LATER", invoice_date="2026-01-10")
        make_invoice(number="TODAY", invoice_date="2025-12-31")

        rows = ledger.due_report()
        assert [(inv.number, status.status) for inv, status in rows] == [
            ("TODAY", DueStatus.DUE),
            ("LATER", DueStatus.OK),
        ]
