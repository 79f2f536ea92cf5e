"""
Tests for scripts/purge_simulations.py against a file-backed SQLite database.
"""

import importlib.util
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import station_ledger.db.engine as engine_module
from station_ledger.domain.clock import DeterministicClock
from station_ledger.services.ledger_orchestrator import LedgerOrchestrator

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "purge_simulations.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("purge_simulations", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def script(monkeypatch):
    """
    The script module.  Only an engine created by the script is disposed;
    the suite's engine is put back untouched.
    """
    monkeypatch.delenv("STATION_LEDGER_DATABASE_URL", raising=False)
    suite_engine = engine_module._engine
    monkeypatch.setattr(engine_module, "_engine", suite_engine)
    monkeypatch.setattr(engine_module, "_SessionFactory", engine_module._SessionFactory)
    yield _load_script()
    script_engine = engine_module._engine
    if script_engine is not None and script_engine is not suite_engine:
        script_engine.dispose()


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'ledger.db'}"


def _seed(created_at: datetime) -> None:
    with engine_module.session_scope() as session:
        ledger = LedgerOrchestrator(session, clock=DeterministicClock(created_at), auto_commit=False)
        invoice = ledger.invoices.create(
            f"INV-{created_at:%H%M%S}", "50.00", "Fuel", "2026-01-02"
        )
        ledger.simulations.create("2026-01-06", [invoice.id])


def test_purges_old_simulations(script, database_url, capsys):
    assert script.main(["--database-url", database_url, "--create-schema"]) == 0
    assert "Purged 0 simulation(s) older than 24h" in capsys.readouterr().out

    now = datetime.now(timezone.utc)
    _seed(now - timedelta(hours=48))
    _seed(now - timedelta(hours=1))

    assert script.main(["--database-url", database_url]) == 0
    assert "Purged 1 simulation(s) older than 24h" in capsys.readouterr().out

    with engine_module.session_scope() as session:
        assert len(LedgerOrchestrator(session, auto_commit=False).simulations.list()) == 1


def test_hours_override(script, database_url, capsys):
    assert script.main(["--database-url", database_url, "--create-schema", "--hours", "2"]) == 0
    assert "older than 2h" in capsys.readouterr().out


def test_hours_must_be_positive(script, database_url, capsys):
    assert script.main(["--database-url", database_url, "--hours", "0"]) == 1
    assert "ERROR" in capsys.readouterr().err


def test_missing_config(script, tmp_path, capsys):
    assert script.main(["--config", str(tmp_path / "missing.yaml")]) == 1
    assert "ERROR" in capsys.readouterr().err


def test_suite_database_survives_early_exits(ledger):
    # Runs after the early-exit cases above, whose teardown must leave the
    # suite's in-memory engine and schema in place.
    invoice = ledger.invoices.create("INV-AFTER", "10.00", "Fuel", "2026-01-02")
    assert ledger.invoices.get(invoice.id).number == "INV-AFTER"
