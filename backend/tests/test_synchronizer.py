import pytest

from engine.synchronizer import RoundSynchronizer
from services.round_store import RoundMultiplierLedger


@pytest.fixture
def ledger() -> RoundMultiplierLedger:
    return RoundMultiplierLedger()


@pytest.fixture
def synchronizer(ledger) -> RoundSynchronizer:
    return RoundSynchronizer(ledger)


def test_uninitialized_counter_adopts_start_round(synchronizer):
    result = synchronizer.reconcile(0, 42)
    assert result.round == 42
    assert result.reason == "first_sync"
    assert result.changed


def test_counter_behind_catches_up(synchronizer):
    result = synchronizer.reconcile(10, 15)
    assert result.round == 15
    assert result.reason == "catch_up"


def test_counter_ahead_with_gap_jumps_to_start_round(synchronizer, ledger):
    ledger.assign(14, 2.0)
    result = synchronizer.reconcile(20, 15)
    assert result.round == 15
    assert result.reason == "gap_repair"


def test_counter_ahead_but_covered_by_ledger_is_kept(synchronizer, ledger):
    ledger.assign(20, 3.1)
    result = synchronizer.reconcile(20, 15)
    assert result.round == 20
    assert result.reason == "ahead_valid"
    assert not result.changed


def test_counter_in_sync_is_unchanged(synchronizer):
    result = synchronizer.reconcile(15, 15)
    assert result.round == 15
    assert result.reason == "in_sync"


@pytest.mark.parametrize("start_round", [None, 0])
def test_missing_start_round_is_skipped(synchronizer, start_round):
    result = synchronizer.reconcile(7, start_round)
    assert result.round == 7
    assert result.reason == "skipped"


def test_gap_repair_is_logged_as_warning(synchronizer, caplog):
    with caplog.at_level("WARNING"):
        synchronizer.reconcile(30, 25)
    assert "desync" in caplog.text.lower()
