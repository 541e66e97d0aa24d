from __future__ import annotations

from veledger.runtime.fee_ledger import (
    effective_fee,
    fee_amount,
    fee_for_epoch,
    new_delegate_record,
    record_fee_for_epoch,
    set_fee,
)


def test_fee_increase_is_deferred_and_recorded_lazily() -> None:
    rec = new_delegate_record(1_000, 1)

    out = set_fee(rec, 2_000, epoch=2, delay_epochs=2)
    assert out == {"fee_bps": 2_000, "effective_epoch": 4, "deferred": True}
    assert rec["current_fee"] == 1_000

    # delegated votes land in epochs 2..5
    assert [record_fee_for_epoch(rec, e) for e in (2, 3, 4, 5)] == [1_000, 1_000, 2_000, 2_000]
    assert rec["fee_history"] == {"2": 1_000, "3": 1_000, "4": 2_000, "5": 2_000}
    assert rec["pending_fee"] == 0


def test_fee_decrease_is_immediate_and_clears_pending() -> None:
    rec = new_delegate_record(1_000, 0)
    set_fee(rec, 2_000, epoch=2, delay_epochs=2)

    out = set_fee(rec, 500, epoch=3, delay_epochs=2)
    assert out["deferred"] is False
    assert rec["current_fee"] == 500
    assert rec["pending_fee"] == 0
    assert rec["fee_history"]["3"] == 500
    assert record_fee_for_epoch(rec, 4) == 500


def test_recorded_fee_is_pinned_for_the_epoch() -> None:
    rec = new_delegate_record(1_000, 0)
    assert record_fee_for_epoch(rec, 1) == 1_000

    # an undelayed increase cannot reach back into an epoch already voted in
    set_fee(rec, 3_000, epoch=1, delay_epochs=0)
    assert record_fee_for_epoch(rec, 1) == 1_000
    assert record_fee_for_epoch(rec, 2) == 3_000


def test_effective_fee_view() -> None:
    rec = new_delegate_record(1_000, 0)
    set_fee(rec, 2_000, epoch=0, delay_epochs=2)
    assert effective_fee(rec, 1) == 1_000
    assert effective_fee(rec, 2) == 2_000


def test_fee_for_epoch_unrecorded_is_zero(ledger) -> None:
    ledger.tx("DELEGATE_REGISTER", "bob", fee_bps=1_000)
    assert fee_for_epoch(ledger.state, "bob", 0) == 0
    assert fee_for_epoch(ledger.state, "nobody", 0) == 0


def test_fee_amount_floors() -> None:
    assert fee_amount(337, 1_000) == 33
    assert fee_amount(9, 1_000) == 0
    assert fee_amount(10_000, 10_000) == 10_000
    # out-of-range rates are clamped
    assert fee_amount(100, 20_000) == 100
    assert fee_amount(100, -5) == 0


def test_fee_set_through_ledger(ledger) -> None:
    ledger.at_epoch(1)
    ledger.tx("DELEGATE_REGISTER", "bob", fee_bps=1_000)
    ledger.at_epoch(2)

    out = ledger.tx("DELEGATE_FEE_SET", "bob", fee_bps=2_000)
    assert out["deferred"] is True
    assert out["effective_epoch"] == 4

    out = ledger.tx("DELEGATE_FEE_SET", "bob", fee_bps=800)
    assert out["deferred"] is False
    assert ledger.state["delegates"]["bob"]["current_fee"] == 800
