from __future__ import annotations

import copy

import pytest

from veledger.runtime.domain_apply import ApplyError, apply_tx, apply_tx_atomic


def test_unknown_tx_type_is_rejected(ledger) -> None:
    with pytest.raises(ApplyError) as ei:
        ledger.tx("NOT_A_REAL_TX", "alice")
    assert ei.value.code == "tx_unimplemented"


def test_missing_tx_type_is_rejected(ledger) -> None:
    with pytest.raises(ApplyError) as ei:
        apply_tx(ledger.state, {"signer": "alice", "payload": {}})
    assert ei.value.reason == "missing_tx_type"


def test_missing_signer_is_rejected(ledger) -> None:
    with pytest.raises(ApplyError) as ei:
        ledger.tx("LOCK_CREATE", "", amounts={"VOTE": 1_000}, expiry=ledger.start(3))
    assert ei.value.reason == "missing_signer"


def test_rejection_leaves_state_untouched(ledger) -> None:
    ledger.pool("p1")
    ledger.lock("alice", 5_000, expiry_epoch=3)
    ledger.tx("VOTE_CAST", "alice", pools=["p1"], amounts=[400])
    before = copy.deepcopy(ledger.state)

    # the second pool is unknown, so nothing of the first allocation may stick
    with pytest.raises(ApplyError):
        ledger.tx("VOTE_CAST", "alice", pools=["p1", "missing"], amounts=[100, 100])
    assert ledger.state == before

    with pytest.raises(ApplyError):
        ledger.tx("VOTE_MIGRATE", "alice", src_pools=["p1", "p1"], dst_pools=["p1", "p1"], amounts=[100, 500])
    assert ledger.state == before


def test_system_envelope_acts_as_operator(ledger) -> None:
    out = apply_tx_atomic(
        ledger.state,
        {"tx_type": "POOL_CREATE", "signer": "runtime", "system": True, "payload": {"pool_id": "p1"}},
    )
    assert out["pool_id"] == "p1"


def test_sequenced_nonces_must_increase(ledger) -> None:
    env = {"tx_type": "BALANCE_MINT", "signer": "ops", "nonce": 1, "payload": {"account": "a", "asset": "VOTE", "amount": 5}}
    apply_tx_atomic(ledger.state, env)
    assert ledger.state["accounts"]["ops"]["nonce"] == 1

    with pytest.raises(ApplyError) as ei:
        apply_tx_atomic(ledger.state, env)
    assert ei.value.reason == "nonce_replay"
    assert ledger.balance("a", "VOTE") == 5

    apply_tx_atomic(ledger.state, {**env, "nonce": 7})
    assert ledger.state["accounts"]["ops"]["nonce"] == 7

    # nonce 0 is unsequenced
    apply_tx_atomic(ledger.state, {**env, "nonce": 0})
    assert ledger.balance("a", "VOTE") == 15


def test_rejected_tx_does_not_consume_nonce(ledger) -> None:
    bad = {"tx_type": "BALANCE_MINT", "signer": "ops", "nonce": 3, "payload": {"account": "a", "asset": "VOTE", "amount": 0}}
    with pytest.raises(ApplyError):
        apply_tx_atomic(ledger.state, bad)
    assert ledger.state["accounts"].get("ops", {}).get("nonce", 0) == 0

    apply_tx_atomic(ledger.state, {**bad, "payload": {"account": "a", "asset": "VOTE", "amount": 1}})
    assert ledger.state["accounts"]["ops"]["nonce"] == 3
