from __future__ import annotations

from typing import Dict, List

import pytest

from veledger.runtime.apply.distribution import preview_subsidy_deposit
from veledger.runtime.domain_apply import ApplyError


def _close_epoch(
    ledger,
    epoch: int,
    rewards: Dict[str, int],
    *,
    subsidy: int = 0,
    pool_subsidies: Dict[str, int] | None = None,
) -> None:
    ledger.tx("EPOCH_END", "ops", epoch=epoch)
    ledger.tx("SUBSIDY_DEPOSIT", "ops", epoch=epoch, amount=subsidy)
    pools: List[str] = sorted(rewards)
    subs = pool_subsidies or {}
    ledger.tx(
        "EPOCH_FINALIZE_POOLS",
        "ops",
        epoch=epoch,
        pools=pools,
        rewards=[rewards[p] for p in pools],
        subsidies=[subs.get(p, 0) for p in pools],
    )
    rec = ledger.epoch_rec(epoch)
    funding = rec["total_rewards_deposited"] + rec["total_subsidies_allocated"]
    if funding:
        ledger.fund("ops", funding, "REWARD")
    ledger.tx("EPOCH_FINALIZE", "ops", epoch=epoch)


def _assert_accounting(ledger, epoch: int) -> None:
    rec = ledger.epoch_rec(epoch)
    assert rec["total_rewards_claimed"] <= rec["total_rewards_deposited"]
    assert rec["total_subsidies_claimed"] <= rec["total_subsidies_allocated"]
    for prec in rec["pools"].values():
        assert prec["reward_claimed"] <= prec["reward"]
        assert prec["subsidy_claimed"] <= prec["subsidy"]
    assert rec["total_rewards_deposited"] == sum(p["reward"] for p in rec["pools"].values())


def test_reward_claims_floor_and_residual_is_swept(ledger) -> None:
    ledger.pool("p1")
    for name, votes in (("a", 3), ("b", 1), ("c", 6)):
        ledger.lock(name, 5_000, expiry_epoch=3)
        ledger.tx("VOTE_CAST", name, pools=["p1"], amounts=[votes])

    ledger.at_epoch(1)
    _close_epoch(ledger, 0, {"p1": 5})
    assert ledger.epoch_rec(0)["status"] == "finalized"
    assert ledger.balance("VAULT") == 5

    assert ledger.tx("REWARDS_CLAIM", "a", epoch=0, pools=["p1"])["amount"] == 1
    assert ledger.tx("REWARDS_CLAIM", "b", epoch=0, pools=["p1"])["amount"] == 0
    assert ledger.balance("a") == 1
    _assert_accounting(ledger, 0)

    with pytest.raises(ApplyError) as ei:
        ledger.tx("REWARDS_CLAIM", "a", epoch=0, pools=["p1"])
    assert ei.value.reason == "already_claimed"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("EPOCH_SWEEP", "ops", epoch=0)
    assert ei.value.reason == "sweep_too_early"

    ledger.at_epoch(6)
    out = ledger.tx("EPOCH_SWEEP", "ops", epoch=0)
    assert out["rewards"] == 4
    assert ledger.balance("ops") == 4
    assert ledger.balance("VAULT") == 0
    assert ledger.epoch_rec(0)["swept"] is True

    with pytest.raises(ApplyError) as ei:
        ledger.tx("REWARDS_CLAIM", "c", epoch=0, pools=["p1"])
    assert ei.value.reason == "claims_closed"

    with pytest.raises(ApplyError):
        ledger.tx("EPOCH_SWEEP", "ops", epoch=0)


def test_claim_requires_votes_in_pool(ledger) -> None:
    ledger.pool("p1")
    ledger.pool("p2")
    ledger.lock("a", 5_000, expiry_epoch=3)
    ledger.tx("VOTE_CAST", "a", pools=["p1"], amounts=[10])

    ledger.at_epoch(1)
    _close_epoch(ledger, 0, {"p1": 100, "p2": 100})

    # p2 had no votes, so its reward is dropped rather than deposited
    assert ledger.epoch_rec(0)["pools"]["p2"]["reward"] == 0
    assert ledger.epoch_rec(0)["total_rewards_deposited"] == 100

    with pytest.raises(ApplyError) as ei:
        ledger.tx("REWARDS_CLAIM", "a", epoch=0, pools=["p2"])
    assert ei.value.reason == "no_votes_in_pool"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("REWARDS_CLAIM", "a", epoch=0, pools=["p1", "p1"])
    assert ei.value.reason == "duplicate_pools"

    assert ledger.tx("REWARDS_CLAIM", "a", epoch=0, pools=["p1"])["amount"] == 100


def test_stages_cannot_be_skipped(ledger) -> None:
    ledger.pool("p1")
    ledger.lock("a", 5_000, expiry_epoch=3)
    ledger.tx("VOTE_CAST", "a", pools=["p1"], amounts=[10])

    with pytest.raises(ApplyError) as ei:
        ledger.tx("EPOCH_END", "ops", epoch=0)
    assert ei.value.reason == "epoch_not_over"

    ledger.at_epoch(1)
    with pytest.raises(ApplyError) as ei:
        ledger.tx("EPOCH_END", "a", epoch=0)
    assert ei.value.code == "forbidden"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("EPOCH_FINALIZE_POOLS", "ops", epoch=0, pools=["p1"], rewards=[1], subsidies=[0])
    assert ei.value.reason == "wrong_epoch_stage"

    ledger.tx("EPOCH_END", "ops", epoch=0)
    with pytest.raises(ApplyError) as ei:
        ledger.tx("EPOCH_END", "ops", epoch=0)
    assert ei.value.reason == "wrong_epoch_stage"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("EPOCH_FINALIZE", "ops", epoch=0)
    assert ei.value.reason == "wrong_epoch_stage"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("REWARDS_CLAIM", "a", epoch=0, pools=["p1"])
    assert ei.value.reason == "wrong_epoch_stage"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("REWARDS_CLAIM", "a", epoch=7, pools=["p1"])
    assert ei.value.code == "not_found"


def test_pool_finalization_is_incremental(ledger) -> None:
    for p in ("p1", "p2", "p3"):
        ledger.pool(p)
    ledger.lock("a", 5_000, expiry_epoch=3)
    ledger.tx("VOTE_CAST", "a", pools=["p1", "p2"], amounts=[10, 10])

    ledger.at_epoch(1)
    ledger.tx("EPOCH_END", "ops", epoch=0)
    ledger.tx("SUBSIDY_DEPOSIT", "ops", epoch=0, amount=0)

    out = ledger.tx("EPOCH_FINALIZE_POOLS", "ops", epoch=0, pools=["p1"], rewards=[10], subsidies=[0])
    assert out["status"] == "verified"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("EPOCH_FINALIZE_POOLS", "ops", epoch=0, pools=["p1"], rewards=[10], subsidies=[0])
    assert ei.value.reason == "pool_already_processed"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("EPOCH_FINALIZE_POOLS", "ops", epoch=0, pools=["p9"], rewards=[10], subsidies=[0])
    assert ei.value.reason == "pool_not_eligible"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("EPOCH_FINALIZE_POOLS", "ops", epoch=0, pools=["p2"], rewards=[10], subsidies=[])
    assert ei.value.reason == "length_mismatch"

    out = ledger.tx("EPOCH_FINALIZE_POOLS", "ops", epoch=0, pools=["p2", "p3"], rewards=[20, 30], subsidies=[0, 0])
    assert out["status"] == "processed"
    assert ledger.epoch_rec(0)["total_rewards_deposited"] == 30


def test_pool_disabled_mid_epoch_stays_eligible(ledger) -> None:
    ledger.pool("p1")
    ledger.pool("p2")
    ledger.lock("a", 5_000, expiry_epoch=3)
    ledger.tx("VOTE_CAST", "a", pools=["p1"], amounts=[10])
    ledger.tx("POOL_SET_ACTIVE", "ops", pool_id="p1", active=False)
    ledger.tx("POOL_SET_ACTIVE", "ops", pool_id="p2", active=False)

    ledger.at_epoch(1)
    out = ledger.tx("EPOCH_END", "ops", epoch=0)
    assert out["eligible_pools"] == ["p1"]
    assert ledger.epoch_rec(0)["active_pool_count"] == 1


def test_subsidies_are_spread_by_votes_and_claimed_by_accrual(ledger) -> None:
    for p in ("p1", "p2", "p3"):
        ledger.pool(p)
    ledger.lock("a", 5_000, expiry_epoch=3)
    ledger.lock("b", 5_000, expiry_epoch=3)
    ledger.tx("VOTE_CAST", "a", pools=["p1"], amounts=[6])
    ledger.tx("VOTE_CAST", "b", pools=["p2"], amounts=[4])

    ledger.at_epoch(1)
    ledger.tx("EPOCH_END", "ops", epoch=0)
    ledger.tx("SUBSIDY_ACCRUALS_SET", "ops", epoch=0, pool="p1", accruals={"v1": 2, "v2": 1, "v3": 5})
    ledger.tx("SUBSIDY_ACCRUALS_SET", "ops", epoch=0, pool="p1", accruals={"v3": 0})

    out = ledger.tx("SUBSIDY_DEPOSIT", "ops", epoch=0, amount=100)
    assert out["epoch_subsidies"] == 100
    with pytest.raises(ApplyError) as ei:
        ledger.tx("SUBSIDY_DEPOSIT", "ops", epoch=0, amount=100)
    assert ei.value.reason == "subsidy_already_deposited"

    out = ledger.tx(
        "EPOCH_FINALIZE_POOLS",
        "ops",
        epoch=0,
        pools=["p1", "p2", "p3"],
        rewards=[50, 30, 7],
        subsidies=[10, 0, 5],
    )
    alloc = {a["pool"]: (a["reward"], a["subsidy"]) for a in out["allocated"]}
    assert alloc == {"p1": (50, 70), "p2": (30, 40), "p3": (0, 0)}

    rec = ledger.epoch_rec(0)
    assert rec["total_rewards_deposited"] == 80
    assert rec["total_subsidies_allocated"] == 110
    ledger.fund("ops", 190, "REWARD")
    out = ledger.tx("EPOCH_FINALIZE", "ops", epoch=0)
    assert out["funded"] == 190

    assert ledger.tx("SUBSIDIES_CLAIM", "v1", epoch=0, pools=["p1"])["amount"] == 46
    assert ledger.tx("SUBSIDIES_CLAIM", "v2", epoch=0, pools=["p1"])["amount"] == 23

    with pytest.raises(ApplyError) as ei:
        ledger.tx("SUBSIDIES_CLAIM", "v3", epoch=0, pools=["p1"])
    assert ei.value.reason == "no_accruals_in_pool"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("SUBSIDIES_CLAIM", "v1", epoch=0, pools=["p2"])
    assert ei.value.reason == "no_accruals_in_pool"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("SUBSIDIES_CLAIM", "v1", epoch=0, pools=["p1"])
    assert ei.value.reason == "already_claimed"

    _assert_accounting(ledger, 0)
    assert ledger.state["pools"]["p1"]["total_subsidies_claimed"] == 69


def test_subsidy_deposit_is_skipped_without_votes(ledger) -> None:
    ledger.at_epoch(1)
    ledger.tx("EPOCH_END", "ops", epoch=0)

    out = ledger.tx("SUBSIDY_DEPOSIT", "ops", epoch=0, amount=100)
    assert out["skipped"] is True
    assert ledger.epoch_rec(0)["epoch_subsidies"] == 0

    out = ledger.tx("EPOCH_FINALIZE_POOLS", "ops", epoch=0, pools=[], rewards=[], subsidies=[])
    assert out["status"] == "processed"
    out = ledger.tx("EPOCH_FINALIZE", "ops", epoch=0)
    assert out["funded"] == 0


def test_subsidy_preview_rejects_amounts_lost_to_precision(ledger) -> None:
    ledger.pool("p1")
    ledger.lock("a", 5_000, expiry_epoch=3)
    ledger.tx("VOTE_CAST", "a", pools=["p1"], amounts=[10])
    ledger.at_epoch(1)
    ledger.tx("EPOCH_END", "ops", epoch=0)

    preview = preview_subsidy_deposit(ledger.state, 0, 1)
    assert preview["accepted"] is True
    assert preview["per_vote_scaled"] == 10**17

    ledger.epoch_rec(0)["total_votes"] = 10**19
    assert preview_subsidy_deposit(ledger.state, 0, 1)["accepted"] is False
    with pytest.raises(ApplyError) as ei:
        ledger.tx("SUBSIDY_DEPOSIT", "ops", epoch=0, amount=1)
    assert ei.value.reason == "subsidy_too_small"
    assert ledger.epoch_rec(0)["status"] == "ended"


def test_delegated_claims_layer_pool_delegate_and_pair(ledger) -> None:
    ledger.pool("p1")
    ledger.pool("p2")
    ledger.tx("DELEGATE_REGISTER", "bob", fee_bps=1_000)
    # slopes 5, 15 and 4; all expire at 1800
    alice = ledger.lock("alice", 5_000, expiry_epoch=8)
    dave = ledger.lock("dave", 15_000, expiry_epoch=8)
    ledger.lock("carol", 4_000, expiry_epoch=8)
    ledger.tx("LOCK_DELEGATE", "alice", lock_id=alice, delegate="bob")
    ledger.tx("LOCK_DELEGATE", "dave", lock_id=dave, delegate="bob")

    ledger.at_epoch(1)
    assert ledger.power("bob", 1, role="delegate") == 12_000
    assert ledger.pair_power("alice", "bob", 1) == 3_000
    assert ledger.pair_power("dave", "bob", 1) == 9_000

    ledger.tx("VOTE_CAST", "bob", pools=["p1", "p2"], amounts=[6_000, 6_000], delegated=True)
    ledger.tx("VOTE_CAST", "carol", pools=["p1"], amounts=[2_000])

    ledger.at_epoch(2)
    _close_epoch(ledger, 1, {"p1": 1_000, "p2": 600})

    assert ledger.tx("REWARDS_CLAIM", "carol", epoch=1, pools=["p1"])["amount"] == 250

    out = ledger.tx("DELEGATED_REWARDS_CLAIM", "alice", epoch=1, delegate="bob", pools=["p1", "p2"])
    assert out["pools"] == {"p1": 187, "p2": 150}
    assert (out["gross"], out["fee"], out["amount"]) == (337, 33, 304)
    assert ledger.balance("alice") == 304
    assert ledger.balance("bob") == 33

    out = ledger.tx("DELEGATED_REWARDS_CLAIM", "dave", epoch=1, delegate="bob", pools=["p1"])
    assert (out["gross"], out["fee"], out["amount"]) == (562, 56, 506)
    with pytest.raises(ApplyError) as ei:
        ledger.tx("DELEGATED_REWARDS_CLAIM", "dave", epoch=1, delegate="bob", pools=["p1"])
    assert ei.value.reason == "already_claimed"
    out = ledger.tx("DELEGATED_REWARDS_CLAIM", "dave", epoch=1, delegate="bob", pools=["p2"])
    assert (out["gross"], out["fee"], out["amount"]) == (450, 45, 405)

    bob = ledger.state["delegates"]["bob"]
    assert bob["captured_rewards"] == 337 + 562 + 450
    assert bob["captured_fees"] == 33 + 56 + 45

    rec = ledger.epoch_rec(1)
    assert rec["pools"]["p1"]["reward_claimed"] == 999
    assert rec["pools"]["p2"]["reward_claimed"] == 600
    assert ledger.balance("VAULT") == 1
    _assert_accounting(ledger, 1)

    with pytest.raises(ApplyError) as ei:
        ledger.tx("DELEGATED_REWARDS_CLAIM", "alice", epoch=1, delegate="carol", pools=["p1"])
    assert ei.value.reason == "fee_not_recorded"

    with pytest.raises(ApplyError) as ei:
        ledger.tx("DELEGATED_REWARDS_CLAIM", "erin", epoch=1, delegate="bob", pools=["p1"])
    assert ei.value.reason == "no_delegated_power"
