# src/veledger/runtime/apply/distribution.py
from __future__ import annotations

"""
Epoch finalization and distribution engine.

Stage machine per epoch (strictly sequential, no skipping):

  voting -> ended -> verified -> processed -> finalized   (+ swept flag)

  EPOCH_END              close voting, snapshot the eligible pool set
  SUBSIDY_DEPOSIT        one-shot epoch-level subsidy           (ended -> verified)
  SUBSIDY_ACCRUALS_SET   per (pool, verifier) accrual figures from the fee source
  EPOCH_FINALIZE_POOLS   incremental per-pool reward/subsidy allocation
                                                               (verified -> processed)
  EPOCH_FINALIZE         pull the funding total into the vault (processed -> finalized)
  REWARDS_CLAIM / DELEGATED_REWARDS_CLAIM / SUBSIDIES_CLAIM
  EPOCH_SWEEP            recover allocated - claimed after the sweep delay

Nothing per-vote is stored. Every claim multiplies the caller's real numerator
before the single floor division, and adds the exact transferred amount to the
claimed counters, so allocated - claimed is always the residual plus the
unclaimed balance.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from veledger.ledger.constants import (
    EPOCH_ENDED,
    EPOCH_FINALIZED,
    EPOCH_PROCESSED,
    EPOCH_VERIFIED,
    EPOCH_VOTING,
    ROLE_DELEGATE,
    ROLE_PERSONAL,
    SUBSIDY_PREVIEW_PRECISION,
    SYSTEM_ACCOUNT_ID,
)
from veledger.runtime import accumulator as acc
from veledger.runtime.custody import pay_from_vault, pull_into_vault
from veledger.runtime.epoch_store import (
    account_pool_votes,
    active_pool_ids,
    ensure_epoch,
    ensure_epoch_pool,
    get_epoch,
    get_epoch_pool,
    get_pool,
)
from veledger.runtime.epochs import current_epoch
from veledger.runtime.errors import ApplyError
from veledger.runtime.fee_ledger import fee_amount, fee_for_epoch, get_delegate
from veledger.runtime.gates import require_operator, require_signer
from veledger.runtime.protocol_params import reward_asset, sweep_delay_epochs
from veledger.runtime.runtime_logging import log_event
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]

log = logging.getLogger("veledger.distribution")


@dataclass
class DistributionApplyError(ApplyError):
    code: str
    reason: str
    details: Optional[Json] = None


def _as_int(v: Any, default: int = 0) -> int:
    try:
        if isinstance(v, bool):
            return int(default)
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int)) and not isinstance(v, bool) else ""


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _as_list(v: Any) -> List[Any]:
    return v if isinstance(v, list) else []


# --- helpers ---------------------------------------------------------------


def _epoch_arg(payload: Json) -> int:
    epoch = _as_int(payload.get("epoch"), -1)
    if epoch < 0:
        raise DistributionApplyError("invalid_payload", "missing_epoch", {})
    return epoch


def _require_epoch(state: Json, epoch: int) -> Json:
    rec = get_epoch(state, epoch)
    if rec is None:
        raise DistributionApplyError("not_found", "epoch_not_found", {"epoch": epoch})
    return rec


def _require_status(rec: Json, expected: str) -> None:
    if rec.get("status") != expected:
        raise DistributionApplyError(
            "invalid_state",
            "wrong_epoch_stage",
            {"epoch": rec.get("epoch"), "status": rec.get("status"), "expected": expected},
        )


def _transition(rec: Json, to: str) -> None:
    frm = rec.get("status")
    rec["status"] = to
    log_event(log, "epoch_stage", epoch=rec.get("epoch"), from_status=frm, to_status=to)


def _unique_pools(raw: Any, *, allow_empty: bool = False) -> List[str]:
    items = _as_list(raw)
    if not items and not allow_empty:
        raise DistributionApplyError("invalid_payload", "missing_pools", {})
    out = [_as_str(p) for p in items]
    if any(not p for p in out):
        raise DistributionApplyError("invalid_payload", "invalid_pools", {"pools": items})
    if len(set(out)) != len(out):
        raise DistributionApplyError("invalid_payload", "duplicate_pools", {"pools": out})
    return out


def _non_negative_amounts(raw: Any, n: int, *, field: str) -> List[int]:
    items = _as_list(raw)
    if len(items) != n:
        raise DistributionApplyError("invalid_payload", "length_mismatch", {field: len(items), "pools": n})
    out: List[int] = []
    for a in items:
        v = _as_int(a, -1)
        if v < 0:
            raise DistributionApplyError("invalid_amount", f"invalid_{field}", {"amount": a})
        out.append(v)
    return out


def _require_claimable(rec: Json) -> None:
    _require_status(rec, EPOCH_FINALIZED)
    if bool(rec.get("swept", False)):
        raise DistributionApplyError("invalid_state", "claims_closed", {"epoch": rec.get("epoch")})


def _claim_book(rec: Json, name: str, *path: str) -> Json:
    book = rec.setdefault(name, {})
    for p in path:
        book = book.setdefault(p, {})
    return book


def _payer(env: TxEnvelope) -> str:
    return env.signer or SYSTEM_ACCOUNT_ID


# --- previews --------------------------------------------------------------


def preview_subsidy_deposit(state: Json, epoch: int, amount: int) -> Json:
    """Check whether an epoch-level subsidy of `amount` would be accepted."""
    rec = get_epoch(state, epoch) or {}
    total_votes = _as_int(rec.get("total_votes"))
    amount = int(amount)
    if total_votes == 0:
        return {"epoch": int(epoch), "amount": amount, "total_votes": 0, "per_vote_scaled": 0, "accepted": True, "skipped": True}
    per_vote = amount * SUBSIDY_PREVIEW_PRECISION // total_votes
    return {
        "epoch": int(epoch),
        "amount": amount,
        "total_votes": total_votes,
        "per_vote_scaled": per_vote,
        "accepted": amount == 0 or per_vote > 0,
        "skipped": False,
    }


# --- stage transitions -----------------------------------------------------


def _apply_epoch_end(state: Json, env: TxEnvelope) -> Json:
    require_operator(state, env)
    epoch = _epoch_arg(_as_dict(env.payload))
    cur = current_epoch(state)
    if epoch >= cur:
        raise DistributionApplyError("invalid_state", "epoch_not_over", {"epoch": epoch, "current_epoch": cur})

    rec = ensure_epoch(state, epoch)
    _require_status(rec, EPOCH_VOTING)

    voted = {pid for pid, p in _as_dict(rec.get("pools")).items() if _as_int(_as_dict(p).get("votes")) > 0}
    eligible = sorted(set(active_pool_ids(state)) | voted)
    rec["eligible_pools"] = eligible
    rec["active_pool_count"] = len(eligible)
    _transition(rec, EPOCH_ENDED)
    return {"applied": "EPOCH_END", "epoch": epoch, "eligible_pools": eligible, "total_votes": _as_int(rec.get("total_votes"))}


def _apply_subsidy_deposit(state: Json, env: TxEnvelope) -> Json:
    require_operator(state, env)
    payload = _as_dict(env.payload)
    epoch = _epoch_arg(payload)
    amount = _as_int(payload.get("amount"), -1)
    if amount < 0:
        raise DistributionApplyError("invalid_amount", "invalid_subsidy_amount", {"amount": payload.get("amount")})

    rec = _require_epoch(state, epoch)
    if bool(rec.get("subsidy_deposited", False)):
        raise DistributionApplyError("conflict", "subsidy_already_deposited", {"epoch": epoch})
    _require_status(rec, EPOCH_ENDED)

    preview = preview_subsidy_deposit(state, epoch, amount)
    if not preview["accepted"]:
        raise DistributionApplyError("invalid_amount", "subsidy_too_small", preview)

    rec["epoch_subsidies"] = 0 if preview["skipped"] else amount
    rec["subsidy_deposited"] = True
    _transition(rec, EPOCH_VERIFIED)
    return {"applied": "SUBSIDY_DEPOSIT", "epoch": epoch, "epoch_subsidies": rec["epoch_subsidies"], "skipped": preview["skipped"]}


def _apply_subsidy_accruals_set(state: Json, env: TxEnvelope) -> Json:
    require_operator(state, env)
    payload = _as_dict(env.payload)
    epoch = _epoch_arg(payload)
    pool_id = _as_str(payload.get("pool"))
    raw = payload.get("accruals")
    if not pool_id or not isinstance(raw, dict) or not raw:
        raise DistributionApplyError("invalid_payload", "missing_accruals", {})

    rec = _require_epoch(state, epoch)
    if rec.get("status") not in (EPOCH_ENDED, EPOCH_VERIFIED, EPOCH_PROCESSED):
        raise DistributionApplyError("invalid_state", "accruals_closed", {"epoch": epoch, "status": rec.get("status")})
    if pool_id not in _as_list(rec.get("eligible_pools")):
        raise DistributionApplyError("not_found", "pool_not_eligible", {"epoch": epoch, "pool": pool_id})

    prec = ensure_epoch_pool(state, epoch, pool_id)
    accruals = prec.setdefault("accruals", {})
    for verifier, amt in raw.items():
        v = _as_int(amt, -1)
        if v < 0:
            raise DistributionApplyError("invalid_amount", "invalid_accrual", {"verifier": verifier, "amount": amt})
        if v == 0:
            accruals.pop(str(verifier), None)
        else:
            accruals[str(verifier)] = v
    prec["accrued_total"] = sum(_as_int(v) for v in accruals.values())
    return {"applied": "SUBSIDY_ACCRUALS_SET", "epoch": epoch, "pool": pool_id, "accrued_total": prec["accrued_total"]}


def _apply_epoch_finalize_pools(state: Json, env: TxEnvelope) -> Json:
    require_operator(state, env)
    payload = _as_dict(env.payload)
    epoch = _epoch_arg(payload)
    rec = _require_epoch(state, epoch)
    _require_status(rec, EPOCH_VERIFIED)

    eligible = _as_list(rec.get("eligible_pools"))
    pools = _unique_pools(payload.get("pools"), allow_empty=not eligible)
    rewards = _non_negative_amounts(payload.get("rewards"), len(pools), field="rewards")
    subsidies = _non_negative_amounts(payload.get("subsidies"), len(pools), field="subsidies")

    processed = set(_as_list(rec.get("processed_pools")))
    for pid in pools:
        if pid not in eligible:
            raise DistributionApplyError("not_found", "pool_not_eligible", {"epoch": epoch, "pool": pid})
        if pid in processed:
            raise DistributionApplyError("conflict", "pool_already_processed", {"epoch": epoch, "pool": pid})

    total_votes = _as_int(rec.get("total_votes"))
    epoch_subsidies = _as_int(rec.get("epoch_subsidies"))
    allocated: List[Json] = []
    for pid, reward, subsidy in zip(pools, rewards, subsidies):
        prec = ensure_epoch_pool(state, epoch, pid)
        votes = _as_int(prec.get("votes"))
        if votes == 0:
            prec["reward"] = 0
            prec["subsidy"] = 0
        else:
            prec["reward"] = reward
            prec["subsidy"] = subsidy + votes * epoch_subsidies // total_votes
        prec["processed"] = True
        rec["total_rewards_deposited"] = _as_int(rec.get("total_rewards_deposited")) + prec["reward"]
        rec["total_subsidies_allocated"] = _as_int(rec.get("total_subsidies_allocated")) + prec["subsidy"]
        processed.add(pid)
        allocated.append({"pool": pid, "votes": votes, "reward": prec["reward"], "subsidy": prec["subsidy"]})

    rec["processed_pools"] = sorted(processed)
    if processed.issuperset(eligible):
        _transition(rec, EPOCH_PROCESSED)
    return {"applied": "EPOCH_FINALIZE_POOLS", "epoch": epoch, "allocated": allocated, "status": rec["status"]}


def _apply_epoch_finalize(state: Json, env: TxEnvelope) -> Json:
    require_operator(state, env)
    epoch = _epoch_arg(_as_dict(env.payload))
    rec = _require_epoch(state, epoch)
    _require_status(rec, EPOCH_PROCESSED)

    funding = _as_int(rec.get("total_rewards_deposited")) + _as_int(rec.get("total_subsidies_allocated"))
    payer = _payer(env)
    pull_into_vault(state, payer, reward_asset(state), funding)

    rec["funded"] = funding
    rec["finalized_at_epoch"] = current_epoch(state)
    _transition(rec, EPOCH_FINALIZED)
    return {"applied": "EPOCH_FINALIZE", "epoch": epoch, "funded": funding, "payer": payer}


# --- claims ----------------------------------------------------------------


def _credit_pool_claim(state: Json, rec: Json, pool_id: str, *, rewards: int = 0, subsidies: int = 0) -> None:
    prec = rec["pools"][pool_id]
    pool = get_pool(state, pool_id) or {}
    if rewards:
        prec["reward_claimed"] = _as_int(prec.get("reward_claimed")) + rewards
        rec["total_rewards_claimed"] = _as_int(rec.get("total_rewards_claimed")) + rewards
        pool["total_rewards_claimed"] = _as_int(pool.get("total_rewards_claimed")) + rewards
    if subsidies:
        prec["subsidy_claimed"] = _as_int(prec.get("subsidy_claimed")) + subsidies
        rec["total_subsidies_claimed"] = _as_int(rec.get("total_subsidies_claimed")) + subsidies
        pool["total_subsidies_claimed"] = _as_int(pool.get("total_subsidies_claimed")) + subsidies


def _require_pool_allocation(state: Json, epoch: int, pool_id: str) -> Json:
    prec = get_epoch_pool(state, epoch, pool_id)
    if prec is None or not bool(prec.get("processed", False)):
        raise DistributionApplyError("not_found", "pool_not_allocated", {"epoch": epoch, "pool": pool_id})
    return prec


def _apply_rewards_claim(state: Json, env: TxEnvelope) -> Json:
    user = require_signer(env)
    payload = _as_dict(env.payload)
    epoch = _epoch_arg(payload)
    rec = _require_epoch(state, epoch)
    _require_claimable(rec)
    pools = _unique_pools(payload.get("pools"))

    book = _claim_book(rec, "reward_claims", user)
    lines: List[Tuple[str, int]] = []
    for pid in pools:
        if pid in book:
            raise DistributionApplyError("conflict", "already_claimed", {"epoch": epoch, "pool": pid})
        prec = _require_pool_allocation(state, epoch, pid)
        user_votes = account_pool_votes(state, ROLE_PERSONAL, user, epoch, pid)
        if user_votes == 0:
            raise DistributionApplyError("invalid_state", "no_votes_in_pool", {"epoch": epoch, "pool": pid})
        lines.append((pid, user_votes * _as_int(prec.get("reward")) // _as_int(prec.get("votes"))))

    total = 0
    for pid, amount in lines:
        book[pid] = amount
        _credit_pool_claim(state, rec, pid, rewards=amount)
        total += amount
    pay_from_vault(state, user, reward_asset(state), total)
    return {"applied": "REWARDS_CLAIM", "epoch": epoch, "user": user, "pools": dict(lines), "amount": total}


def _apply_delegated_rewards_claim(state: Json, env: TxEnvelope) -> Json:
    user = require_signer(env)
    payload = _as_dict(env.payload)
    epoch = _epoch_arg(payload)
    delegate = _as_str(payload.get("delegate"))
    if not delegate:
        raise DistributionApplyError("invalid_payload", "missing_delegate", {})
    rec = _require_epoch(state, epoch)
    _require_claimable(rec)
    pools = _unique_pools(payload.get("pools"))

    fee_bps = fee_for_epoch(state, delegate, epoch)
    if fee_bps == 0:
        raise DistributionApplyError("invalid_state", "fee_not_recorded", {"epoch": epoch, "delegate": delegate})

    user_power = acc.value_at_epoch_end(state, acc.pair_key(user, delegate), epoch)
    delegate_power = acc.value_at_epoch_end(state, acc.ledger_key(ROLE_DELEGATE, delegate), epoch)
    if user_power == 0 or delegate_power == 0:
        raise DistributionApplyError(
            "invalid_state", "no_delegated_power", {"epoch": epoch, "delegate": delegate, "user_power": user_power}
        )

    book = _claim_book(rec, "delegated_claims", user, delegate)
    lines: List[Tuple[str, int]] = []
    for pid in pools:
        if pid in book:
            raise DistributionApplyError("conflict", "already_claimed", {"epoch": epoch, "delegate": delegate, "pool": pid})
        prec = _require_pool_allocation(state, epoch, pid)
        delegate_votes = account_pool_votes(state, ROLE_DELEGATE, delegate, epoch, pid)
        if delegate_votes == 0:
            raise DistributionApplyError("invalid_state", "delegate_no_votes_in_pool", {"epoch": epoch, "pool": pid})
        delegate_pool_reward = delegate_votes * _as_int(prec.get("reward")) // _as_int(prec.get("votes"))
        lines.append((pid, user_power * delegate_pool_reward // delegate_power))

    gross = 0
    for pid, amount in lines:
        book[pid] = amount
        _credit_pool_claim(state, rec, pid, rewards=amount)
        gross += amount

    fee = fee_amount(gross, fee_bps)
    net = gross - fee
    asset = reward_asset(state)
    pay_from_vault(state, user, asset, net)
    pay_from_vault(state, delegate, asset, fee)

    drec = get_delegate(state, delegate)
    if drec is not None:
        drec["captured_rewards"] = _as_int(drec.get("captured_rewards")) + gross
        drec["captured_fees"] = _as_int(drec.get("captured_fees")) + fee

    return {
        "applied": "DELEGATED_REWARDS_CLAIM",
        "epoch": epoch,
        "user": user,
        "delegate": delegate,
        "pools": dict(lines),
        "gross": gross,
        "fee_bps": fee_bps,
        "fee": fee,
        "amount": net,
    }


def _apply_subsidies_claim(state: Json, env: TxEnvelope) -> Json:
    verifier = require_signer(env)
    payload = _as_dict(env.payload)
    epoch = _epoch_arg(payload)
    rec = _require_epoch(state, epoch)
    _require_claimable(rec)
    pools = _unique_pools(payload.get("pools"))

    book = _claim_book(rec, "subsidy_claims", verifier)
    lines: List[Tuple[str, int]] = []
    for pid in pools:
        if pid in book:
            raise DistributionApplyError("conflict", "already_claimed", {"epoch": epoch, "pool": pid})
        prec = _require_pool_allocation(state, epoch, pid)
        accrued = _as_int(_as_dict(prec.get("accruals")).get(verifier))
        if accrued == 0:
            raise DistributionApplyError("invalid_state", "no_accruals_in_pool", {"epoch": epoch, "pool": pid})
        lines.append((pid, accrued * _as_int(prec.get("subsidy")) // _as_int(prec.get("accrued_total"))))

    total = 0
    for pid, amount in lines:
        book[pid] = amount
        _credit_pool_claim(state, rec, pid, subsidies=amount)
        total += amount
    pay_from_vault(state, verifier, reward_asset(state), total)
    return {"applied": "SUBSIDIES_CLAIM", "epoch": epoch, "verifier": verifier, "pools": dict(lines), "amount": total}


def _apply_epoch_sweep(state: Json, env: TxEnvelope) -> Json:
    require_operator(state, env)
    payload = _as_dict(env.payload)
    epoch = _epoch_arg(payload)
    rec = _require_epoch(state, epoch)
    _require_claimable(rec)

    delay = sweep_delay_epochs(state)
    cur = current_epoch(state)
    if cur < epoch + delay:
        raise DistributionApplyError(
            "invalid_state", "sweep_too_early", {"epoch": epoch, "current_epoch": cur, "sweepable_at": epoch + delay}
        )

    rewards = max(0, _as_int(rec.get("total_rewards_deposited")) - _as_int(rec.get("total_rewards_claimed")))
    subsidies = max(0, _as_int(rec.get("total_subsidies_allocated")) - _as_int(rec.get("total_subsidies_claimed")))
    recipient = _as_str(payload.get("recipient")) or env.signer or SYSTEM_ACCOUNT_ID
    pay_from_vault(state, recipient, reward_asset(state), rewards + subsidies)

    rec["swept"] = True
    rec["swept_rewards"] = rewards
    rec["swept_subsidies"] = subsidies
    log_event(log, "epoch_swept", epoch=epoch, rewards=rewards, subsidies=subsidies, recipient=recipient)
    return {"applied": "EPOCH_SWEEP", "epoch": epoch, "rewards": rewards, "subsidies": subsidies, "recipient": recipient}


DISTRIBUTION_TX_TYPES: Set[str] = {
    "EPOCH_END",
    "SUBSIDY_DEPOSIT",
    "SUBSIDY_ACCRUALS_SET",
    "EPOCH_FINALIZE_POOLS",
    "EPOCH_FINALIZE",
    "REWARDS_CLAIM",
    "DELEGATED_REWARDS_CLAIM",
    "SUBSIDIES_CLAIM",
    "EPOCH_SWEEP",
}


def apply_distribution(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in DISTRIBUTION_TX_TYPES:
        return None

    if t == "EPOCH_END":
        return _apply_epoch_end(state, env)
    if t == "SUBSIDY_DEPOSIT":
        return _apply_subsidy_deposit(state, env)
    if t == "SUBSIDY_ACCRUALS_SET":
        return _apply_subsidy_accruals_set(state, env)
    if t == "EPOCH_FINALIZE_POOLS":
        return _apply_epoch_finalize_pools(state, env)
    if t == "EPOCH_FINALIZE":
        return _apply_epoch_finalize(state, env)
    if t == "REWARDS_CLAIM":
        return _apply_rewards_claim(state, env)
    if t == "DELEGATED_REWARDS_CLAIM":
        return _apply_delegated_rewards_claim(state, env)
    if t == "SUBSIDIES_CLAIM":
        return _apply_subsidies_claim(state, env)
    if t == "EPOCH_SWEEP":
        return _apply_epoch_sweep(state, env)

    return None


__all__ = ["DistributionApplyError", "apply_distribution", "preview_subsidy_deposit"]
