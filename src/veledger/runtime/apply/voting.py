# src/veledger/runtime/apply/voting.py
from __future__ import annotations

"""
Epoch voting ledger apply semantics.

- POOL_CREATE / POOL_SET_ACTIVE: pool registry (operator)
- VOTE_CAST: allocate end-of-epoch power of the current epoch to pools
- VOTE_MIGRATE: move already-cast votes between pools of the same epoch

Available power is the caller's end-of-epoch value for the requested role
(personal or delegate). Votes accumulate per account x role x epoch x pool and
into the epoch x pool and epoch totals. A delegated vote pins the delegate's
fee for the epoch on first use.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from veledger.ledger.constants import EPOCH_VOTING, PERCENT_DENOMINATOR, ROLE_DELEGATE, ROLE_PERSONAL
from veledger.runtime import accumulator as acc
from veledger.runtime.epoch_store import (
    ensure_account_epoch,
    ensure_epoch,
    ensure_epoch_pool,
    ensure_pools,
    get_pool,
    is_pool_active,
)
from veledger.runtime.epochs import current_epoch
from veledger.runtime.errors import ApplyError
from veledger.runtime.fee_ledger import get_delegate, record_fee_for_epoch
from veledger.runtime.gates import require_operator, require_signer
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


@dataclass
class VotingApplyError(ApplyError):
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


def _role(payload: Json) -> str:
    return ROLE_DELEGATE if bool(payload.get("delegated", False)) else ROLE_PERSONAL


def _require_open_epoch(state: Json) -> Tuple[int, Json]:
    epoch = current_epoch(state)
    rec = ensure_epoch(state, epoch)
    if rec.get("status") != EPOCH_VOTING:
        raise VotingApplyError("invalid_state", "epoch_not_voting", {"epoch": epoch, "status": rec.get("status")})
    return epoch, rec


def _positive_amounts(raw: Any, n: int) -> List[int]:
    items = _as_list(raw)
    if len(items) != n:
        raise VotingApplyError("invalid_payload", "length_mismatch", {"expected": n, "got": len(items)})
    out: List[int] = []
    for a in items:
        v = _as_int(a, 0)
        if v <= 0:
            raise VotingApplyError("invalid_amount", "amount_must_be_positive", {"amount": a})
        out.append(v)
    return out


def _pool_ids(raw: Any, *, field: str) -> List[str]:
    items = _as_list(raw)
    if not items:
        raise VotingApplyError("invalid_payload", f"missing_{field}", {})
    out = [_as_str(p) for p in items]
    if any(not p for p in out):
        raise VotingApplyError("invalid_payload", f"invalid_{field}", {field: items})
    return out


def _require_active(state: Json, pool_id: str) -> None:
    if get_pool(state, pool_id) is None:
        raise VotingApplyError("not_found", "pool_not_found", {"pool_id": pool_id})
    if not is_pool_active(state, pool_id):
        raise VotingApplyError("forbidden", "pool_disabled", {"pool_id": pool_id})


def available_power(state: Json, account: str, role: str, epoch: int) -> int:
    return acc.value_at_epoch_end(state, acc.ledger_key(role, account), epoch)


def _role_counter(role: str) -> str:
    return "delegated_votes" if role == ROLE_DELEGATE else "personal_votes"


def _apply_vote_cast(state: Json, env: TxEnvelope) -> Json:
    signer = require_signer(env)
    payload = _as_dict(env.payload)
    role = _role(payload)
    pools = _pool_ids(payload.get("pools"), field="pools")
    amounts = _positive_amounts(payload.get("amounts"), len(pools))
    for pid in pools:
        _require_active(state, pid)

    epoch, erec = _require_open_epoch(state)

    delegate_rec = None
    if role == ROLE_DELEGATE:
        delegate_rec = get_delegate(state, signer)
        if delegate_rec is None:
            raise VotingApplyError("forbidden", "delegate_not_registered", {"delegate": signer})

    power = available_power(state, signer, role, epoch)
    arec = ensure_account_epoch(state, role, signer, epoch)
    spent = _as_int(arec.get("spent"))
    total = sum(amounts)
    if spent + total > power:
        raise VotingApplyError(
            "insufficient_power",
            "votes_exceed_power",
            {"epoch": epoch, "role": role, "power": power, "spent": spent, "requested": total},
        )

    counter = _role_counter(role)
    for pid, amt in zip(pools, amounts):
        arec["pools"][pid] = _as_int(arec["pools"].get(pid)) + amt
        prec = ensure_epoch_pool(state, epoch, pid)
        prec["votes"] = _as_int(prec.get("votes")) + amt
        prec[counter] = _as_int(prec.get(counter)) + amt
    arec["spent"] = spent + total
    erec["total_votes"] = _as_int(erec.get("total_votes")) + total

    fee = None
    if delegate_rec is not None:
        fee = record_fee_for_epoch(delegate_rec, epoch)

    out: Json = {"applied": "VOTE_CAST", "epoch": epoch, "role": role, "voter": signer, "total": total, "power": power}
    if fee is not None:
        out["fee_bps"] = fee
    return out


def _migration_amount(arec: Json, src: str, amount: Optional[int], pct: Optional[int]) -> int:
    have = _as_int(arec.get("pools", {}).get(src))
    if pct is not None:
        if pct <= 0 or pct > PERCENT_DENOMINATOR:
            raise VotingApplyError("invalid_payload", "bad_percentage", {"percentage_bps": pct})
        amount = have * pct // PERCENT_DENOMINATOR
        if amount <= 0:
            raise VotingApplyError("invalid_amount", "migration_floors_to_zero", {"pool_id": src, "votes": have})
    amount = int(amount or 0)
    if amount > have:
        raise VotingApplyError("insufficient_power", "migration_exceeds_votes", {"pool_id": src, "votes": have, "amount": amount})
    return amount


def _apply_vote_migrate(state: Json, env: TxEnvelope) -> Json:
    signer = require_signer(env)
    payload = _as_dict(env.payload)
    role = _role(payload)
    srcs = _pool_ids(payload.get("src_pools"), field="src_pools")
    dsts = _pool_ids(payload.get("dst_pools"), field="dst_pools")
    if len(srcs) != len(dsts):
        raise VotingApplyError("invalid_payload", "length_mismatch", {"src_pools": len(srcs), "dst_pools": len(dsts)})

    amounts: List[Optional[int]] = [None] * len(srcs)
    pcts: List[Optional[int]] = [None] * len(srcs)
    if "percentages_bps" in payload:
        raw = _as_list(payload.get("percentages_bps"))
        if len(raw) != len(srcs):
            raise VotingApplyError("invalid_payload", "length_mismatch", {"expected": len(srcs), "got": len(raw)})
        pcts = [_as_int(p, 0) for p in raw]
    else:
        amounts = list(_positive_amounts(payload.get("amounts"), len(srcs)))

    for src, dst in zip(srcs, dsts):
        if src == dst:
            raise VotingApplyError("invalid_payload", "same_pool", {"pool_id": src})
        _require_active(state, dst)

    epoch, _ = _require_open_epoch(state)
    arec = ensure_account_epoch(state, role, signer, epoch)
    counter = _role_counter(role)

    moved: List[Json] = []
    for src, dst, amount, pct in zip(srcs, dsts, amounts, pcts):
        amt = _migration_amount(arec, src, amount, pct)

        arec["pools"][src] = _as_int(arec["pools"].get(src)) - amt
        if arec["pools"][src] == 0:
            del arec["pools"][src]
        arec["pools"][dst] = _as_int(arec["pools"].get(dst)) + amt

        sp = ensure_epoch_pool(state, epoch, src)
        dp = ensure_epoch_pool(state, epoch, dst)
        sp["votes"] = max(0, _as_int(sp.get("votes")) - amt)
        sp[counter] = max(0, _as_int(sp.get(counter)) - amt)
        dp["votes"] = _as_int(dp.get("votes")) + amt
        dp[counter] = _as_int(dp.get(counter)) + amt
        moved.append({"src": src, "dst": dst, "amount": amt})

    return {"applied": "VOTE_MIGRATE", "epoch": epoch, "role": role, "voter": signer, "moved": moved}


def _apply_pool_create(state: Json, env: TxEnvelope) -> Json:
    require_operator(state, env)
    pool_id = _as_str(_as_dict(env.payload).get("pool_id"))
    if not pool_id:
        raise VotingApplyError("invalid_payload", "missing_pool_id", {})
    pools = ensure_pools(state)
    if pool_id in pools:
        raise VotingApplyError("conflict", "pool_already_exists", {"pool_id": pool_id})
    pools[pool_id] = {
        "pool_id": pool_id,
        "active": True,
        "created_epoch": current_epoch(state),
        "total_rewards_claimed": 0,
        "total_subsidies_claimed": 0,
    }
    return {"applied": "POOL_CREATE", "pool_id": pool_id}


def _apply_pool_set_active(state: Json, env: TxEnvelope) -> Json:
    require_operator(state, env)
    payload = _as_dict(env.payload)
    pool_id = _as_str(payload.get("pool_id"))
    pool = get_pool(state, pool_id)
    if pool is None:
        raise VotingApplyError("not_found", "pool_not_found", {"pool_id": pool_id})
    active = bool(payload.get("active", True))
    pool["active"] = active
    return {"applied": "POOL_SET_ACTIVE", "pool_id": pool_id, "active": active}


VOTING_TX_TYPES: Set[str] = {
    "POOL_CREATE",
    "POOL_SET_ACTIVE",
    "VOTE_CAST",
    "VOTE_MIGRATE",
}


def apply_voting(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in VOTING_TX_TYPES:
        return None

    if t == "POOL_CREATE":
        return _apply_pool_create(state, env)
    if t == "POOL_SET_ACTIVE":
        return _apply_pool_set_active(state, env)
    if t == "VOTE_CAST":
        return _apply_vote_cast(state, env)
    if t == "VOTE_MIGRATE":
        return _apply_vote_migrate(state, env)

    return None


__all__ = ["VotingApplyError", "apply_voting", "available_power"]
