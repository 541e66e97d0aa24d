# src/veledger/runtime/epoch_store.py
from __future__ import annotations

"""Epoch / pool aggregate records.

All mutable counters live on explicit aggregate records addressed by index:

  state["pools"][pool_id]                      pool registry + lifetime totals
  state["epochs"]["<epoch>"]                   epoch aggregate + stage
  state["epochs"]["<epoch>"]["pools"][pool_id] epoch x pool aggregate
  state["votes"][role][account]["<epoch>"]     account x epoch (x pool) votes
"""

from typing import Any, Dict, List, Optional

from veledger.ledger.constants import EPOCH_VOTING, ROLES

Json = Dict[str, Any]


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _ensure_root_dict(state: Json, key: str) -> Json:
    cur = state.get(key)
    if not isinstance(cur, dict):
        cur = {}
        state[key] = cur
    return cur


# --- pools -----------------------------------------------------------------


def ensure_pools(state: Json) -> Json:
    return _ensure_root_dict(state, "pools")


def get_pool(state: Json, pool_id: str) -> Optional[Json]:
    p = ensure_pools(state).get(str(pool_id))
    return p if isinstance(p, dict) else None


def is_pool_active(state: Json, pool_id: str) -> bool:
    p = get_pool(state, pool_id)
    return bool(p and p.get("active", False))


def active_pool_ids(state: Json) -> List[str]:
    return sorted(pid for pid, p in ensure_pools(state).items() if isinstance(p, dict) and bool(p.get("active", False)))


# --- epochs ----------------------------------------------------------------


def _new_epoch(epoch: int) -> Json:
    return {
        "epoch": int(epoch),
        "status": EPOCH_VOTING,
        "total_votes": 0,
        "total_rewards_deposited": 0,
        "total_rewards_claimed": 0,
        "epoch_subsidies": 0,
        "subsidy_deposited": False,
        "total_subsidies_allocated": 0,
        "total_subsidies_claimed": 0,
        "eligible_pools": [],
        "active_pool_count": 0,
        "processed_pools": [],
        "funded": 0,
        "finalized_at_epoch": None,
        "swept": False,
        "swept_rewards": 0,
        "swept_subsidies": 0,
        "pools": {},
    }


def _new_epoch_pool() -> Json:
    return {
        "votes": 0,
        "personal_votes": 0,
        "delegated_votes": 0,
        "reward": 0,
        "subsidy": 0,
        "reward_claimed": 0,
        "subsidy_claimed": 0,
        "accruals": {},
        "accrued_total": 0,
        "processed": False,
    }


def ensure_epoch(state: Json, epoch: int) -> Json:
    epochs = _ensure_root_dict(state, "epochs")
    rec = epochs.get(str(epoch))
    if not isinstance(rec, dict):
        rec = _new_epoch(epoch)
        epochs[str(epoch)] = rec
    return rec


def get_epoch(state: Json, epoch: int) -> Optional[Json]:
    epochs = state.get("epochs")
    if not isinstance(epochs, dict):
        return None
    rec = epochs.get(str(epoch))
    return rec if isinstance(rec, dict) else None


def epoch_status(state: Json, epoch: int) -> str:
    rec = get_epoch(state, epoch)
    return str(rec.get("status")) if rec else EPOCH_VOTING


def ensure_epoch_pool(state: Json, epoch: int, pool_id: str) -> Json:
    pools = ensure_epoch(state, epoch)["pools"]
    rec = pools.get(str(pool_id))
    if not isinstance(rec, dict):
        rec = _new_epoch_pool()
        pools[str(pool_id)] = rec
    return rec


def get_epoch_pool(state: Json, epoch: int, pool_id: str) -> Optional[Json]:
    rec = get_epoch(state, epoch)
    if rec is None:
        return None
    p = rec.get("pools", {}).get(str(pool_id))
    return p if isinstance(p, dict) else None


# --- account votes ---------------------------------------------------------


def ensure_account_epoch(state: Json, role: str, account: str, epoch: int) -> Json:
    if role not in ROLES:
        raise ValueError(f"unknown role: {role!r}")
    votes = _ensure_root_dict(state, "votes")
    by_role = votes.setdefault(role, {})
    by_acct = by_role.setdefault(str(account), {})
    rec = by_acct.get(str(epoch))
    if not isinstance(rec, dict):
        rec = {"spent": 0, "pools": {}, "rewards_claimed": 0, "subsidies_claimed": 0}
        by_acct[str(epoch)] = rec
    return rec


def account_epoch(state: Json, role: str, account: str, epoch: int) -> Json:
    votes = state.get("votes")
    if not isinstance(votes, dict):
        return {}
    rec = votes.get(role, {}).get(str(account), {}).get(str(epoch))
    return rec if isinstance(rec, dict) else {}


def account_pool_votes(state: Json, role: str, account: str, epoch: int, pool_id: str) -> int:
    return _as_int(account_epoch(state, role, account, epoch).get("pools", {}).get(str(pool_id)), 0)


__all__ = [
    "account_epoch",
    "account_pool_votes",
    "active_pool_ids",
    "ensure_account_epoch",
    "ensure_epoch",
    "ensure_epoch_pool",
    "ensure_pools",
    "epoch_status",
    "get_epoch",
    "get_epoch_pool",
    "get_pool",
    "is_pool_active",
]
