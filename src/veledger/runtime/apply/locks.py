# src/veledger/runtime/apply/locks.py
from __future__ import annotations

"""
Lock ledger apply semantics.

A lock converts principal (the sum of the configured interchangeable lock
assets) into a decay pair (bias, slope) anchored at absolute time:

    slope = principal // MAX_LOCK_DURATION
    bias  = slope * expiry

The pair is constant for a lock unless LOCK_INCREASE_AMOUNT or
LOCK_INCREASE_DURATION recomputes it. Whoever currently holds the lock's
power (the owner's personal ledger, or a delegate ledger plus the
owner->delegate pair stream) receives the delta; a delegation move still
pending for the next boundary is re-targeted so it carries the new pair.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from veledger.ledger.constants import MIN_LOCK_EPOCHS_AHEAD, ROLE_DELEGATE, ROLE_PERSONAL
from veledger.runtime import accumulator as acc
from veledger.runtime.custody import pay_from_vault, pull_into_vault
from veledger.runtime.epochs import current_boundary, current_epoch, epoch_start, is_boundary, now
from veledger.runtime.errors import ApplyError
from veledger.runtime.gates import require_signer
from veledger.runtime.protocol_params import lock_assets, max_lock_seconds, min_lock_amount
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


@dataclass
class LockApplyError(ApplyError):
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


# --- lock records ----------------------------------------------------------


def ensure_locks(state: Json) -> Json:
    ve = state.get("ve")
    if not isinstance(ve, dict):
        ve = {}
        state["ve"] = ve
    if not isinstance(ve.get("locks"), dict):
        ve["locks"] = {}
    if not isinstance(ve.get("next_lock_id"), int):
        ve["next_lock_id"] = 1
    return ve


def get_lock(state: Json, lock_id: str) -> Json:
    locks = ensure_locks(state)["locks"]
    lock = locks.get(str(lock_id))
    if not isinstance(lock, dict):
        raise LockApplyError("not_found", "lock_not_found", {"lock_id": lock_id})
    return lock


def require_owned_lock(state: Json, env: TxEnvelope) -> Json:
    signer = require_signer(env)
    lock_id = _as_str(_as_dict(env.payload).get("lock_id"))
    if not lock_id:
        raise LockApplyError("invalid_payload", "missing_lock_id", {"tx_type": env.tx_type})
    lock = get_lock(state, lock_id)
    if lock.get("owner") != signer:
        raise LockApplyError("forbidden", "lock_not_owned", {"lock_id": lock_id, "signer": signer})
    if bool(lock.get("withdrawn", False)):
        raise LockApplyError("invalid_state", "lock_withdrawn", {"lock_id": lock_id})
    return lock


def holder_at(lock: Json, boundary: int) -> Optional[str]:
    """Delegate holding the lock's power at `boundary` (None = the owner)."""
    if int(boundary) >= _as_int(lock.get("holder_since"), 0):
        return lock.get("delegate") or None
    return lock.get("prev_delegate") or None


def holder_keys(owner: str, holder: Optional[str]) -> List[str]:
    if holder:
        return [acc.ledger_key(ROLE_DELEGATE, holder), acc.pair_key(owner, holder)]
    return [acc.ledger_key(ROLE_PERSONAL, owner)]


def lock_balance(lock: Json) -> acc.Balance:
    return _as_int(lock.get("bias")), _as_int(lock.get("slope"))


def _apply_lock_change(state: Json, lock: Json, *, old_expiry: int, new_balance: acc.Balance, new_expiry: int) -> None:
    old_bias, old_slope = lock_balance(lock)
    new_bias, new_slope = new_balance
    d_bias, d_slope = new_bias - old_bias, new_slope - old_slope

    owner = str(lock["owner"])
    held_now = holder_at(lock, current_boundary(state))
    booked = lock.get("delegate") or None

    for key in holder_keys(owner, held_now) + [acc.GLOBAL_KEY]:
        acc.apply_now(state, key, d_bias, d_slope)

    if held_now != booked:
        since = _as_int(lock.get("holder_since"))
        for key in holder_keys(owner, held_now):
            acc.book_delta(state, key, since, -d_bias, -d_slope)
        for key in holder_keys(owner, booked):
            acc.book_delta(state, key, since, d_bias, d_slope)

    for key in holder_keys(owner, booked) + [acc.GLOBAL_KEY]:
        if old_slope:
            acc.schedule_slope_change(state, key, old_expiry, -old_slope)
        acc.schedule_slope_change(state, key, new_expiry, new_slope)

    lock["bias"] = new_bias
    lock["slope"] = new_slope
    lock["expiry"] = int(new_expiry)


# --- validation ------------------------------------------------------------


def _parse_amounts(state: Json, payload: Json) -> Dict[str, int]:
    raw = payload.get("amounts")
    if not isinstance(raw, dict) or not raw:
        raise LockApplyError("invalid_payload", "missing_amounts", {})
    allowed = set(lock_assets(state))
    out: Dict[str, int] = {}
    for asset, amt in raw.items():
        a = str(asset).strip()
        if a not in allowed:
            raise LockApplyError("invalid_payload", "unknown_lock_asset", {"asset": a, "allowed": sorted(allowed)})
        v = _as_int(amt, -1)
        if v < 0:
            raise LockApplyError("invalid_amount", "negative_amount", {"asset": a})
        if v:
            out[a] = out.get(a, 0) + v
    if not out:
        raise LockApplyError("invalid_amount", "zero_amount", {})
    return out


def _validate_expiry(state: Json, expiry: int) -> None:
    if not is_boundary(state, expiry):
        raise LockApplyError("invalid_expiry", "expiry_not_aligned", {"expiry": expiry})
    earliest = epoch_start(state, current_epoch(state) + MIN_LOCK_EPOCHS_AHEAD)
    if expiry < earliest:
        raise LockApplyError("invalid_expiry", "lock_too_short", {"expiry": expiry, "earliest": earliest})
    latest = now(state) + max_lock_seconds(state)
    if expiry > latest:
        raise LockApplyError("invalid_expiry", "lock_too_long", {"expiry": expiry, "latest": latest})


def _balance_for(state: Json, principal: int, expiry: int) -> acc.Balance:
    if principal < min_lock_amount(state):
        raise LockApplyError(
            "invalid_amount", "principal_below_minimum", {"principal": principal, "minimum": min_lock_amount(state)}
        )
    balance = acc.balance_from_principal(principal, expiry, max_lock_seconds(state))
    if balance[1] <= 0:
        raise LockApplyError("invalid_amount", "slope_floors_to_zero", {"principal": principal})
    return balance


def _require_unexpired(state: Json, lock: Json) -> None:
    if _as_int(lock.get("expiry")) <= now(state):
        raise LockApplyError("invalid_state", "lock_expired", {"lock_id": lock.get("lock_id")})


# --- appliers --------------------------------------------------------------


def _apply_lock_create(state: Json, env: TxEnvelope) -> Json:
    owner = require_signer(env)
    payload = _as_dict(env.payload)
    amounts = _parse_amounts(state, payload)
    expiry = _as_int(payload.get("expiry"), -1)

    _validate_expiry(state, expiry)
    principal = sum(amounts.values())
    balance = _balance_for(state, principal, expiry)

    for asset, amt in sorted(amounts.items()):
        pull_into_vault(state, owner, asset, amt)

    ve = ensure_locks(state)
    lock_id = str(ve["next_lock_id"])
    ve["next_lock_id"] = int(ve["next_lock_id"]) + 1

    lock: Json = {
        "lock_id": lock_id,
        "owner": owner,
        "amounts": dict(sorted(amounts.items())),
        "principal": principal,
        "expiry": expiry,
        "bias": 0,
        "slope": 0,
        "delegate": None,
        "prev_delegate": None,
        "holder_since": 0,
        "created_epoch": current_epoch(state),
        "withdrawn": False,
    }
    ve["locks"][lock_id] = lock
    _apply_lock_change(state, lock, old_expiry=expiry, new_balance=balance, new_expiry=expiry)

    return {
        "applied": "LOCK_CREATE",
        "lock_id": lock_id,
        "owner": owner,
        "principal": principal,
        "expiry": expiry,
        "bias": lock["bias"],
        "slope": lock["slope"],
    }


def _apply_lock_increase_amount(state: Json, env: TxEnvelope) -> Json:
    lock = require_owned_lock(state, env)
    _require_unexpired(state, lock)
    amounts = _parse_amounts(state, _as_dict(env.payload))

    principal = _as_int(lock.get("principal")) + sum(amounts.values())
    expiry = _as_int(lock.get("expiry"))
    balance = _balance_for(state, principal, expiry)

    for asset, amt in sorted(amounts.items()):
        pull_into_vault(state, str(lock["owner"]), asset, amt)
    held = _as_dict(lock.get("amounts"))
    for asset, amt in amounts.items():
        held[asset] = _as_int(held.get(asset)) + amt
    lock["amounts"] = dict(sorted(held.items()))
    lock["principal"] = principal

    _apply_lock_change(state, lock, old_expiry=expiry, new_balance=balance, new_expiry=expiry)
    return {"applied": "LOCK_INCREASE_AMOUNT", "lock_id": lock["lock_id"], "principal": principal, "bias": lock["bias"], "slope": lock["slope"]}


def _apply_lock_increase_duration(state: Json, env: TxEnvelope) -> Json:
    lock = require_owned_lock(state, env)
    _require_unexpired(state, lock)
    new_expiry = _as_int(_as_dict(env.payload).get("expiry"), -1)
    old_expiry = _as_int(lock.get("expiry"))
    if new_expiry <= old_expiry:
        raise LockApplyError("invalid_expiry", "expiry_not_increased", {"expiry": new_expiry, "current": old_expiry})
    _validate_expiry(state, new_expiry)

    balance = _balance_for(state, _as_int(lock.get("principal")), new_expiry)
    _apply_lock_change(state, lock, old_expiry=old_expiry, new_balance=balance, new_expiry=new_expiry)
    return {"applied": "LOCK_INCREASE_DURATION", "lock_id": lock["lock_id"], "expiry": new_expiry, "bias": lock["bias"], "slope": lock["slope"]}


def _apply_lock_withdraw(state: Json, env: TxEnvelope) -> Json:
    # Expired power is already zero on every ledger through the slope change
    # at expiry, so the delegate side needs no transition here.
    lock = require_owned_lock(state, env)
    expiry = _as_int(lock.get("expiry"))
    if now(state) < expiry:
        raise LockApplyError("invalid_state", "lock_not_expired", {"lock_id": lock["lock_id"], "expiry": expiry})

    for asset, amt in sorted(_as_dict(lock.get("amounts")).items()):
        pay_from_vault(state, str(lock["owner"]), asset, _as_int(amt))
    lock["withdrawn"] = True
    return {"applied": "LOCK_WITHDRAW", "lock_id": lock["lock_id"], "amounts": dict(lock.get("amounts") or {})}


LOCK_TX_TYPES: Set[str] = {
    "LOCK_CREATE",
    "LOCK_INCREASE_AMOUNT",
    "LOCK_INCREASE_DURATION",
    "LOCK_WITHDRAW",
}


def apply_locks(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in LOCK_TX_TYPES:
        return None

    if t == "LOCK_CREATE":
        return _apply_lock_create(state, env)
    if t == "LOCK_INCREASE_AMOUNT":
        return _apply_lock_increase_amount(state, env)
    if t == "LOCK_INCREASE_DURATION":
        return _apply_lock_increase_duration(state, env)
    if t == "LOCK_WITHDRAW":
        return _apply_lock_withdraw(state, env)

    return None


__all__ = [
    "LockApplyError",
    "apply_locks",
    "ensure_locks",
    "get_lock",
    "holder_at",
    "holder_keys",
    "lock_balance",
    "require_owned_lock",
]
