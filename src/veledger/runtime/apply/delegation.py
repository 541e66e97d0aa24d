# src/veledger/runtime/apply/delegation.py
from __future__ import annotations

"""
Delegation forward-booker.

Per lock state machine: Undelegated <-> Delegated(delegate), via
LOCK_DELEGATE, LOCK_UNDELEGATE and LOCK_DELEGATE_SWITCH.

A move never touches the current epoch. It is booked as pending deltas at the
next boundary: the ledgers that hold the lock after the previous booking get
-(bias, slope), the new holder gets +(bias, slope), and the owner->delegate
pair streams are mirrored. The lock's slope change at expiry moves with it.
Because pending deltas stack, any chain of moves inside one epoch nets out to
the same result as a single move (undelegate + delegate == switch).
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

from veledger.ledger.constants import (
    FEE_DENOMINATOR,
    MIN_DELEGATION_EPOCHS_AHEAD,
    MIN_UNDELEGATION_EPOCHS_AHEAD,
)
from veledger.runtime import accumulator as acc
from veledger.runtime.apply.locks import holder_at, holder_keys, lock_balance, require_owned_lock
from veledger.runtime.epochs import current_boundary, current_epoch, epoch_start
from veledger.runtime.errors import ApplyError
from veledger.runtime.fee_ledger import ensure_delegates, get_delegate, new_delegate_record, set_fee
from veledger.runtime.gates import require_operator, require_signer
from veledger.runtime.protocol_params import fee_increase_delay_epochs, max_delegate_fee_bps
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


@dataclass
class DelegationApplyError(ApplyError):
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


def _validate_fee(state: Json, fee: int) -> int:
    cap = max_delegate_fee_bps(state)
    if fee <= 0 or fee > cap:
        raise DelegationApplyError("invalid_payload", "fee_out_of_range", {"fee_bps": fee, "max_fee_bps": cap})
    return fee


def _require_expiry_ahead(state: Json, lock: Json, epochs_ahead: int) -> None:
    earliest = epoch_start(state, current_epoch(state) + int(epochs_ahead))
    expiry = _as_int(lock.get("expiry"))
    if expiry < earliest:
        raise DelegationApplyError(
            "invalid_state",
            "lock_expires_too_soon",
            {"lock_id": lock.get("lock_id"), "expiry": expiry, "earliest": earliest},
        )


def _require_delegate_target(state: Json, lock: Json, target: str) -> str:
    if not target:
        raise DelegationApplyError("invalid_payload", "missing_delegate", {})
    if target == lock.get("owner"):
        raise DelegationApplyError("invalid_payload", "self_delegation", {"delegate": target})
    if get_delegate(state, target) is None:
        raise DelegationApplyError("not_found", "delegate_not_registered", {"delegate": target})
    return target


def move_lock(state: Json, lock: Json, target: Optional[str]) -> int:
    """Forward-book moving the lock's power to `target` (None = owner).

    Returns the boundary at which the move takes effect.
    """
    owner = str(lock["owner"])
    booked = lock.get("delegate") or None
    held_now = holder_at(lock, current_boundary(state))
    at = epoch_start(state, current_epoch(state) + 1)
    bias, slope = lock_balance(lock)
    expiry = _as_int(lock.get("expiry"))

    for key in holder_keys(owner, booked):
        acc.book_delta(state, key, at, -bias, -slope)
        acc.schedule_slope_change(state, key, expiry, -slope)
    for key in holder_keys(owner, target):
        acc.book_delta(state, key, at, bias, slope)
        acc.schedule_slope_change(state, key, expiry, slope)

    lock["prev_delegate"] = held_now
    lock["delegate"] = target
    lock["holder_since"] = at
    return at


def _apply_lock_delegate(state: Json, env: TxEnvelope) -> Json:
    lock = require_owned_lock(state, env)
    target = _require_delegate_target(state, lock, _as_str(_as_dict(env.payload).get("delegate")))
    if lock.get("delegate"):
        raise DelegationApplyError("conflict", "lock_already_delegated", {"lock_id": lock["lock_id"], "delegate": lock["delegate"]})
    _require_expiry_ahead(state, lock, MIN_DELEGATION_EPOCHS_AHEAD)

    at = move_lock(state, lock, target)
    return {"applied": "LOCK_DELEGATE", "lock_id": lock["lock_id"], "delegate": target, "effective_at": at}


def _apply_lock_undelegate(state: Json, env: TxEnvelope) -> Json:
    lock = require_owned_lock(state, env)
    prev = lock.get("delegate")
    if not prev:
        raise DelegationApplyError("invalid_state", "lock_not_delegated", {"lock_id": lock["lock_id"]})
    _require_expiry_ahead(state, lock, MIN_UNDELEGATION_EPOCHS_AHEAD)

    at = move_lock(state, lock, None)
    return {"applied": "LOCK_UNDELEGATE", "lock_id": lock["lock_id"], "delegate": prev, "effective_at": at}


def _apply_lock_delegate_switch(state: Json, env: TxEnvelope) -> Json:
    lock = require_owned_lock(state, env)
    prev = lock.get("delegate")
    if not prev:
        raise DelegationApplyError("invalid_state", "lock_not_delegated", {"lock_id": lock["lock_id"]})
    target = _require_delegate_target(state, lock, _as_str(_as_dict(env.payload).get("delegate")))
    if target == prev:
        raise DelegationApplyError("conflict", "same_delegate", {"lock_id": lock["lock_id"], "delegate": target})
    _require_expiry_ahead(state, lock, MIN_DELEGATION_EPOCHS_AHEAD)

    at = move_lock(state, lock, target)
    return {"applied": "LOCK_DELEGATE_SWITCH", "lock_id": lock["lock_id"], "from": prev, "delegate": target, "effective_at": at}


def _apply_delegate_register(state: Json, env: TxEnvelope) -> Json:
    signer = require_signer(env)
    fee = _validate_fee(state, _as_int(_as_dict(env.payload).get("fee_bps"), 0))
    if get_delegate(state, signer) is not None:
        raise DelegationApplyError("conflict", "delegate_already_registered", {"delegate": signer})

    epoch = current_epoch(state)
    ensure_delegates(state)[signer] = new_delegate_record(fee, epoch)
    return {"applied": "DELEGATE_REGISTER", "delegate": signer, "fee_bps": fee, "epoch": epoch}


def _apply_delegate_fee_set(state: Json, env: TxEnvelope) -> Json:
    signer = require_signer(env)
    rec = get_delegate(state, signer)
    if rec is None:
        raise DelegationApplyError("not_found", "delegate_not_registered", {"delegate": signer})
    fee = _validate_fee(state, _as_int(_as_dict(env.payload).get("fee_bps"), 0))

    out = set_fee(rec, fee, epoch=current_epoch(state), delay_epochs=fee_increase_delay_epochs(state))
    return {"applied": "DELEGATE_FEE_SET", "delegate": signer, **out}


def _apply_delegate_fee_limit_set(state: Json, env: TxEnvelope) -> Json:
    require_operator(state, env)
    cap = _as_int(_as_dict(env.payload).get("max_fee_bps"), 0)
    if cap <= 0 or cap > FEE_DENOMINATOR:
        raise DelegationApplyError("invalid_payload", "fee_limit_out_of_range", {"max_fee_bps": cap})
    state["params"]["max_delegate_fee_bps"] = cap
    return {"applied": "DELEGATE_FEE_LIMIT_SET", "max_fee_bps": cap}


DELEGATION_TX_TYPES: Set[str] = {
    "DELEGATE_REGISTER",
    "DELEGATE_FEE_SET",
    "DELEGATE_FEE_LIMIT_SET",
    "LOCK_DELEGATE",
    "LOCK_UNDELEGATE",
    "LOCK_DELEGATE_SWITCH",
}


def apply_delegation(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in DELEGATION_TX_TYPES:
        return None

    if t == "DELEGATE_REGISTER":
        return _apply_delegate_register(state, env)
    if t == "DELEGATE_FEE_SET":
        return _apply_delegate_fee_set(state, env)
    if t == "DELEGATE_FEE_LIMIT_SET":
        return _apply_delegate_fee_limit_set(state, env)
    if t == "LOCK_DELEGATE":
        return _apply_lock_delegate(state, env)
    if t == "LOCK_UNDELEGATE":
        return _apply_lock_undelegate(state, env)
    if t == "LOCK_DELEGATE_SWITCH":
        return _apply_lock_delegate_switch(state, env)

    return None


__all__ = ["DelegationApplyError", "apply_delegation", "move_lock"]
