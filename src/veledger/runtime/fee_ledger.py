# src/veledger/runtime/fee_ledger.py
from __future__ import annotations

"""Delegate fee ledger.

Epoch-indexed fee history per delegate (basis points):

  state["delegates"][delegate] = {
      "current_fee": int,            # never 0 once registered
      "pending_fee": int,            # 0 = no pending increase
      "pending_epoch": int,          # epoch the pending increase takes effect
      "fee_history": {"<epoch>": int},
      ...
  }

Rules:
  - a decrease is immediate and written at the current epoch; it clears any
    pending increase
  - an increase is deferred to current + delay and is only written when a
    delegated vote lands in an epoch at or after the effective epoch; with a
    zero delay it is current at once but never rewrites a recorded epoch
  - history slots are filled opportunistically on delegated votes; an epoch
    the delegate did not vote in stays 0 ("no fee recorded")
"""

from typing import Any, Dict

from veledger.ledger.constants import FEE_DENOMINATOR

Json = Dict[str, Any]


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def ensure_delegates(state: Json) -> Json:
    d = state.get("delegates")
    if not isinstance(d, dict):
        d = {}
        state["delegates"] = d
    return d


def get_delegate(state: Json, delegate: str) -> Json | None:
    rec = ensure_delegates(state).get(str(delegate))
    if isinstance(rec, dict) and bool(rec.get("registered", False)):
        return rec
    return None


def new_delegate_record(fee_bps: int, epoch: int) -> Json:
    return {
        "registered": True,
        "registered_epoch": int(epoch),
        "current_fee": int(fee_bps),
        "pending_fee": 0,
        "pending_epoch": 0,
        "fee_history": {},
        "captured_rewards": 0,
        "captured_fees": 0,
    }


def resolve_pending(rec: Json, epoch: int) -> None:
    """Promote a pending increase once its effective epoch is reached."""
    pending = _as_int(rec.get("pending_fee"))
    if pending and _as_int(rec.get("pending_epoch")) <= int(epoch):
        rec["current_fee"] = pending
        rec["pending_fee"] = 0
        rec["pending_epoch"] = 0


def effective_fee(rec: Json, epoch: int) -> int:
    pending = _as_int(rec.get("pending_fee"))
    if pending and _as_int(rec.get("pending_epoch")) <= int(epoch):
        return pending
    return _as_int(rec.get("current_fee"))


def set_fee(rec: Json, new_fee: int, *, epoch: int, delay_epochs: int) -> Json:
    """Apply a fee update at `epoch`. Returns a small receipt."""
    resolve_pending(rec, epoch)
    current = _as_int(rec.get("current_fee"))
    history = rec.setdefault("fee_history", {})

    if int(new_fee) <= current or int(delay_epochs) <= 0:
        rec["current_fee"] = int(new_fee)
        rec["pending_fee"] = 0
        rec["pending_epoch"] = 0
        if int(new_fee) <= current:
            history[str(epoch)] = int(new_fee)
        return {"fee_bps": int(new_fee), "effective_epoch": int(epoch), "deferred": False}

    rec["pending_fee"] = int(new_fee)
    rec["pending_epoch"] = int(epoch) + int(delay_epochs)
    return {"fee_bps": int(new_fee), "effective_epoch": rec["pending_epoch"], "deferred": True}


def record_fee_for_epoch(rec: Json, epoch: int) -> int:
    history = rec.setdefault("fee_history", {})
    fee = _as_int(history.get(str(epoch)))
    if fee:
        return fee
    resolve_pending(rec, epoch)
    fee = _as_int(rec.get("current_fee"))
    history[str(epoch)] = fee
    return fee


def fee_for_epoch(state: Json, delegate: str, epoch: int) -> int:
    rec = get_delegate(state, delegate)
    if rec is None:
        return 0
    return _as_int(_as_dict(rec.get("fee_history")).get(str(epoch)))


def fee_amount(gross: int, fee_bps: int) -> int:
    """Floor of `gross * fee_bps / 10000`; a fee never exceeds the gross it is taken from."""
    bps = max(0, min(int(fee_bps), FEE_DENOMINATOR))
    return int(gross) * bps // FEE_DENOMINATOR


__all__ = [
    "effective_fee",
    "ensure_delegates",
    "fee_amount",
    "fee_for_epoch",
    "get_delegate",
    "new_delegate_record",
    "record_fee_for_epoch",
    "resolve_pending",
    "set_fee",
]
