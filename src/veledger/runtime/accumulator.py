# src/veledger/runtime/accumulator.py
"""Decay accumulator.

Voting power is an absolute-time-anchored linear function
value(t) = max(0, bias - slope * t). Every account ledger (personal role,
delegate role, delegator->delegate pair stream, and the global aggregate) is
the same structure and is advanced by the same walk:

  state["ve"]["ledgers"][key] = {
      "last_updated": <boundary>,
      "checkpoints": {"<boundary>": {"bias": int, "slope": int}},
      "boundaries": [<boundary>, ...],          # sorted index of checkpoints
      "slope_changes": {"<expiry>": int},       # slope retired at expiry
      "pending": {"<boundary>": {"bias": int, "slope": int}},  # signed deltas
  }

Checkpoints are sparse: advance() writes one only where a slope change or a
pending delta was applied, plus at the boundary the walk stops on. Between two
checkpoints nothing happened, so the closest checkpoint at or before a boundary
is exact for it.

Slope changes are dropped once the walk has applied them.

Pending deltas carry forward-booked effects (delegation moves). They are
keyed by target boundary, stack with each other, and are consumed exactly once
when the walk reaches that boundary.
"""

from __future__ import annotations

from bisect import bisect_right, insort
from typing import Any, Dict, Optional, Tuple

from veledger.ledger.constants import ROLES
from veledger.runtime.epochs import current_boundary, epoch_end, epoch_seconds, epoch_start, now

Json = Dict[str, Any]
Balance = Tuple[int, int]

GLOBAL_KEY = "global"


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def ledger_key(role: str, account: str) -> str:
    r = str(role or "").strip().lower()
    if r not in ROLES:
        raise ValueError(f"unknown role: {role!r}")
    return f"{r}:{account}"


def pair_key(delegator: str, delegate: str) -> str:
    return f"pair:{delegator}>{delegate}"


def _ensure_ve(state: Json) -> Json:
    ve = state.get("ve")
    if not isinstance(ve, dict):
        ve = {}
        state["ve"] = ve
    if not isinstance(ve.get("ledgers"), dict):
        ve["ledgers"] = {}
    return ve


def get_ledger(state: Json, key: str) -> Optional[Json]:
    ve = state.get("ve")
    if not isinstance(ve, dict):
        return None
    ledgers = ve.get("ledgers")
    if not isinstance(ledgers, dict):
        return None
    led = ledgers.get(key)
    return led if isinstance(led, dict) else None


def _ensure_ledger(state: Json, key: str) -> Json:
    ledgers = _ensure_ve(state)["ledgers"]
    led = ledgers.get(key)
    if not isinstance(led, dict):
        led = {}
        ledgers[key] = led
    led.setdefault("last_updated", None)
    led.setdefault("checkpoints", {})
    led.setdefault("boundaries", [])
    led.setdefault("slope_changes", {})
    led.setdefault("pending", {})
    return led


def value_at(balance: Balance, ts: int) -> int:
    bias, slope = balance
    return max(0, int(bias) - int(slope) * int(ts))


def balance_from_principal(principal: int, expiry: int, max_lock_seconds: int) -> Balance:
    """Convert a lock into (bias, slope). Time-invariant for a fixed lock."""
    slope = int(principal) // int(max_lock_seconds)
    return slope * int(expiry), slope


def _checkpoint(led: Json, boundary: int) -> Balance:
    cp = led["checkpoints"].get(str(boundary))
    if not isinstance(cp, dict):
        return 0, 0
    return _as_int(cp.get("bias")), _as_int(cp.get("slope"))


def _write_checkpoint(led: Json, boundary: int, balance: Balance) -> None:
    key = str(boundary)
    if key not in led["checkpoints"]:
        insort(led["boundaries"], int(boundary))
    led["checkpoints"][key] = {"bias": max(0, int(balance[0])), "slope": max(0, int(balance[1]))}


def _step(led: Json, boundary: int, balance: Balance, *, consume: bool) -> Tuple[Balance, bool]:
    """Apply the events scheduled at `boundary`. Returns (balance, changed)."""
    bias, slope = balance
    changed = False

    changes = led["slope_changes"]
    expiring = _as_int(changes.pop(str(boundary), 0) if consume else changes.get(str(boundary)), 0)
    if expiring:
        bias -= expiring * int(boundary)
        slope -= expiring
        changed = True

    pending = led["pending"]
    delta = pending.pop(str(boundary), None) if consume else pending.get(str(boundary))
    if isinstance(delta, dict):
        bias += _as_int(delta.get("bias"))
        slope += _as_int(delta.get("slope"))
        changed = True

    return (max(0, bias), max(0, slope)), changed


def advance(state: Json, key: str, *, max_steps: Optional[int] = None) -> int:
    """Walk the ledger forward to the current boundary.

    Returns the number of boundaries stepped. The first call for a ledger
    starts it at the current boundary with a zero balance.
    """
    led = _ensure_ledger(state, key)
    target = current_boundary(state)

    last = led.get("last_updated")
    if last is None:
        led["last_updated"] = target
        _write_checkpoint(led, target, (0, 0))
        return 0

    last = int(last)
    if last >= target:
        return 0

    e = epoch_seconds(state)
    balance = _checkpoint(led, last)
    steps = 0
    b = last
    while b < target:
        if max_steps is not None and steps >= int(max_steps):
            break
        b += e
        balance, changed = _step(led, b, balance, consume=True)
        steps += 1
        if changed:
            _write_checkpoint(led, b, balance)

    _write_checkpoint(led, b, balance)
    led["last_updated"] = b
    return steps


def is_current(state: Json, key: str) -> bool:
    led = get_ledger(state, key)
    if led is None or led.get("last_updated") is None:
        return False
    return int(led["last_updated"]) >= current_boundary(state)


def apply_now(state: Json, key: str, bias: int, slope: int) -> None:
    """Add a signed (bias, slope) delta at the current boundary."""
    advance(state, key)
    led = _ensure_ledger(state, key)
    b = int(led["last_updated"])
    cur_bias, cur_slope = _checkpoint(led, b)
    _write_checkpoint(led, b, (cur_bias + int(bias), cur_slope + int(slope)))


def book_delta(state: Json, key: str, boundary: int, bias: int, slope: int) -> None:
    """Forward-book a signed delta, stacking with any delta already booked there."""
    advance(state, key)
    led = _ensure_ledger(state, key)
    if int(boundary) <= int(led["last_updated"]):
        raise ValueError(f"cannot book a delta at a walked boundary: {boundary}")
    pending = led["pending"]
    cur = pending.get(str(boundary))
    cur_bias = _as_int(cur.get("bias")) if isinstance(cur, dict) else 0
    cur_slope = _as_int(cur.get("slope")) if isinstance(cur, dict) else 0
    nb, ns = cur_bias + int(bias), cur_slope + int(slope)
    if nb == 0 and ns == 0:
        pending.pop(str(boundary), None)
    else:
        pending[str(boundary)] = {"bias": nb, "slope": ns}


def schedule_slope_change(state: Json, key: str, expiry: int, slope: int) -> None:
    """Add (or with a negative slope, remove) a slope change at `expiry`."""
    led = _ensure_ledger(state, key)
    changes = led["slope_changes"]
    v = _as_int(changes.get(str(expiry)), 0) + int(slope)
    if v <= 0:
        changes.pop(str(expiry), None)
    else:
        changes[str(expiry)] = v


def balance_at(state: Json, key: str, boundary: int) -> Balance:
    """Pure view of the ledger balance at a boundary. Never writes state."""
    led = get_ledger(state, key)
    if led is None or led.get("last_updated") is None:
        return 0, 0

    bounds = led.get("boundaries") or []
    idx = bisect_right(bounds, int(boundary)) - 1
    if idx < 0:
        return 0, 0

    c = int(bounds[idx])
    balance = _checkpoint(led, c)
    last = int(led["last_updated"])
    if int(boundary) <= last:
        return balance

    e = epoch_seconds(state)
    b = max(c, last)
    while b < int(boundary):
        b += e
        balance, _ = _step(led, b, balance, consume=False)
    return balance


def value_at_epoch_end(state: Json, key: str, epoch: int) -> int:
    """Voting power frozen to the end of `epoch`.

    The balance is reconstructed at the epoch's start boundary, so deltas
    forward-booked for the next boundary are not visible here.
    """
    return value_at(balance_at(state, key, epoch_start(state, epoch)), epoch_end(state, epoch))


def current_value(state: Json, key: str) -> int:
    return value_at(balance_at(state, key, current_boundary(state)), now(state))


def pending_at(state: Json, key: str, boundary: int) -> Balance:
    led = get_ledger(state, key)
    if led is None:
        return 0, 0
    d = led.get("pending", {}).get(str(boundary))
    if not isinstance(d, dict):
        return 0, 0
    return _as_int(d.get("bias")), _as_int(d.get("slope"))


__all__ = [
    "GLOBAL_KEY",
    "advance",
    "apply_now",
    "balance_at",
    "balance_from_principal",
    "book_delta",
    "current_value",
    "get_ledger",
    "is_current",
    "ledger_key",
    "pair_key",
    "pending_at",
    "schedule_slope_change",
    "value_at",
    "value_at_epoch_end",
]
