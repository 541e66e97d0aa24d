# src/veledger/runtime/epochs.py
from __future__ import annotations

"""Epoch clock.

Epoch n spans [genesis_time + n*E, genesis_time + (n+1)*E). Every decay event
(slope changes, forward-booked delegation deltas) lands on a boundary
genesis_time + k*E, so voting power only moves at boundaries.

State assumptions:
  state["time"]: unix seconds (int)
  state["params"]["genesis_time"]: unix seconds (int)
  state["params"]["epoch_seconds"]: epoch length in seconds (int)
"""

from typing import Any, Dict

from veledger.ledger.constants import EPOCH_SECONDS

Json = Dict[str, Any]


def _as_int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _params(state: Json) -> Json:
    p = state.get("params")
    return p if isinstance(p, dict) else {}


def epoch_seconds(state: Json) -> int:
    e = _as_int(_params(state).get("epoch_seconds"), EPOCH_SECONDS)
    return e if e > 0 else EPOCH_SECONDS


def genesis_time(state: Json) -> int:
    return _as_int(_params(state).get("genesis_time"), 0)


def now(state: Json) -> int:
    return _as_int(state.get("time"), 0)


def epoch_at(state: Json, ts: int) -> int:
    """Epoch containing `ts`. Times before genesis map to epoch 0."""
    g = genesis_time(state)
    if int(ts) <= g:
        return 0
    return (int(ts) - g) // epoch_seconds(state)


def current_epoch(state: Json) -> int:
    return epoch_at(state, now(state))


def epoch_start(state: Json, epoch: int) -> int:
    return genesis_time(state) + int(epoch) * epoch_seconds(state)


def epoch_end(state: Json, epoch: int) -> int:
    return epoch_start(state, int(epoch) + 1)


def current_boundary(state: Json) -> int:
    return epoch_start(state, current_epoch(state))


def next_boundary(state: Json) -> int:
    return epoch_start(state, current_epoch(state) + 1)


def is_boundary(state: Json, ts: int) -> bool:
    g = genesis_time(state)
    if int(ts) < g:
        return False
    return (int(ts) - g) % epoch_seconds(state) == 0


__all__ = [
    "current_boundary",
    "current_epoch",
    "epoch_at",
    "epoch_end",
    "epoch_seconds",
    "epoch_start",
    "genesis_time",
    "is_boundary",
    "next_boundary",
    "now",
]
