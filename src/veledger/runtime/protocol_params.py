# src/veledger/runtime/protocol_params.py
from __future__ import annotations

from typing import Any, Dict, List

from veledger.ledger.constants import (
    FEE_INCREASE_DELAY_EPOCHS,
    LOCK_ASSETS,
    MAX_DELEGATE_FEE_BPS,
    MAX_LOCK_EPOCHS,
    MIN_LOCK_AMOUNT,
    REWARD_ASSET,
    SWEEP_DELAY_EPOCHS,
)
from veledger.runtime.epochs import epoch_seconds

Json = Dict[str, Any]


def _params(state: Json) -> Json:
    p = state.get("params")
    return p if isinstance(p, dict) else {}


def param_int(state: Json, key: str, default: int) -> int:
    v = _params(state).get(key)
    if v is None or isinstance(v, bool):
        return int(default)
    try:
        return int(v)
    except Exception:
        return int(default)


def max_lock_seconds(state: Json) -> int:
    return max(1, param_int(state, "max_lock_epochs", MAX_LOCK_EPOCHS)) * epoch_seconds(state)


def min_lock_amount(state: Json) -> int:
    return max(1, param_int(state, "min_lock_amount", MIN_LOCK_AMOUNT))


def fee_increase_delay_epochs(state: Json) -> int:
    return max(0, param_int(state, "fee_increase_delay_epochs", FEE_INCREASE_DELAY_EPOCHS))


def max_delegate_fee_bps(state: Json) -> int:
    return max(1, param_int(state, "max_delegate_fee_bps", MAX_DELEGATE_FEE_BPS))


def sweep_delay_epochs(state: Json) -> int:
    return max(0, param_int(state, "sweep_delay_epochs", SWEEP_DELAY_EPOCHS))


def lock_assets(state: Json) -> List[str]:
    v = _params(state).get("lock_assets")
    if isinstance(v, list) and v:
        return [str(x) for x in v if str(x).strip()]
    return list(LOCK_ASSETS)


def reward_asset(state: Json) -> str:
    v = _params(state).get("reward_asset")
    return str(v).strip() if isinstance(v, str) and v.strip() else REWARD_ASSET


def operators(state: Json) -> List[str]:
    v = _params(state).get("operators")
    if not isinstance(v, list):
        return []
    return [str(x).strip() for x in v if str(x).strip()]


__all__ = [
    "fee_increase_delay_epochs",
    "lock_assets",
    "max_delegate_fee_bps",
    "max_lock_seconds",
    "min_lock_amount",
    "operators",
    "param_int",
    "reward_asset",
    "sweep_delay_epochs",
]
