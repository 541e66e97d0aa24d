# src/veledger/runtime/apply/admin.py
from __future__ import annotations

"""
Administrative and maintenance transitions.

- BALANCE_MINT (operator): fund an account through the custody collaborator
- PARAMS_SET (operator): tune protocol params in state["params"]
- CHECKPOINT_ADVANCE (anyone): walk a dormant account's ledgers forward in
  bounded batches so later operations stay cheap
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from veledger.ledger.constants import ROLE_DELEGATE, ROLE_PERSONAL
from veledger.runtime import accumulator as acc
from veledger.runtime.custody import mint
from veledger.runtime.errors import ApplyError
from veledger.runtime.gates import require_operator, require_signer
from veledger.runtime.protocol_config import protocol_config_from_params, validate_protocol_params
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]

# genesis_time / epoch_seconds anchor every stored boundary and stay fixed.
_INT_PARAMS: Set[str] = {
    "max_lock_epochs",
    "min_lock_amount",
    "fee_increase_delay_epochs",
    "max_delegate_fee_bps",
    "sweep_delay_epochs",
}
_LIST_PARAMS: Set[str] = {"operators", "lock_assets"}
_STR_PARAMS: Set[str] = {"reward_asset"}


@dataclass
class AdminApplyError(ApplyError):
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


def _apply_balance_mint(state: Json, env: TxEnvelope) -> Json:
    require_operator(state, env)
    payload = _as_dict(env.payload)
    account = _as_str(payload.get("account"))
    asset = _as_str(payload.get("asset"))
    amount = _as_int(payload.get("amount"), 0)
    if not account or not asset:
        raise AdminApplyError("invalid_payload", "missing_account_or_asset", {})
    if amount <= 0:
        raise AdminApplyError("invalid_amount", "amount_must_be_positive", {"amount": payload.get("amount")})

    mint(state, account, asset, amount)
    return {"applied": "BALANCE_MINT", "account": account, "asset": asset, "amount": amount}


def _coerce_param(key: str, value: Any) -> Any:
    if key in _INT_PARAMS:
        v = _as_int(value, -1)
        if v < 0:
            raise AdminApplyError("invalid_payload", "bad_param_value", {"key": key, "value": value})
        return v
    if key in _LIST_PARAMS:
        if not isinstance(value, list) or not all(_as_str(x) for x in value):
            raise AdminApplyError("invalid_payload", "bad_param_value", {"key": key, "value": value})
        return [_as_str(x) for x in value]
    if key in _STR_PARAMS:
        v = _as_str(value)
        if not v:
            raise AdminApplyError("invalid_payload", "bad_param_value", {"key": key, "value": value})
        return v
    raise AdminApplyError("forbidden", "param_not_settable", {"key": key})


def _apply_params_set(state: Json, env: TxEnvelope) -> Json:
    require_operator(state, env)
    updates = _as_dict(_as_dict(env.payload).get("params"))
    if not updates:
        raise AdminApplyError("invalid_payload", "missing_params", {})

    coerced = {str(k): _coerce_param(str(k), v) for k, v in updates.items()}

    # the merged params must still pass the same checks as a config file
    merged = {**state["params"], **coerced}
    try:
        validate_protocol_params(protocol_config_from_params(merged))
    except ValueError as e:
        raise AdminApplyError("invalid_payload", "bad_param_value", {"params": coerced, "error": str(e)}) from e
    state["params"].update(coerced)
    return {"applied": "PARAMS_SET", "params": coerced}


def _account_keys(state: Json, account: str) -> List[str]:
    keys = [acc.ledger_key(ROLE_PERSONAL, account), acc.ledger_key(ROLE_DELEGATE, account)]
    ledgers = _as_dict(_as_dict(state.get("ve")).get("ledgers"))
    prefix = acc.pair_key(account, "")
    keys.extend(sorted(k for k in ledgers if k.startswith(prefix)))
    return [k for k in keys if acc.get_ledger(state, k) is not None]


def _apply_checkpoint_advance(state: Json, env: TxEnvelope) -> Json:
    require_signer(env)
    payload = _as_dict(env.payload)
    account = _as_str(payload.get("account")) or env.signer
    max_steps = payload.get("max_steps")
    steps_cap = None if max_steps is None else _as_int(max_steps, 0)
    if steps_cap is not None and steps_cap <= 0:
        raise AdminApplyError("invalid_payload", "max_steps_must_be_positive", {"max_steps": max_steps})

    stepped: Json = {}
    for key in _account_keys(state, account) + [acc.GLOBAL_KEY]:
        if acc.get_ledger(state, key) is None:
            continue
        stepped[key] = acc.advance(state, key, max_steps=steps_cap)
    return {
        "applied": "CHECKPOINT_ADVANCE",
        "account": account,
        "steps": stepped,
        "current": all(acc.is_current(state, k) for k in stepped),
    }


ADMIN_TX_TYPES: Set[str] = {
    "BALANCE_MINT",
    "PARAMS_SET",
    "CHECKPOINT_ADVANCE",
}


def apply_admin(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in ADMIN_TX_TYPES:
        return None

    if t == "BALANCE_MINT":
        return _apply_balance_mint(state, env)
    if t == "PARAMS_SET":
        return _apply_params_set(state, env)
    if t == "CHECKPOINT_ADVANCE":
        return _apply_checkpoint_advance(state, env)

    return None


__all__ = ["AdminApplyError", "apply_admin"]
