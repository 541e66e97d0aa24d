# src/veledger/runtime/gates.py
from __future__ import annotations

"""Access-control capability checks.

Administrative transitions (epoch close, funding, finalization, sweeps, fee
limits, pool registry) are gated on an operator capability: the envelope is a
system envelope, or its signer is listed in state["params"]["operators"].
"""

from typing import Any, Dict

from veledger.ledger.constants import SYSTEM_ACCOUNT_ID
from veledger.runtime.errors import ApplyError
from veledger.runtime.protocol_params import operators
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def is_operator(state: Json, env: TxEnvelope) -> bool:
    if bool(getattr(env, "system", False)):
        return True
    signer = str(getattr(env, "signer", "") or "").strip()
    if not signer:
        return False
    return signer == SYSTEM_ACCOUNT_ID or signer in operators(state)


def require_operator(state: Json, env: TxEnvelope) -> None:
    if is_operator(state, env):
        return
    raise ApplyError("forbidden", "operator_required", {"tx_type": env.tx_type, "signer": env.signer})


def require_signer(env: TxEnvelope) -> str:
    signer = str(getattr(env, "signer", "") or "").strip()
    if not signer:
        raise ApplyError("forbidden", "missing_signer", {"tx_type": env.tx_type})
    return signer


__all__ = ["is_operator", "require_operator", "require_signer"]
