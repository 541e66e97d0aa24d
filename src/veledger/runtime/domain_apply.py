"""Atomic entry point for applying tx envelopes to a ledger state."""

from __future__ import annotations

import copy
from typing import Any, Dict, Optional

from veledger.runtime.custody import ensure_account
from veledger.runtime.domain_dispatch import apply_tx
from veledger.runtime.errors import ApplyError
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _check_nonce(state: Json, env: TxEnvelope) -> None:
    """Sequenced submissions (nonce > 0) must strictly increase per signer.

    System envelopes and nonce 0 are unsequenced.
    """

    if env.system or int(env.nonce) <= 0 or not env.signer:
        return

    acct = ensure_account(state, env.signer)
    last = int(acct.get("nonce") or 0)
    if int(env.nonce) <= last:
        raise ApplyError("conflict", "nonce_replay", {"signer": env.signer, "nonce": env.nonce, "last_nonce": last})
    acct["nonce"] = int(env.nonce)


def apply_tx_atomic(state: Json, env: Any) -> Optional[Json]:
    """Apply `env` all-or-nothing.

    The tx runs against a deep copy; on ApplyError `state` (signer nonce
    included) is left exactly as it was.
    """
    tx = TxEnvelope.from_json(env)
    snapshot = copy.deepcopy(state)
    _check_nonce(snapshot, tx)
    meta = apply_tx(snapshot, tx)

    # commit in place; callers hold references to `state`
    state.clear()
    state.update(snapshot)
    return meta


__all__ = ["ApplyError", "apply_tx", "apply_tx_atomic", "Json"]
