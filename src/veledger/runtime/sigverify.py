# src/veledger/runtime/sigverify.py

"""Envelope signature admission.

Runs before apply, against the state the tx will be applied to. Policy:

  - params["require_signatures"] False: everything is admitted (dev ledgers).
  - system envelopes are internal and not signed.
  - signed envelopes must be sequenced (nonce > 0), or a captured envelope
    could be replayed.
  - the signature must verify against one of the signer's active keys.
  - a signer with no active keys may only submit ACCOUNT_KEY_ADD signed by the
    key it adds. Operators and reserved accounts never bootstrap this way;
    their keys come from genesis.
"""

from __future__ import annotations

from typing import Any, Dict, List

from veledger.crypto.sig import canonical_tx_message, normalize_pubkey, verify_ed25519_signature
from veledger.ledger.constants import RESERVED_ACCOUNT_IDS
from veledger.runtime.apply.accounts import active_keys
from veledger.runtime.errors import ApplyError
from veledger.runtime.protocol_params import operators
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def signatures_required(state: Json) -> bool:
    params = state.get("params") if isinstance(state.get("params"), dict) else {}
    return bool(params.get("require_signatures", True))


def _bootstrap_keys(state: Json, env: TxEnvelope) -> List[str]:
    if env.tx_type != "ACCOUNT_KEY_ADD":
        return []
    if env.signer in RESERVED_ACCOUNT_IDS or env.signer in operators(state):
        return []
    try:
        return [normalize_pubkey(env.payload.get("pubkey"))]
    except ValueError:
        return []


def check_tx_signature(state: Json, env: TxEnvelope) -> None:
    """Raise ApplyError unless `env` is admissible under the signature policy."""
    if env.system or not signatures_required(state):
        return

    details = {"tx_type": env.tx_type, "signer": env.signer}
    if not env.signer:
        raise ApplyError("forbidden", "missing_signer", details)
    if int(env.nonce) <= 0:
        raise ApplyError("forbidden", "nonce_required", details)
    if not env.sig:
        raise ApplyError("forbidden", "missing_signature", details)

    keys = active_keys(state, env.signer) or _bootstrap_keys(state, env)
    if not keys:
        raise ApplyError("forbidden", "no_active_keys", details)

    msg = canonical_tx_message(tx_type=env.tx_type, signer=env.signer, nonce=env.nonce, payload=env.payload)
    if not any(verify_ed25519_signature(message=msg, sig=env.sig, pubkey=pk) for pk in keys):
        raise ApplyError("forbidden", "invalid_signature", details)


__all__ = ["check_tx_signature", "signatures_required"]
