# src/veledger/runtime/apply/accounts.py
from __future__ import annotations

"""
Account signing keys.

state["accounts"][a]["keys"] = [{"pubkey": "<hex>", "active": bool}, ...]

- ACCOUNT_KEY_ADD {pubkey}: register a key for the signer. The first key of a
  non-operator account is admitted on proof of possession (the envelope is
  signed by the key being added, see runtime/sigverify.py).
- ACCOUNT_KEY_REVOKE {pubkey}: deactivate a key; the last active key stays.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from veledger.crypto.sig import normalize_pubkey
from veledger.ledger.constants import RESERVED_ACCOUNT_IDS
from veledger.runtime.custody import ensure_account
from veledger.runtime.errors import ApplyError
from veledger.runtime.gates import require_signer
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


@dataclass
class AccountApplyError(ApplyError):
    code: str
    reason: str
    details: Optional[Json] = None


def _pubkey_arg(env: TxEnvelope) -> str:
    payload = env.payload if isinstance(env.payload, dict) else {}
    try:
        return normalize_pubkey(payload.get("pubkey"))
    except ValueError as e:
        raise AccountApplyError("invalid_payload", "bad_pubkey", {"pubkey": payload.get("pubkey")}) from e


def active_keys(state: Json, account_id: str) -> List[str]:
    acct = (state.get("accounts") or {}).get(account_id)
    if not isinstance(acct, dict) or not isinstance(acct.get("keys"), list):
        return []
    out: List[str] = []
    for rec in acct["keys"]:
        if isinstance(rec, dict) and rec.get("active", True) and isinstance(rec.get("pubkey"), str):
            if rec["pubkey"] not in out:
                out.append(rec["pubkey"])
    return out


def _apply_account_key_add(state: Json, env: TxEnvelope) -> Json:
    signer = require_signer(env)
    if signer in RESERVED_ACCOUNT_IDS:
        raise AccountApplyError("forbidden", "reserved_account", {"signer": signer})
    pk = _pubkey_arg(env)
    if pk in active_keys(state, signer):
        raise AccountApplyError("conflict", "key_already_active", {"pubkey": pk})

    acct = ensure_account(state, signer)
    keys = [r for r in acct.get("keys") or [] if isinstance(r, dict) and r.get("pubkey") != pk]
    keys.append({"pubkey": pk, "active": True})
    acct["keys"] = keys
    return {"applied": "ACCOUNT_KEY_ADD", "account": signer, "pubkey": pk, "active_keys": len(active_keys(state, signer))}


def _apply_account_key_revoke(state: Json, env: TxEnvelope) -> Json:
    signer = require_signer(env)
    pk = _pubkey_arg(env)
    current = active_keys(state, signer)
    if pk not in current:
        raise AccountApplyError("not_found", "key_not_active", {"pubkey": pk})
    if len(current) == 1:
        raise AccountApplyError("invalid_state", "last_active_key", {"pubkey": pk})

    for rec in ensure_account(state, signer)["keys"]:
        if isinstance(rec, dict) and rec.get("pubkey") == pk:
            rec["active"] = False
    return {"applied": "ACCOUNT_KEY_REVOKE", "account": signer, "pubkey": pk, "active_keys": len(current) - 1}


ACCOUNT_TX_TYPES: Set[str] = {"ACCOUNT_KEY_ADD", "ACCOUNT_KEY_REVOKE"}


def apply_accounts(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = str(env.tx_type or "").strip().upper()
    if t == "ACCOUNT_KEY_ADD":
        return _apply_account_key_add(state, env)
    if t == "ACCOUNT_KEY_REVOKE":
        return _apply_account_key_revoke(state, env)
    return None


__all__ = ["ACCOUNT_TX_TYPES", "AccountApplyError", "active_keys", "apply_accounts"]
