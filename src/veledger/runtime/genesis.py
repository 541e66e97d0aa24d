# src/veledger/runtime/genesis.py
from __future__ import annotations

from typing import Any, Dict

from veledger.crypto.sig import normalize_pubkey
from veledger.ledger.constants import SYSTEM_ACCOUNT_ID, VAULT_ACCOUNT_ID
from veledger.runtime.protocol_config import ProtocolConfig, validate_protocol_config
from veledger.runtime.state_invariants import ensure_state

Json = Dict[str, Any]


def genesis_state(cfg: ProtocolConfig) -> Json:
    """Initial ledger state for a validated protocol config.

    Clock starts at genesis_time (epoch 0). Tunable protocol params are copied
    into state["params"] so PARAMS_SET can change them later; genesis signing
    keys are installed on their accounts.
    """
    validate_protocol_config(cfg)
    st: Json = {
        "seq": 0,
        "time": int(cfg.genesis_time),
        "params": cfg.to_params(),
        "accounts": {
            VAULT_ACCOUNT_ID: {"nonce": 0, "balances": {}},
            SYSTEM_ACCOUNT_ID: {"nonce": 0, "balances": {}},
        },
        "supply": {},
        "ve": {"ledgers": {}, "locks": {}, "next_lock_id": 1},
        "delegates": {},
        "pools": {},
        "epochs": {},
        "votes": {},
    }
    for account, pubkey in cfg.account_keys:
        acct = st["accounts"].setdefault(account, {"nonce": 0, "balances": {}})
        acct.setdefault("keys", []).append({"pubkey": normalize_pubkey(pubkey), "active": True})
    return ensure_state(st)


__all__ = ["genesis_state"]
