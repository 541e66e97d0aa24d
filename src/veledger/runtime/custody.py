# src/veledger/runtime/custody.py
from __future__ import annotations

"""Token custody collaborator.

Opaque balance-transfer / mint capability over
state["accounts"][account]["balances"][asset]. Redemption and penalty
mechanics are not modelled here; the ledger only needs to move locked
principal into the vault and funding/claims in and out of it.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from veledger.ledger.constants import VAULT_ACCOUNT_ID
from veledger.runtime.errors import ApplyError

Json = Dict[str, Any]


@dataclass
class CustodyError(ApplyError):
    code: str
    reason: str
    details: Optional[Json] = None


def _as_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except Exception:
        return int(default)


def ensure_account(state: Json, account_id: str) -> Json:
    accts = state.get("accounts")
    if not isinstance(accts, dict):
        accts = {}
        state["accounts"] = accts
    acct = accts.get(account_id)
    if not isinstance(acct, dict):
        acct = {"nonce": 0, "balances": {}}
        accts[account_id] = acct
    if not isinstance(acct.get("balances"), dict):
        acct["balances"] = {}
    return acct


def balance_of(state: Json, account_id: str, asset: str) -> int:
    accts = state.get("accounts")
    if not isinstance(accts, dict):
        return 0
    acct = accts.get(account_id)
    if not isinstance(acct, dict):
        return 0
    bals = acct.get("balances")
    if not isinstance(bals, dict):
        return 0
    return _as_int(bals.get(asset), 0)


def credit(state: Json, account_id: str, asset: str, amount: int) -> None:
    amt = int(amount)
    if amt < 0:
        raise CustodyError("invalid_amount", "negative_credit", {"account": account_id, "amount": amt})
    if amt == 0:
        return
    bals = ensure_account(state, account_id)["balances"]
    bals[asset] = _as_int(bals.get(asset), 0) + amt


def debit(state: Json, account_id: str, asset: str, amount: int) -> None:
    amt = int(amount)
    if amt < 0:
        raise CustodyError("invalid_amount", "negative_debit", {"account": account_id, "amount": amt})
    if amt == 0:
        return
    have = balance_of(state, account_id, asset)
    if have < amt:
        raise CustodyError(
            "insufficient_balance",
            "balance_too_low",
            {"account": account_id, "asset": asset, "have": have, "need": amt},
        )
    bals = ensure_account(state, account_id)["balances"]
    bals[asset] = have - amt


def transfer(state: Json, src: str, dst: str, asset: str, amount: int) -> None:
    debit(state, src, asset, amount)
    credit(state, dst, asset, amount)


def mint(state: Json, account_id: str, asset: str, amount: int) -> None:
    credit(state, account_id, asset, amount)
    supply = state.setdefault("supply", {})
    supply[asset] = _as_int(supply.get(asset), 0) + int(amount)


def pay_from_vault(state: Json, dst: str, asset: str, amount: int) -> None:
    transfer(state, VAULT_ACCOUNT_ID, dst, asset, amount)


def pull_into_vault(state: Json, src: str, asset: str, amount: int) -> None:
    transfer(state, src, VAULT_ACCOUNT_ID, asset, amount)


__all__ = [
    "CustodyError",
    "balance_of",
    "credit",
    "debit",
    "ensure_account",
    "mint",
    "pay_from_vault",
    "pull_into_vault",
    "transfer",
]
