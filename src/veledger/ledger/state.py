from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from veledger.ledger.constants import ROLE_DELEGATE, ROLE_PERSONAL
from veledger.runtime import accumulator as acc
from veledger.runtime.apply.distribution import preview_subsidy_deposit
from veledger.runtime.custody import balance_of
from veledger.runtime.epoch_store import account_epoch, get_epoch, get_epoch_pool, get_pool
from veledger.runtime.epochs import current_epoch, epoch_end, epoch_start
from veledger.runtime.fee_ledger import effective_fee, get_delegate

Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class LedgerView:
    """
    Immutable read-only ledger view used by the API and reporting.

    Every accessor is a pure function of the snapshot; power lookups use the
    accumulator's non-mutating views, so repeated calls return identical
    results.
    """

    state: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_ledger(cls, state: Dict[str, Any]) -> "LedgerView":
        return cls(state=copy.deepcopy(state))

    def to_ledger(self) -> Dict[str, Any]:
        return copy.deepcopy(self.state)

    # --- clock / params ----------------------------------------------------

    @property
    def time(self) -> int:
        return int(self.state.get("time", 0) or 0)

    @property
    def current_epoch(self) -> int:
        return current_epoch(self.state)

    def get_param(self, key: str, default: Any = None) -> Any:
        params = self.state.get("params")
        return params.get(key, default) if isinstance(params, dict) else default

    # --- accounts ----------------------------------------------------------

    def get_account(self, account_id: str) -> Dict[str, Any]:
        accts = self.state.get("accounts")
        acct = accts.get(account_id) if isinstance(accts, dict) else None
        return copy.deepcopy(acct) if isinstance(acct, dict) else {}

    def get_nonce(self, account_id: str) -> int:
        try:
            return int(self.get_account(account_id).get("nonce", 0))
        except (TypeError, ValueError):
            return 0

    def balance(self, account_id: str, asset: str) -> int:
        return balance_of(self.state, account_id, asset)

    # --- voting power ------------------------------------------------------

    def power(self, account_id: str, *, role: str = ROLE_PERSONAL, epoch: Optional[int] = None) -> int:
        """End-of-epoch power for `epoch`, or the current decayed value if None."""
        key = acc.ledger_key(role, account_id)
        if epoch is None:
            return acc.current_value(self.state, key)
        return acc.value_at_epoch_end(self.state, key, int(epoch))

    def delegated_power(self, delegator: str, delegate: str, *, epoch: Optional[int] = None) -> int:
        key = acc.pair_key(delegator, delegate)
        if epoch is None:
            return acc.current_value(self.state, key)
        return acc.value_at_epoch_end(self.state, key, int(epoch))

    def global_power(self, *, epoch: Optional[int] = None) -> int:
        if epoch is None:
            return acc.current_value(self.state, acc.GLOBAL_KEY)
        return acc.value_at_epoch_end(self.state, acc.GLOBAL_KEY, int(epoch))

    def power_report(self, account_id: str, *, role: str = ROLE_PERSONAL, epoch: Optional[int] = None) -> Json:
        e = self.current_epoch if epoch is None else int(epoch)
        bias, slope = acc.balance_at(self.state, acc.ledger_key(role, account_id), epoch_start(self.state, e))
        return {
            "account": account_id,
            "role": role,
            "epoch": e,
            "epoch_end": epoch_end(self.state, e),
            "power_at_epoch_end": self.power(account_id, role=role, epoch=e),
            "current_power": self.power(account_id, role=role),
            "bias": bias,
            "slope": slope,
        }

    # --- locks -------------------------------------------------------------

    def get_lock(self, lock_id: str) -> Optional[Json]:
        ve = self.state.get("ve")
        locks = ve.get("locks") if isinstance(ve, dict) else None
        lock = locks.get(str(lock_id)) if isinstance(locks, dict) else None
        return copy.deepcopy(lock) if isinstance(lock, dict) else None

    # --- epochs / pools ----------------------------------------------------

    def get_epoch(self, epoch: int) -> Optional[Json]:
        rec = get_epoch(self.state, int(epoch))
        if rec is None:
            return None
        out = copy.deepcopy(rec)
        out.pop("pools", None)
        for book in ("reward_claims", "delegated_claims", "subsidy_claims"):
            out.pop(book, None)
        out["pool_ids"] = sorted(_as_dict(rec.get("pools")).keys())
        out["residual"] = {
            "rewards": max(0, int(rec.get("total_rewards_deposited", 0)) - int(rec.get("total_rewards_claimed", 0))),
            "subsidies": max(
                0, int(rec.get("total_subsidies_allocated", 0)) - int(rec.get("total_subsidies_claimed", 0))
            ),
        }
        return out

    def get_epoch_pool(self, epoch: int, pool_id: str) -> Optional[Json]:
        rec = get_epoch_pool(self.state, int(epoch), pool_id)
        if rec is None:
            return None
        out = copy.deepcopy(rec)
        out["pool_id"] = pool_id
        out["epoch"] = int(epoch)
        out["active"] = bool((get_pool(self.state, pool_id) or {}).get("active", False))
        return out

    def get_pool(self, pool_id: str) -> Optional[Json]:
        p = get_pool(self.state, pool_id)
        return copy.deepcopy(p) if p is not None else None

    def account_votes(self, account_id: str, epoch: int, *, delegated: bool = False) -> Json:
        role = ROLE_DELEGATE if delegated else ROLE_PERSONAL
        return copy.deepcopy(account_epoch(self.state, role, account_id, int(epoch)))

    def subsidy_preview(self, epoch: int, amount: int) -> Json:
        return preview_subsidy_deposit(self.state, int(epoch), int(amount))

    # --- delegates ---------------------------------------------------------

    def get_delegate(self, delegate: str) -> Optional[Json]:
        rec = get_delegate(self.state, delegate)
        if rec is None:
            return None
        out = copy.deepcopy(rec)
        out["delegate"] = delegate
        out["effective_fee"] = effective_fee(rec, self.current_epoch)
        return out


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


__all__ = ["LedgerView"]
