# src/veledger/runtime/domain_dispatch.py

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from veledger.runtime.apply.accounts import apply_accounts
from veledger.runtime.apply.admin import apply_admin
from veledger.runtime.apply.delegation import apply_delegation
from veledger.runtime.apply.distribution import apply_distribution
from veledger.runtime.apply.locks import apply_locks
from veledger.runtime.apply.voting import apply_voting
from veledger.runtime.errors import ApplyError
from veledger.runtime.state_invariants import ensure_state
from veledger.runtime.tx_admission_types import TxEnvelope, normalize_tx_type

Json = Dict[str, Any]
ApplyFn = Callable[[Json, TxEnvelope], Optional[Json]]

# Each applier returns None for tx types it does not own.
_APPLIERS: tuple[ApplyFn, ...] = (
    apply_locks,
    apply_delegation,
    apply_voting,
    apply_distribution,
    apply_admin,
    apply_accounts,
)


def _as_apply_error(e: Exception, tx_type: str, domain: str) -> ApplyError:
    """Fold a foreign exception into ApplyError, keeping code/reason/details it carries."""
    code = getattr(e, "code", None)
    reason = getattr(e, "reason", None)
    details = getattr(e, "details", None)
    if code is None and reason is None:
        return ApplyError("domain_error", type(e).__name__, {"tx_type": tx_type, "domain": domain, "error": str(e)})
    if details is None:
        details = {"tx_type": tx_type, "domain": domain}
    return ApplyError(str(code or "domain_error"), str(reason or type(e).__name__), details)


def apply_tx(state: Json, env: Any) -> Json:
    """Dispatch an envelope (TxEnvelope or raw dict) to the domain that owns its type.

    Unknown types fail closed with `tx_unimplemented`.
    """
    ensure_state(state)
    tx = TxEnvelope.from_json(env) if isinstance(env, dict) else env
    t = normalize_tx_type(getattr(tx, "tx_type", ""))
    if not t:
        raise ApplyError("invalid_tx", "missing_tx_type", {"tx_type": t})

    for fn in _APPLIERS:
        try:
            out = fn(state, tx)
        except ApplyError:
            raise
        except Exception as e:
            raise _as_apply_error(e, t, fn.__name__) from e
        if out is not None:
            return out

    raise ApplyError("tx_unimplemented", "tx_type_not_implemented", {"tx_type": t})


__all__ = ["apply_tx"]
