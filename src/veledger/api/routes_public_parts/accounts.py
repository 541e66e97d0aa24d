from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from veledger.api.routes_public_parts.common import _int_param, _role_param, _view

router = APIRouter()

Json = Dict[str, Any]


@router.get("/accounts/{account}")
def account_get(account: str, request: Request) -> Json:
    view = _view(request)
    acct = view.get_account(account)
    return {"ok": True, "account": account, "nonce": view.get_nonce(account), "balances": acct.get("balances", {})}


@router.get("/accounts/{account}/power")
def account_power(account: str, request: Request, role: Optional[str] = None, epoch: Optional[str] = None) -> Json:
    """Current decayed power plus end-of-epoch power for `epoch` (default: current)."""
    view = _view(request)
    e = _int_param(epoch, None, name="epoch")
    return {"ok": True, **view.power_report(account, role=_role_param(role), epoch=e)}


@router.get("/accounts/{account}/delegations/{delegate}/power")
def account_delegated_power(account: str, delegate: str, request: Request, epoch: Optional[str] = None) -> Json:
    view = _view(request)
    e = _int_param(epoch, view.current_epoch, name="epoch")
    return {
        "ok": True,
        "delegator": account,
        "delegate": delegate,
        "epoch": e,
        "power_at_epoch_end": view.delegated_power(account, delegate, epoch=e),
        "current_power": view.delegated_power(account, delegate),
    }


@router.get("/accounts/{account}/votes/{epoch}")
def account_votes(account: str, epoch: int, request: Request, delegated: bool = False) -> Json:
    view = _view(request)
    return {"ok": True, "account": account, "epoch": epoch, "delegated": delegated, "votes": view.account_votes(account, epoch, delegated=delegated)}
