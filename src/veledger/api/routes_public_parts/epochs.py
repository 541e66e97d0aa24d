from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from veledger.api.errors import ApiError
from veledger.api.routes_public_parts.common import _int_param, _view

router = APIRouter()

Json = Dict[str, Any]


@router.get("/epochs/current")
def epoch_current(request: Request) -> Json:
    view = _view(request)
    return {"ok": True, "epoch": view.current_epoch, "time": view.time}


@router.get("/epochs/{epoch}")
def epoch_get(epoch: int, request: Request) -> Json:
    rec = _view(request).get_epoch(epoch)
    if rec is None:
        raise ApiError.not_found("not_found", "epoch has no record", {"epoch": epoch})
    return {"ok": True, "epoch": rec}


@router.get("/epochs/{epoch}/pools/{pool_id}")
def epoch_pool_get(epoch: int, pool_id: str, request: Request) -> Json:
    rec = _view(request).get_epoch_pool(epoch, pool_id)
    if rec is None:
        raise ApiError.not_found("not_found", "pool has no record for epoch", {"epoch": epoch, "pool_id": pool_id})
    return {"ok": True, "pool": rec}


@router.get("/epochs/{epoch}/subsidy-preview")
def epoch_subsidy_preview(epoch: int, request: Request, amount: Optional[str] = None) -> Json:
    amt = _int_param(amount, None, name="amount")
    if amt is None or amt < 0:
        raise ApiError.bad_request("invalid_param", "amount must be a non-negative integer", {"amount": amount})
    return {"ok": True, "preview": _view(request).subsidy_preview(epoch, amt)}


@router.get("/pools/{pool_id}")
def pool_get(pool_id: str, request: Request) -> Json:
    pool = _view(request).get_pool(pool_id)
    if pool is None:
        raise ApiError.not_found("not_found", "pool not found", {"pool_id": pool_id})
    return {"ok": True, "pool": pool}
