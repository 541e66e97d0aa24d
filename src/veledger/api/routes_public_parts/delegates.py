from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from veledger.api.errors import ApiError
from veledger.api.routes_public_parts.common import _view

router = APIRouter()


@router.get("/delegates/{delegate}")
def delegate_get(delegate: str, request: Request) -> Dict[str, Any]:
    rec = _view(request).get_delegate(delegate)
    if rec is None:
        raise ApiError.not_found("not_found", "delegate not registered", {"delegate": delegate})
    return {"ok": True, "delegate": rec}
