from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from veledger.api.errors import ApiError
from veledger.api.routes_public_parts.common import _view

router = APIRouter()


@router.get("/locks/{lock_id}")
def lock_get(lock_id: str, request: Request) -> Dict[str, Any]:
    lock = _view(request).get_lock(lock_id)
    if lock is None:
        raise ApiError.not_found("not_found", "lock not found", {"lock_id": lock_id})
    return {"ok": True, "lock": lock}
