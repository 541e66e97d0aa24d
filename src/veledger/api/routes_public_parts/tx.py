from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from veledger.api.errors import ApiError
from veledger.api.routes_public_parts.common import _executor
from veledger.api.schemas import TxSubmitRequest
from veledger.ledger.constants import SYSTEM_ACCOUNT_ID

router = APIRouter()

Json = Dict[str, Any]


@router.post("/tx")
def tx_submit(body: TxSubmitRequest, request: Request) -> Json:
    """Apply a tx envelope and return its receipt.

    Returns:
      { ok, seq, receipt }   on success
      4xx ApiError body      when the ledger rejects the tx (no state change)
    """
    ex = _executor(request)

    if body.signer == SYSTEM_ACCOUNT_ID:
        raise ApiError.forbidden(
            "system_tx_forbidden",
            "SYSTEM-signed txs are not accepted via the public tx endpoint",
            {"tx_type": body.tx_type},
        )

    out = ex.submit_tx(body.to_envelope())
    if not out.get("ok"):
        raise ApiError.from_apply_error(out.get("error") or {})
    return out


@router.get("/receipts")
def receipts_list(request: Request, limit: int = 50, signer: str = "") -> Json:
    ex = _executor(request)
    return {"ok": True, "receipts": ex.receipts(limit=limit, signer=signer or None)}
