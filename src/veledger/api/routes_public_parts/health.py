from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


def _health_payload(request: Request) -> Dict[str, Any]:
    ex = getattr(request.app.state, "executor", None)
    out: Dict[str, Any] = {
        "ok": ex is not None,
        "service": "veledger",
        "version": "v1",
        "ts_ms": int(time.time() * 1000),
        "time": None,
        "epoch": None,
        "seq": None,
    }
    if ex is not None:
        view = ex.view()
        out["time"] = view.time
        out["epoch"] = view.current_epoch
        out["seq"] = int(view.state.get("seq", 0) or 0)
    return out


@router.get("/health")
def v1_health(request: Request) -> Dict[str, Any]:
    return _health_payload(request)
