from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request

from veledger.api.errors import ApiError
from veledger.ledger.constants import ROLES
from veledger.ledger.state import LedgerView

Json = Dict[str, Any]


def _executor(request: Request):
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        raise ApiError.internal("not_ready", "executor not attached to app.state", {})
    return ex


def _view(request: Request) -> LedgerView:
    return _executor(request).view()


def _int_param(v: Any, default: Optional[int], *, name: str) -> Optional[int]:
    """Parse an int-ish query param; malformed values are a 400."""
    if v is None:
        return default
    s = str(v).strip()
    if s == "":
        return default
    try:
        return int(s)
    except ValueError:
        raise ApiError.bad_request("invalid_param", f"{name} must be an integer", {name: s})


def _role_param(v: Any) -> str:
    role = str(v or "personal").strip().lower()
    if role not in ROLES:
        raise ApiError.bad_request("invalid_param", "role must be personal or delegate", {"role": role})
    return role
