# src/veledger/api/structured_logging.py
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from veledger.runtime.runtime_logging import log_event

_OFF = {"0", "false", "no", "off"}


def configure_structured_logging(level_name: Optional[str] = None) -> None:
    """Route stdlib logging to stdout, one JSON line per record.

    Records are already JSON (see `log_event`), so the formatter passes the
    message through. Repeat calls only adjust the level.
    """
    name = (level_name or os.environ.get("VELEDGER_LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    if any(getattr(h, "_veledger", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler._veledger = True  # type: ignore[attr-defined]
    root.handlers = [handler]


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Logs one `http_request` event per request and echoes `x-request-id`.

    VELEDGER_LOG_REQUESTS=0 turns the log line off; the header is always set.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        self._enabled = (os.environ.get("VELEDGER_LOG_REQUESTS") or "1").strip().lower() not in _OFF
        self._logger = logging.getLogger("veledger.http")

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.monotonic()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers["x-request-id"] = request_id
            return response
        finally:
            if self._enabled:
                log_event(
                    self._logger,
                    "http_request",
                    request_id=request_id,
                    method=request.method,
                    path=request.url.path,
                    status=status,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
