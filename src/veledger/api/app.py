from __future__ import annotations

import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from veledger.api.errors import ApiError, api_error_handler
from veledger.api.routes_public import public_router
from veledger.api.structured_logging import RequestLogMiddleware, configure_structured_logging
from veledger.runtime.executor_boot import build_executor as _build_executor


def build_executor():
    """Build a LedgerExecutor for API runtime.

    This wrapper exists so tests can monkeypatch `veledger.api.app.build_executor`
    without reaching into runtime modules.
    """
    return _build_executor()


def _parse_cors_origins() -> List[str]:
    """Parse CORS origins. Unset/empty VELEDGER_CORS_ORIGINS disables CORS."""
    raw = os.environ.get("VELEDGER_CORS_ORIGINS", "").strip()
    if not raw:
        return []
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    if "*" in origins:
        raise RuntimeError(
            "Unsafe CORS configuration: wildcard '*' not allowed. Set explicit origins in VELEDGER_CORS_ORIGINS."
        )
    return origins


def create_app(*, boot_runtime: bool = True, executor=None) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load config from env and attach an executor
      - False: attach `executor` as given (tests pass an in-memory one)
    """
    configure_structured_logging()

    app = FastAPI(title="veledger API")

    if boot_runtime and executor is None:
        executor = build_executor()
    app.state.executor = executor

    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]

    app.add_middleware(RequestLogMiddleware)

    cors_origins = _parse_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "X-Request-Id"],
        )

    app.include_router(public_router)
    return app
