# src/veledger/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from veledger.api.routes_public_parts.accounts import router as accounts_router
from veledger.api.routes_public_parts.delegates import router as delegates_router
from veledger.api.routes_public_parts.epochs import router as epochs_router
from veledger.api.routes_public_parts.health import router as health_router
from veledger.api.routes_public_parts.locks import router as locks_router
from veledger.api.routes_public_parts.tx import router as tx_router

public_router = APIRouter()

# Versioned API surface
public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(accounts_router, prefix="/v1", tags=["accounts"])
public_router.include_router(locks_router, prefix="/v1", tags=["locks"])
public_router.include_router(epochs_router, prefix="/v1", tags=["epochs"])
public_router.include_router(delegates_router, prefix="/v1", tags=["delegates"])
public_router.include_router(tx_router, prefix="/v1", tags=["tx"])
