# src/veledger/runtime/apply/__init__.py
"""Domain-specific apply modules.

Each module implements deterministic ledger state transitions for a subset
of tx types and exposes one `apply_<domain>(state, env)` entry point that
returns None for tx types it does not claim.

NOTE: Keep this package import-safe (no imports of domain_dispatch).
"""

from __future__ import annotations

__all__ = [
    "admin",
    "delegation",
    "distribution",
    "locks",
    "voting",
]
