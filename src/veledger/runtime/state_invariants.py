"""Root shape of the ledger state.

Domain containers (ve, locks, pools, epochs, delegates) are created lazily by
the module that owns them; only the roots every applier touches are checked
here.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any, Dict, Tuple

Json = Dict[str, Any]

_ROOTS: Tuple[Tuple[str, type, Any], ...] = (
    ("accounts", dict, dict),
    ("params", dict, dict),
    ("supply", dict, dict),
    ("time", int, int),
    ("seq", int, int),
)


def ensure_state(st: Any) -> Json:
    """Fill missing roots of `st` in place.

    Raises TypeError when `st` is not a mapping or a root has the wrong type.
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    for key, kind, factory in _ROOTS:
        v = st.get(key)
        if v is None:
            st[key] = factory()
        elif not isinstance(v, kind) or isinstance(v, bool):
            raise TypeError(f"state[{key!r}] must be {kind.__name__}, got {type(v).__name__}")
    return st  # type: ignore[return-value]


__all__ = ["ensure_state"]
