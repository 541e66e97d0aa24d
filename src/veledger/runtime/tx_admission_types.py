from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


def normalize_tx_type(v: Any) -> str:
    return str(v or "").strip().upper()


@dataclass(frozen=True)
class TxEnvelope:
    """A caller-attributed state transition request.

    `system=True` marks operator/runtime-originated transitions (epoch close,
    funding, sweeps). `sig` is the Ed25519 signature over the envelope, checked
    at admission (runtime/sigverify.py); access control is checked by the
    domain appliers.
    """

    tx_type: str
    signer: str
    nonce: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)
    sig: str = ""
    system: bool = False

    @staticmethod
    def from_json(j: Any) -> "TxEnvelope":
        if isinstance(j, TxEnvelope):
            return j
        if not isinstance(j, dict):
            j = dict(j)  # type: ignore[arg-type]
        return TxEnvelope(
            tx_type=normalize_tx_type(j.get("tx_type")),
            signer=str(j.get("signer", "") or "").strip(),
            nonce=int(j.get("nonce", 0) or 0),
            payload=dict(j.get("payload", {}) or {}),
            sig=str(j.get("sig", "") or "").strip(),
            system=bool(j.get("system", False)),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "tx_type": self.tx_type,
            "signer": self.signer,
            "nonce": self.nonce,
            "payload": self.payload,
            "sig": self.sig,
            "system": self.system,
        }
