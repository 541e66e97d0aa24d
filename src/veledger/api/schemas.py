from __future__ import annotations

"""Pydantic request schemas for the public API.

The tx payload shapes are validated by the domain appliers; these schemas
only check the envelope around them.
"""

from typing import Any, Dict

from pydantic import BaseModel, Field, field_validator


class TxSubmitRequest(BaseModel):
    tx_type: str = Field(..., description="Tx type, e.g. LOCK_CREATE")
    signer: str = Field(..., description="Account id of the caller")
    nonce: int = Field(default=0, ge=0, description="Per-signer sequence number; signed txs need nonce > 0")
    payload: Dict[str, Any] = Field(default_factory=dict)
    sig: str = Field(default="", description="Ed25519 signature over the canonical envelope (hex or base64)")

    # Any extra fields are ignored (forward compatible)
    model_config = {"extra": "ignore"}

    @field_validator("tx_type", "signer")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v = str(v or "").strip()
        if not v:
            raise ValueError("must be a non-empty string")
        return v

    def to_envelope(self) -> Dict[str, Any]:
        return {
            "tx_type": self.tx_type.upper(),
            "signer": self.signer,
            "nonce": int(self.nonce),
            "payload": dict(self.payload),
            "sig": self.sig.strip(),
            "system": False,
        }
