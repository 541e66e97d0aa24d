# src/veledger/crypto/sig.py
from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

Json = Dict[str, Any]


def _decode_bytes(s: str) -> bytes:
    """Decode a hex or base64/base64url string."""
    s = str(s or "").strip()
    if not s:
        raise ValueError("empty string")
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    try:
        padding = "=" * (-len(s) % 4)
        return base64.b64decode((s + padding).replace("-", "+").replace("_", "/"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("not hex or base64") from e


def normalize_pubkey(pubkey: Any) -> str:
    """Canonical lowercase-hex form of an Ed25519 public key; raises ValueError."""
    if not isinstance(pubkey, str):
        raise ValueError("pubkey must be a string")
    raw = _decode_bytes(pubkey)
    Ed25519PublicKey.from_public_bytes(raw)
    return raw.hex()


def is_valid_pubkey(pubkey: Any) -> bool:
    try:
        normalize_pubkey(pubkey)
    except ValueError:
        return False
    return True


def canonical_tx_message(*, tx_type: str, signer: str, nonce: int, payload: Json) -> bytes:
    """Bytes an envelope signature covers: sorted-key compact JSON of the envelope fields."""
    obj: Json = {
        "tx_type": str(tx_type or "").strip().upper(),
        "signer": str(signer or "").strip(),
        "nonce": int(nonce or 0),
        "payload": payload if isinstance(payload, dict) else {},
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        key = Ed25519PublicKey.from_public_bytes(_decode_bytes(pubkey))
        key.verify(_decode_bytes(sig), message)
        return True
    except (InvalidSignature, ValueError):
        return False


def _private_key(privkey: str) -> Ed25519PrivateKey:
    raw = _decode_bytes(privkey)
    # 64-byte expanded keys carry the seed first
    if len(raw) == 64:
        raw = raw[:32]
    if len(raw) != 32:
        raise ValueError("ed25519 privkey must be a 32-byte seed (or 64-byte expanded key)")
    return Ed25519PrivateKey.from_private_bytes(raw)


def sign_ed25519(*, message: bytes, privkey: str) -> str:
    """Sign `message`; returns the signature as hex."""
    return _private_key(privkey).sign(message).hex()


def public_key_hex(privkey: str) -> str:
    return _private_key(privkey).public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def sign_tx_envelope_dict(*, tx: Json, privkey: str) -> Json:
    """Return a copy of `tx` with its `sig` field set.

    Clients build the envelope (tx_type, signer, nonce, payload), sign it with
    one of the signer's registered keys and submit the result to POST /v1/tx.
    """
    payload = tx.get("payload") if isinstance(tx.get("payload"), dict) else {}
    msg = canonical_tx_message(
        tx_type=str(tx.get("tx_type") or ""),
        signer=str(tx.get("signer") or ""),
        nonce=int(tx.get("nonce") or 0),
        payload=payload,
    )
    out = dict(tx)
    out["payload"] = payload
    out["sig"] = sign_ed25519(message=msg, privkey=privkey)
    return out


__all__ = [
    "canonical_tx_message",
    "is_valid_pubkey",
    "normalize_pubkey",
    "public_key_hex",
    "sign_ed25519",
    "sign_tx_envelope_dict",
    "verify_ed25519_signature",
]
