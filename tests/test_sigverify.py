from __future__ import annotations

from typing import Any, Dict

from veledger.crypto.sig import public_key_hex, sign_tx_envelope_dict
from veledger.runtime.executor import LedgerExecutor
from veledger.runtime.protocol_config import ProtocolConfig

Json = Dict[str, Any]

GENESIS = 1_000
OPS_SEED = "01" * 32
ALICE_SEED = "02" * 32
ALICE_SEED_2 = "04" * 32
MALLORY_SEED = "03" * 32

SIGNED_PROTOCOL = ProtocolConfig(
    genesis_time=GENESIS,
    epoch_seconds=100,
    max_lock_epochs=10,
    min_lock_amount=1_000,
    operators=("ops",),
    account_keys=(("ops", public_key_hex(OPS_SEED)),),
)


def _env(tx_type: str, signer: str, nonce: int, **payload) -> Json:
    return {"tx_type": tx_type, "signer": signer, "nonce": nonce, "payload": payload}


def _signed(seed: str, tx_type: str, signer: str, nonce: int, **payload) -> Json:
    return sign_tx_envelope_dict(tx=_env(tx_type, signer, nonce, **payload), privkey=seed)


def _reason(out: Json) -> str:
    assert out["ok"] is False, out
    return out["error"]["reason"]


def _executor() -> LedgerExecutor:
    return LedgerExecutor(protocol=SIGNED_PROTOCOL)


def _mint(account: str, amount: int, nonce: int) -> Json:
    return _signed(OPS_SEED, "BALANCE_MINT", "ops", nonce, account=account, asset="REWARD", amount=amount)


def test_genesis_installs_operator_key() -> None:
    ex = _executor()
    keys = ex.read_state()["accounts"]["ops"]["keys"]
    assert keys == [{"pubkey": public_key_hex(OPS_SEED), "active": True}]
    assert ex.read_state()["params"]["require_signatures"] is True


def test_unsigned_operator_tx_is_refused() -> None:
    ex = _executor()

    out = ex.submit_tx(_env("BALANCE_MINT", "ops", 1, account="mallory", asset="REWARD", amount=10**30))
    assert out["error"]["code"] == "forbidden"
    assert _reason(out) == "missing_signature"

    # unsequenced envelopes could be replayed, so they are never admitted signed
    out = ex.submit_tx(_signed(OPS_SEED, "BALANCE_MINT", "ops", 0, account="mallory", asset="REWARD", amount=1))
    assert _reason(out) == "nonce_required"

    assert ex.view().balance("mallory", "REWARD") == 0
    assert ex.read_state()["seq"] == 0


def test_signature_must_come_from_the_signers_key() -> None:
    ex = _executor()

    forged = _signed(MALLORY_SEED, "BALANCE_MINT", "ops", 1, account="mallory", asset="REWARD", amount=10**30)
    assert _reason(ex.submit_tx(forged)) == "invalid_signature"

    tampered = _mint("alice", 5, 1)
    tampered["payload"]["account"] = "mallory"
    assert _reason(ex.submit_tx(tampered)) == "invalid_signature"

    out = ex.submit_tx(_mint("alice", 5, 1))
    assert out["ok"] is True, out
    assert ex.view().balance("alice", "REWARD") == 5
    assert ex.view().balance("mallory", "REWARD") == 0


def test_signed_envelope_cannot_be_replayed() -> None:
    ex = _executor()
    env = _mint("alice", 5, 1)
    assert ex.submit_tx(env)["ok"] is True
    out = ex.submit_tx(env)
    assert out["error"]["code"] == "conflict"
    assert _reason(out) == "nonce_replay"
    assert ex.view().balance("alice", "REWARD") == 5


def test_first_key_is_admitted_on_proof_of_possession() -> None:
    ex = _executor()
    alice_pk = public_key_hex(ALICE_SEED)

    # signed by a key other than the one being added
    out = ex.submit_tx(_signed(MALLORY_SEED, "ACCOUNT_KEY_ADD", "alice", 1, pubkey=alice_pk))
    assert _reason(out) == "invalid_signature"

    out = ex.submit_tx(_signed(ALICE_SEED, "ACCOUNT_KEY_ADD", "alice", 1, pubkey=alice_pk))
    assert out["ok"] is True, out
    assert out["receipt"]["active_keys"] == 1

    # once alice has a key, nobody else can attach one to her account
    mallory_pk = public_key_hex(MALLORY_SEED)
    out = ex.submit_tx(_signed(MALLORY_SEED, "ACCOUNT_KEY_ADD", "alice", 2, pubkey=mallory_pk))
    assert _reason(out) == "invalid_signature"

    out = ex.submit_tx(_signed(ALICE_SEED, "DELEGATE_REGISTER", "alice", 2, fee_bps=1_000))
    assert out["ok"] is True, out


def test_operators_and_reserved_accounts_cannot_bootstrap_keys() -> None:
    ex = _executor()
    out = ex.submit_tx(_signed(OPS_SEED, "PARAMS_SET", "ops", 1, params={"operators": ["ops", "ops2"]}))
    assert out["ok"] is True, out

    pk = public_key_hex(MALLORY_SEED)
    out = ex.submit_tx(_signed(MALLORY_SEED, "ACCOUNT_KEY_ADD", "ops2", 1, pubkey=pk))
    assert _reason(out) == "no_active_keys"

    for reserved in ("VAULT", "SYSTEM"):
        out = ex.submit_tx(_signed(MALLORY_SEED, "ACCOUNT_KEY_ADD", reserved, 1, pubkey=pk))
        assert _reason(out) == "no_active_keys"


def test_key_rotation_and_revocation() -> None:
    ex = _executor()
    first, second = public_key_hex(ALICE_SEED), public_key_hex(ALICE_SEED_2)
    assert ex.submit_tx(_signed(ALICE_SEED, "ACCOUNT_KEY_ADD", "alice", 1, pubkey=first))["ok"] is True
    assert ex.submit_tx(_signed(ALICE_SEED, "ACCOUNT_KEY_ADD", "alice", 2, pubkey=second))["ok"] is True

    out = ex.submit_tx(_signed(ALICE_SEED_2, "ACCOUNT_KEY_REVOKE", "alice", 3, pubkey=first))
    assert out["ok"] is True, out
    assert out["receipt"]["active_keys"] == 1

    out = ex.submit_tx(_signed(ALICE_SEED, "DELEGATE_REGISTER", "alice", 4, fee_bps=1_000))
    assert _reason(out) == "invalid_signature"

    out = ex.submit_tx(_signed(ALICE_SEED_2, "ACCOUNT_KEY_REVOKE", "alice", 4, pubkey=second))
    assert out["error"]["code"] == "invalid_state"
    assert _reason(out) == "last_active_key"


def test_bad_pubkey_is_rejected() -> None:
    ex = LedgerExecutor(
        protocol=ProtocolConfig(
            genesis_time=GENESIS, epoch_seconds=100, max_lock_epochs=10, min_lock_amount=1_000, require_signatures=False
        )
    )
    out = ex.submit_tx(_env("ACCOUNT_KEY_ADD", "alice", 0, pubkey="abcd"))
    assert _reason(out) == "bad_pubkey"
