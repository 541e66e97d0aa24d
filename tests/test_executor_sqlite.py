from __future__ import annotations

from pathlib import Path

import pytest

from veledger.runtime.executor import ExecutorError, LedgerExecutor
from veledger.runtime.protocol_config import ProtocolConfig
from veledger.runtime.sqlite_db import SqliteDB, SqliteLedgerStore, SqliteSettings

GENESIS = 1_000
TEST_PROTOCOL = ProtocolConfig(
    genesis_time=GENESIS,
    epoch_seconds=100,
    max_lock_epochs=10,
    min_lock_amount=1_000,
    operators=("ops",),
    require_signatures=False,
)


def _env(tx_type: str, signer: str, **payload) -> dict:
    return {"tx_type": tx_type, "signer": signer, "payload": payload}


def test_executor_persists_state_and_receipts(tmp_path: Path) -> None:
    db_path = str(tmp_path / "veledger.db")
    ex = LedgerExecutor(db_path=db_path, protocol=TEST_PROTOCOL)
    assert ex.read_state()["time"] == GENESIS

    out = ex.submit_tx(_env("BALANCE_MINT", "ops", account="alice", asset="VOTE", amount=100_000))
    assert out["ok"] is True
    assert out["seq"] == 1
    out = ex.submit_tx(_env("LOCK_CREATE", "alice", amounts={"VOTE": 100_000}, expiry=GENESIS + 500))
    assert out["ok"] is True
    assert out["receipt"]["lock_id"] == "1"

    reopened = LedgerExecutor(db_path=db_path, protocol=TEST_PROTOCOL)
    assert reopened.read_state() == ex.read_state()
    assert reopened.view().power("alice", epoch=0) == 40_000

    receipts = reopened.receipts(limit=10)
    assert [r["seq"] for r in receipts] == [2, 1]
    assert [r["seq"] for r in reopened.receipts(signer="alice")] == [2]


def test_rejected_tx_is_not_persisted(tmp_path: Path) -> None:
    db_path = str(tmp_path / "veledger.db")
    ex = LedgerExecutor(db_path=db_path, protocol=TEST_PROTOCOL)
    before = ex.read_state()

    out = ex.submit_tx(_env("LOCK_CREATE", "alice", amounts={"VOTE": 100_000}, expiry=GENESIS + 500))
    assert out["ok"] is False
    assert out["error"]["code"] == "insufficient_balance"

    assert ex.read_state() == before
    assert ex.receipts() == []
    assert LedgerExecutor(db_path=db_path, protocol=TEST_PROTOCOL).read_state() == before


def test_executor_clock_only_moves_forward(tmp_path: Path) -> None:
    ex = LedgerExecutor(db_path=str(tmp_path / "veledger.db"), protocol=TEST_PROTOCOL)
    assert ex.advance_time(250) == GENESIS + 250
    assert ex.view().current_epoch == 2

    with pytest.raises(ExecutorError):
        ex.set_time(GENESIS)

    reopened = LedgerExecutor(db_path=str(tmp_path / "veledger.db"), protocol=TEST_PROTOCOL)
    assert reopened.read_state()["time"] == GENESIS + 250


def test_executor_uses_injected_clock() -> None:
    ticks = iter([GENESIS + 120, GENESIS + 50])
    ex = LedgerExecutor(protocol=TEST_PROTOCOL, clock=lambda: next(ticks))

    ex.submit_tx(_env("POOL_CREATE", "ops", pool_id="p1"))
    assert ex.read_state()["time"] == GENESIS + 120

    # a clock reading behind ledger time is ignored
    ex.submit_tx(_env("POOL_CREATE", "ops", pool_id="p2"))
    assert ex.read_state()["time"] == GENESIS + 120
    assert ex.receipts() == []


def test_genesis_mismatch_refuses_to_start(tmp_path: Path) -> None:
    db_path = str(tmp_path / "veledger.db")
    LedgerExecutor(db_path=db_path, protocol=TEST_PROTOCOL)

    other = ProtocolConfig(
        genesis_time=GENESIS + 1,
        epoch_seconds=TEST_PROTOCOL.epoch_seconds,
        max_lock_epochs=TEST_PROTOCOL.max_lock_epochs,
        min_lock_amount=TEST_PROTOCOL.min_lock_amount,
    )
    with pytest.raises(ExecutorError):
        LedgerExecutor(db_path=db_path, protocol=other)


def test_sqlite_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VELEDGER_SQLITE_SYNCHRONOUS", "normal")
    monkeypatch.setenv("VELEDGER_SQLITE_WRITE_DEADLINE_MS", "10")
    s = SqliteSettings.from_env()
    assert s.synchronous == "NORMAL"
    assert s.write_deadline_ms == 250

    monkeypatch.setenv("VELEDGER_SQLITE_SYNCHRONOUS", "sometimes")
    monkeypatch.setenv("VELEDGER_SQLITE_CONNECT_TIMEOUT_MS", "soon")
    s = SqliteSettings.from_env()
    assert (s.synchronous, s.connect_timeout_ms) == ("FULL", 30_000)


def test_schema_version_mismatch_refuses_to_start(tmp_path: Path) -> None:
    db = SqliteDB(path=str(tmp_path / "veledger.db"), settings=SqliteSettings())
    SqliteLedgerStore(db=db)
    with db.write_tx() as con:
        con.execute("UPDATE meta SET value='99' WHERE key='schema_version';")

    with pytest.raises(RuntimeError):
        SqliteLedgerStore(db=db)
    with db.connection() as con:
        assert con.execute("PRAGMA journal_mode;").fetchone()[0] == "wal"
