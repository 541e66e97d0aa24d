# src/veledger/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

Json = Dict[str, Any]

SCHEMA_VERSION = 1

_SCHEMA: Tuple[str, ...] = (
    "CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT NOT NULL);",
    """
    CREATE TABLE IF NOT EXISTS ledger_state (
      id INTEGER PRIMARY KEY CHECK (id = 1),
      seq INTEGER NOT NULL,
      state_json TEXT NOT NULL,
      updated_ts_ms INTEGER NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS receipts (
      seq INTEGER PRIMARY KEY,
      tx_type TEXT NOT NULL,
      signer TEXT NOT NULL,
      envelope_json TEXT NOT NULL,
      receipt_json TEXT NOT NULL,
      created_ts_ms INTEGER NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_receipts_signer ON receipts(signer, seq);",
)

_SYNC_MODES = ("OFF", "NORMAL", "FULL", "EXTRA")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _dumps(obj: Any) -> str:
    # sorted keys keep snapshots byte-stable across runs
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_ms(name: str, default: int) -> int:
    raw = str(os.environ.get(name, "")).strip()
    if not raw:
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        return default


@dataclass(frozen=True)
class SqliteSettings:
    """Connection and write-retry knobs, read from VELEDGER_SQLITE_* env vars."""

    synchronous: str = "FULL"
    connect_timeout_ms: int = 30_000
    write_deadline_ms: int = 30_000
    backoff_base_ms: int = 5
    backoff_max_ms: int = 250

    @classmethod
    def from_env(cls) -> "SqliteSettings":
        sync = (os.environ.get("VELEDGER_SQLITE_SYNCHRONOUS") or "FULL").strip().upper()
        return cls(
            synchronous=sync if sync in _SYNC_MODES else "FULL",
            connect_timeout_ms=_env_ms("VELEDGER_SQLITE_CONNECT_TIMEOUT_MS", 30_000),
            write_deadline_ms=max(250, _env_ms("VELEDGER_SQLITE_WRITE_DEADLINE_MS", 30_000)),
            backoff_base_ms=max(1, _env_ms("VELEDGER_SQLITE_WRITE_BACKOFF_BASE_MS", 5)),
            backoff_max_ms=max(1, _env_ms("VELEDGER_SQLITE_WRITE_BACKOFF_MAX_MS", 250)),
        )

    def backoff_s(self, attempt: int) -> float:
        base = self.backoff_base_ms / 1000.0
        cap = max(base, self.backoff_max_ms / 1000.0)
        return min(cap, base * (2.0 ** min(attempt, 8))) * (0.5 + random.random())


class SqliteDB:
    """One WAL-mode SQLite file holding the ledger snapshot and receipt log.

    Connections are opened per operation and never shared across threads.
    """

    def __init__(self, *, path: str, settings: Optional[SqliteSettings] = None) -> None:
        self.path = str(path)
        self.settings = settings or SqliteSettings.from_env()

    def _connect(self) -> sqlite3.Connection:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        s = self.settings
        # autocommit mode: write_tx issues BEGIN/COMMIT itself
        con = sqlite3.connect(
            self.path, timeout=s.connect_timeout_ms / 1000.0, isolation_level=None, check_same_thread=False
        )
        con.row_factory = sqlite3.Row

        mode = str(con.execute("PRAGMA journal_mode=WAL;").fetchone()[0]).lower()
        if mode != "wal":
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")
        for pragma in (f"synchronous={s.synchronous}", "temp_store=MEMORY", f"busy_timeout={s.connect_timeout_ms}"):
            con.execute(f"PRAGMA {pragma};")
        return con

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    def _begin_immediate(self, con: sqlite3.Connection) -> None:
        # writer-lock contention is retried with jittered backoff until the deadline, then raised
        deadline = _now_ms() + self.settings.write_deadline_ms
        attempt = 0
        while True:
            try:
                con.execute("BEGIN IMMEDIATE;")
                return
            except sqlite3.OperationalError as e:
                msg = str(e).lower()
                busy = "database is locked" in msg or "database is busy" in msg
                if not busy or _now_ms() >= deadline:
                    raise
                time.sleep(self.settings.backoff_s(attempt))
                attempt += 1

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        with self.connection() as con:
            self._begin_immediate(con)
            try:
                yield con
                con.execute("COMMIT;")
            except Exception:
                con.execute("ROLLBACK;")
                raise

    def init_schema(self) -> None:
        with self.write_tx() as con:
            for ddl in _SCHEMA:
                con.execute(ddl)
            row = con.execute("SELECT value FROM meta WHERE key='schema_version';").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(SCHEMA_VERSION),))
            elif str(row["value"]) != str(SCHEMA_VERSION):
                raise RuntimeError(
                    f"sqlite schema_version mismatch: have={row['value']} want={SCHEMA_VERSION}. Refuse to start."
                )


class SqliteLedgerStore:
    """Ledger snapshot + receipt log persisted in SQLite.

    The authoritative snapshot is a single row; every applied tx appends one
    receipt row in the same write transaction as the snapshot it produced.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None

    def read(self) -> Json:
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite ledger_state is missing")
            st = json.loads(str(row["state_json"]))
            if not isinstance(st, dict):
                raise ValueError("ledger_state is not a JSON object")
            return st

    def write(self, st: Json, *, envelope: Optional[Json] = None, receipt: Optional[Json] = None) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        seq = int(st.get("seq", 0))
        now = _now_ms()
        payload = _dumps(st)
        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO ledger_state(id, seq, state_json, updated_ts_ms)
                VALUES(1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  seq=excluded.seq,
                  state_json=excluded.state_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (seq, payload, now),
            )
            if envelope is not None and receipt is not None:
                con.execute(
                    """
                    INSERT INTO receipts(seq, tx_type, signer, envelope_json, receipt_json, created_ts_ms)
                    VALUES(?, ?, ?, ?, ?, ?);
                    """,
                    (
                        seq,
                        str(envelope.get("tx_type") or ""),
                        str(envelope.get("signer") or ""),
                        _dumps(envelope),
                        _dumps(receipt),
                        now,
                    ),
                )

    def receipts(self, *, limit: int = 50, signer: Optional[str] = None) -> List[Json]:
        lim = max(1, min(int(limit), 1000))
        with self._db.connection() as con:
            if signer:
                rows = con.execute(
                    "SELECT seq, receipt_json FROM receipts WHERE signer=? ORDER BY seq DESC LIMIT ?;", (signer, lim)
                ).fetchall()
            else:
                rows = con.execute("SELECT seq, receipt_json FROM receipts ORDER BY seq DESC LIMIT ?;", (lim,)).fetchall()
        return [{"seq": int(r["seq"]), "receipt": json.loads(str(r["receipt_json"]))} for r in rows]


__all__ = ["SqliteDB", "SqliteLedgerStore", "SqliteSettings"]
