from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from veledger.ledger.state import LedgerView
from veledger.runtime.domain_apply import ApplyError, apply_tx_atomic
from veledger.runtime.genesis import genesis_state
from veledger.runtime.protocol_config import ProtocolConfig
from veledger.runtime.runtime_logging import log_event
from veledger.runtime.sigverify import check_tx_signature
from veledger.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from veledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]
Clock = Callable[[], int]

log = logging.getLogger("veledger.executor")


def wall_clock() -> int:
    return int(time.time())


class ExecutorError(RuntimeError):
    pass


class LedgerExecutor:
    """Serialized ledger executor.

    Every submission runs to completion (commit or total rollback) behind one
    lock before the next starts. With a db_path the snapshot and the receipt
    of each applied tx are persisted in one SQLite write transaction; without
    one the executor is purely in-memory.

    `clock` (unix seconds) moves state["time"] forward before each submission.
    Without a clock, time only moves through set_time()/advance_time().

    Each envelope passes signature admission (sigverify) before it is applied.
    """

    def __init__(
        self,
        *,
        db_path: Optional[str] = None,
        protocol: Optional[ProtocolConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self.db_path = str(db_path) if db_path else None

        self._store: Optional[SqliteLedgerStore] = None
        if self.db_path:
            self._store = SqliteLedgerStore(db=SqliteDB(path=self.db_path))

        if self._store is not None and self._store.exists():
            self.state: Json = self._store.read()
            log_event(log, "executor_loaded", db_path=self.db_path, seq=int(self.state.get("seq", 0)))
        else:
            self.state = genesis_state(protocol or ProtocolConfig())
            if self._store is not None:
                self._store.write(self.state)
            log_event(log, "executor_genesis", db_path=self.db_path, genesis_time=int(self.state["time"]))

        if protocol is not None:
            have = int(self.state.get("params", {}).get("genesis_time", 0))
            if have != int(protocol.genesis_time):
                raise ExecutorError(
                    f"genesis_time mismatch: db={have} config={protocol.genesis_time}. Refuse to start."
                )

    # ----------------------------
    # Public accessors
    # ----------------------------

    def read_state(self) -> Json:
        with self._lock:
            return copy.deepcopy(self.state)

    def view(self) -> LedgerView:
        return LedgerView.from_ledger(self.read_state())

    def receipts(self, *, limit: int = 50, signer: Optional[str] = None) -> List[Json]:
        if self._store is None:
            return []
        return self._store.receipts(limit=limit, signer=signer)

    # ----------------------------
    # Clock
    # ----------------------------

    def _move_time(self, ts: int) -> bool:
        cur = int(self.state.get("time", 0))
        if int(ts) < cur:
            raise ExecutorError(f"time cannot move backwards: {ts} < {cur}")
        if int(ts) == cur:
            return False
        self.state["time"] = int(ts)
        return True

    def set_time(self, ts: int) -> int:
        with self._lock:
            if self._move_time(ts) and self._store is not None:
                self._store.write(self.state)
            return int(self.state["time"])

    def advance_time(self, seconds: int) -> int:
        with self._lock:
            target = int(self.state.get("time", 0)) + max(0, int(seconds))
            if self._move_time(target) and self._store is not None:
                self._store.write(self.state)
            return target

    # ----------------------------
    # Tx submission
    # ----------------------------

    def submit_tx(self, env: Any) -> Json:
        if isinstance(env, dict):
            env = TxEnvelope.from_json(env)
        if not isinstance(env, TxEnvelope):
            return {"ok": False, "error": {"code": "invalid_tx", "reason": "bad_env:not_object", "details": None}}

        with self._lock:
            if self._clock is not None:
                now = int(self._clock())
                if now > int(self.state.get("time", 0)):
                    self.state["time"] = now

            try:
                check_tx_signature(self.state, env)
                receipt = apply_tx_atomic(self.state, env)
            except ApplyError as e:
                log_event(
                    log,
                    "tx_rejected",
                    tx_type=env.tx_type,
                    signer=env.signer,
                    code=e.code,
                    reason=e.reason,
                )
                return {"ok": False, "error": {"code": e.code, "reason": e.reason, "details": e.details}}

            self.state["seq"] = int(self.state.get("seq", 0)) + 1
            receipt = dict(receipt or {})
            if self._store is not None:
                self._store.write(self.state, envelope=env.to_json(), receipt=receipt)

            log_event(log, "tx_applied", tx_type=env.tx_type, signer=env.signer, seq=int(self.state["seq"]))
            return {"ok": True, "seq": int(self.state["seq"]), "receipt": receipt}
