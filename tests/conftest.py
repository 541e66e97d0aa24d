from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

# Ensure local "src/" takes precedence over any globally-installed "veledger" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from veledger.runtime import accumulator as acc  # noqa: E402
from veledger.runtime.domain_apply import apply_tx_atomic  # noqa: E402
from veledger.runtime.genesis import genesis_state  # noqa: E402
from veledger.runtime.protocol_config import ProtocolConfig  # noqa: E402

Json = Dict[str, Any]

GENESIS = 1_000
EPOCH = 100

# max lock = 10 epochs = 1000s, so slope = principal // 1000
TEST_PROTOCOL = ProtocolConfig(
    genesis_time=GENESIS,
    epoch_seconds=EPOCH,
    max_lock_epochs=10,
    min_lock_amount=1_000,
    operators=("ops",),
    # apply-level tests bypass executor admission, so no keys are needed
    require_signatures=False,
)


class Ledger:
    """Small driver around a genesis state for apply-level tests."""

    def __init__(self, cfg: ProtocolConfig = TEST_PROTOCOL) -> None:
        self.state: Json = genesis_state(cfg)
        self.at_epoch(0)

    # clock
    def at_epoch(self, n: int, offset: int = 50) -> None:
        self.state["time"] = GENESIS + n * EPOCH + offset

    def start(self, n: int) -> int:
        return GENESIS + n * EPOCH

    @property
    def epoch(self) -> int:
        return (int(self.state["time"]) - GENESIS) // EPOCH

    # txs
    def tx(self, tx_type: str, signer: str, **payload: Any) -> Json:
        return apply_tx_atomic(self.state, {"tx_type": tx_type, "signer": signer, "payload": payload})

    def fund(self, account: str, amount: int, asset: str = "VOTE") -> None:
        self.tx("BALANCE_MINT", "ops", account=account, asset=asset, amount=amount)

    def lock(self, owner: str, amount: int, expiry_epoch: int) -> str:
        self.fund(owner, amount)
        out = self.tx("LOCK_CREATE", owner, amounts={"VOTE": amount}, expiry=self.start(expiry_epoch))
        return out["lock_id"]

    def pool(self, pool_id: str) -> None:
        self.tx("POOL_CREATE", "ops", pool_id=pool_id)

    # views
    def power(self, account: str, epoch: Optional[int] = None, role: str = "personal") -> int:
        e = self.epoch if epoch is None else epoch
        return acc.value_at_epoch_end(self.state, acc.ledger_key(role, account), e)

    def pair_power(self, delegator: str, delegate: str, epoch: int) -> int:
        return acc.value_at_epoch_end(self.state, acc.pair_key(delegator, delegate), epoch)

    def balance(self, account: str, asset: str = "REWARD") -> int:
        return int(self.state["accounts"].get(account, {}).get("balances", {}).get(asset, 0))

    def epoch_rec(self, epoch: int) -> Json:
        return self.state["epochs"][str(epoch)]


@pytest.fixture
def ledger() -> Ledger:
    return Ledger()
