# src/veledger/runtime/executor_boot.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from veledger.runtime.executor import LedgerExecutor, wall_clock
from veledger.runtime.protocol_config import ProtocolConfig, load_node_config, load_protocol_config


@dataclass
class ExecutorBootConfig:
    db_path: Optional[str]
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    use_wall_clock: bool = True


def boot_config_from_env() -> ExecutorBootConfig:
    node = load_node_config()
    return ExecutorBootConfig(db_path=node.db_path, protocol=load_protocol_config())


def build_executor(cfg: Optional[ExecutorBootConfig] = None) -> LedgerExecutor:
    """
    Build a LedgerExecutor from an explicit boot config or, if omitted,
    from environment variables.

    `veledger.api.app` calls this with no args in production.
    """
    c = cfg or boot_config_from_env()
    return LedgerExecutor(
        db_path=c.db_path,
        protocol=c.protocol,
        clock=wall_clock if c.use_wall_clock else None,
    )


__all__ = ["ExecutorBootConfig", "boot_config_from_env", "build_executor"]
