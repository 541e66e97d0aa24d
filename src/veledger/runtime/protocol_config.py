# src/veledger/runtime/protocol_config.py
from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from veledger.crypto.sig import is_valid_pubkey
from veledger.ledger.constants import (
    EPOCH_SECONDS,
    FEE_DENOMINATOR,
    FEE_INCREASE_DELAY_EPOCHS,
    LOCK_ASSETS,
    MAX_DELEGATE_FEE_BPS,
    MAX_LOCK_EPOCHS,
    MIN_LOCK_AMOUNT,
    RESERVED_ACCOUNT_IDS,
    REWARD_ASSET,
    SWEEP_DELAY_EPOCHS,
)

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_list(v: Any, default: List[str]) -> List[str]:
    if v is None:
        return list(default)
    if isinstance(v, str):
        return [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(v, (list, tuple)):
        return [str(x).strip() for x in v if str(x).strip()]
    return list(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, str):
        s = v.strip().lower()
        if s in {"1", "true", "yes", "on"}:
            return True
        if s in {"0", "false", "no", "off"}:
            return False
        return bool(default)
    return bool(v)


def _as_keys(v: Any, default: Tuple[Tuple[str, str], ...]) -> Tuple[Tuple[str, str], ...]:
    """Account keys from a mapping, `[[account, pubkey], ...]` or "a=pk,b=pk"."""
    if v is None:
        return tuple(default)
    if isinstance(v, str):
        v = [p.split("=", 1) for p in v.split(",") if "=" in p]
    items = v.items() if isinstance(v, dict) else v
    if not isinstance(items, (list, tuple)) and not isinstance(v, dict):
        raise ValueError("account_keys must map account ids to pubkeys")
    out = []
    for pair in items:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValueError(f"bad account_keys entry: {pair!r}")
        out.append((str(pair[0]).strip(), str(pair[1]).strip()))
    return tuple(out)


@dataclass(frozen=True)
class ProtocolConfig:
    genesis_time: int = 0
    epoch_seconds: int = EPOCH_SECONDS
    max_lock_epochs: int = MAX_LOCK_EPOCHS
    min_lock_amount: int = MIN_LOCK_AMOUNT
    fee_increase_delay_epochs: int = FEE_INCREASE_DELAY_EPOCHS
    max_delegate_fee_bps: int = MAX_DELEGATE_FEE_BPS
    sweep_delay_epochs: int = SWEEP_DELAY_EPOCHS
    lock_assets: Tuple[str, ...] = LOCK_ASSETS
    reward_asset: str = REWARD_ASSET
    operators: Tuple[str, ...] = field(default_factory=tuple)
    require_signatures: bool = True
    # genesis signing keys; they live in state["accounts"], not in params
    account_keys: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def to_params(self) -> Json:
        d = asdict(self)
        d.pop("account_keys")
        d["lock_assets"] = list(self.lock_assets)
        d["operators"] = list(self.operators)
        return d


@dataclass(frozen=True)
class NodeConfig:
    db_path: str = "./data/veledger.db"
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    log_level: str = "INFO"


def validate_protocol_params(cfg: ProtocolConfig) -> None:
    """Bounds on the tunable params; also checked for every PARAMS_SET."""

    if int(cfg.genesis_time) < 0:
        raise ValueError(f"genesis_time must be >= 0; got: {cfg.genesis_time}")

    if int(cfg.epoch_seconds) <= 0:
        raise ValueError(f"epoch_seconds must be > 0; got: {cfg.epoch_seconds}")

    if int(cfg.max_lock_epochs) < 3:
        # Delegation needs the lock to outlive current+3.
        raise ValueError(f"max_lock_epochs must be >= 3; got: {cfg.max_lock_epochs}")

    max_lock_seconds = int(cfg.max_lock_epochs) * int(cfg.epoch_seconds)
    if int(cfg.min_lock_amount) < max_lock_seconds:
        raise ValueError(
            f"min_lock_amount must be >= max lock duration in seconds ({max_lock_seconds}) "
            f"or every lock slope floors to zero; got: {cfg.min_lock_amount}"
        )

    if int(cfg.fee_increase_delay_epochs) < 0:
        raise ValueError(f"fee_increase_delay_epochs must be >= 0; got: {cfg.fee_increase_delay_epochs}")

    if int(cfg.max_delegate_fee_bps) <= 0 or int(cfg.max_delegate_fee_bps) > FEE_DENOMINATOR:
        raise ValueError(f"max_delegate_fee_bps must be 1..{FEE_DENOMINATOR}; got: {cfg.max_delegate_fee_bps}")

    if int(cfg.sweep_delay_epochs) < 0:
        raise ValueError(f"sweep_delay_epochs must be >= 0; got: {cfg.sweep_delay_epochs}")

    if not cfg.lock_assets:
        raise ValueError("lock_assets must name at least one asset")

    if cfg.reward_asset in cfg.lock_assets:
        raise ValueError(f"reward_asset must differ from lock_assets; got: {cfg.reward_asset!r}")


def validate_protocol_config(cfg: ProtocolConfig) -> None:
    """Fail-fast validation for a genesis protocol config."""
    validate_protocol_params(cfg)

    seen = set()
    for account, pubkey in cfg.account_keys:
        if not account or account in RESERVED_ACCOUNT_IDS:
            raise ValueError(f"account_keys cannot name {account!r}")
        if not is_valid_pubkey(pubkey):
            raise ValueError(f"account_keys[{account!r}] is not an ed25519 public key")
        seen.add(account)

    if cfg.require_signatures:
        keyless = [op for op in cfg.operators if op not in seen]
        if keyless:
            raise ValueError(f"operators need genesis account_keys when signatures are required: {keyless}")


def validate_node_config(cfg: NodeConfig) -> None:
    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")
    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")


def _from_mapping(raw: Json, base: ProtocolConfig) -> ProtocolConfig:
    return ProtocolConfig(
        genesis_time=_as_int(raw.get("genesis_time"), base.genesis_time),
        epoch_seconds=_as_int(raw.get("epoch_seconds"), base.epoch_seconds),
        max_lock_epochs=_as_int(raw.get("max_lock_epochs"), base.max_lock_epochs),
        min_lock_amount=_as_int(raw.get("min_lock_amount"), base.min_lock_amount),
        fee_increase_delay_epochs=_as_int(raw.get("fee_increase_delay_epochs"), base.fee_increase_delay_epochs),
        max_delegate_fee_bps=_as_int(raw.get("max_delegate_fee_bps"), base.max_delegate_fee_bps),
        sweep_delay_epochs=_as_int(raw.get("sweep_delay_epochs"), base.sweep_delay_epochs),
        lock_assets=tuple(_as_list(raw.get("lock_assets"), list(base.lock_assets))),
        reward_asset=_as_str(raw.get("reward_asset"), base.reward_asset),
        operators=tuple(_as_list(raw.get("operators"), list(base.operators))),
        require_signatures=_as_bool(raw.get("require_signatures"), base.require_signatures),
        account_keys=_as_keys(raw.get("account_keys"), base.account_keys),
    )


def protocol_config_from_params(params: Json) -> ProtocolConfig:
    """Rebuild a ProtocolConfig from `state["params"]` so on-ledger updates can be validated."""
    return _from_mapping(params, ProtocolConfig())


def read_protocol_config_file(path: str) -> ProtocolConfig:
    """Read a YAML or JSON protocol config file (JSON is valid YAML)."""
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("protocol config must be a mapping")
    return _from_mapping(raw, ProtocolConfig())


_ENV_FIELDS = (
    "genesis_time",
    "epoch_seconds",
    "max_lock_epochs",
    "min_lock_amount",
    "fee_increase_delay_epochs",
    "max_delegate_fee_bps",
    "sweep_delay_epochs",
    "lock_assets",
    "reward_asset",
    "operators",
    "require_signatures",
    "account_keys",
)


def _env_overlay(cfg: ProtocolConfig) -> ProtocolConfig:
    raw: Json = {}
    for name in _ENV_FIELDS:
        v = os.environ.get(f"VELEDGER_{name.upper()}")
        if v is not None and v.strip():
            raw[name] = v
    if not raw:
        return cfg
    return _from_mapping(raw, cfg)


def load_protocol_config(*, config_path: Optional[str] = None) -> ProtocolConfig:
    p = config_path or os.environ.get("VELEDGER_CONFIG_PATH")
    cfg = read_protocol_config_file(p) if p else ProtocolConfig()
    cfg = _env_overlay(cfg)
    validate_protocol_config(cfg)
    return cfg


def load_node_config() -> NodeConfig:
    d = NodeConfig()
    cfg = replace(
        d,
        db_path=_as_str(os.environ.get("VELEDGER_DB_PATH"), d.db_path),
        api_host=_as_str(os.environ.get("VELEDGER_API_HOST"), d.api_host),
        api_port=_as_int(os.environ.get("VELEDGER_API_PORT"), d.api_port),
        log_level=_as_str(os.environ.get("VELEDGER_LOG_LEVEL"), d.log_level).upper(),
    )
    validate_node_config(cfg)
    return cfg


__all__ = [
    "NodeConfig",
    "ProtocolConfig",
    "load_node_config",
    "load_protocol_config",
    "protocol_config_from_params",
    "read_protocol_config_file",
    "validate_node_config",
    "validate_protocol_config",
    "validate_protocol_params",
]
