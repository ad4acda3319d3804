"""YAML configuration and protocol metadata validation.

Everything here runs at startup.  Malformed entries raise
:class:`core.errors.ConfigurationError` so the process never starts with an
adapter table it cannot trust.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from web3 import Web3

from core.errors import ConfigurationError
from core.filters import AllowBlockLists
from core.intent import AdapterInfo

# chain name -> chain id for networks the bundled metadata refers to
KNOWN_CHAIN_IDS: Dict[str, int] = {
    "ethereum": 1,
    "optimism": 10,
    "gnosis": 100,
    "base": 8453,
    "arbitrum": 42161,
    "berachain": 80094,
    "form": 478,
    "sepolia": 11155111,
    "optimismsepolia": 11155420,
    "arbitrumsepolia": 421614,
    "basesepolia": 84532,
}


class ContractEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    chain_name: str
    chain_id: Optional[int] = None

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        if not Web3.is_address(value):
            raise ValueError(f"invalid address {value!r}")
        return Web3.to_checksum_address(value)


class ProtocolMetadata(BaseModel):
    """Static per-protocol contract table."""

    model_config = ConfigDict(frozen=True)

    protocol_name: str
    solver_name: str = "UNKNOWN_SOLVER"
    adapters: List[ContractEntry] = Field(default_factory=list)
    intent_sources: List[ContractEntry] = Field(default_factory=list)

    @field_validator("protocol_name")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("protocol_name must not be empty")
        return value

    def resolved(self, chain_ids: Mapping[str, int]) -> "ProtocolMetadata":
        """Return a copy whose entries carry chain ids; unknown names raise."""

        def _fix(entries: List[ContractEntry]) -> List[ContractEntry]:
            fixed = []
            for entry in entries:
                cid = chain_ids.get(entry.chain_name)
                if cid is None:
                    raise ConfigurationError(
                        f"{self.protocol_name}: unknown chain {entry.chain_name!r} for {entry.address}"
                    )
                if entry.chain_id is not None and entry.chain_id != cid:
                    raise ConfigurationError(
                        f"{self.protocol_name}: chain id mismatch for {entry.chain_name}"
                    )
                fixed.append(entry.model_copy(update={"chain_id": cid}))
            return fixed

        return self.model_copy(
            update={"adapters": _fix(self.adapters), "intent_sources": _fix(self.intent_sources)}
        )

    def adapter_infos(self) -> List[AdapterInfo]:
        return [
            AdapterInfo(chain_id=int(e.chain_id or 0), chain_name=e.chain_name, address=e.address)
            for e in self.adapters
        ]


def validate_metadata(data: Mapping[str, Any], chain_ids: Mapping[str, int] | None = None) -> ProtocolMetadata:
    """Parse and resolve protocol metadata or raise ``ConfigurationError``."""

    try:
        meta = ProtocolMetadata.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigurationError(f"invalid protocol metadata: {exc}") from exc
    return meta.resolved(chain_ids or KNOWN_CHAIN_IDS)


class ChainConfig(BaseModel):
    name: str
    chain_id: int
    rpc_url: str
    start_block: Optional[int] = None


class SolverSettings(BaseModel):
    enabled: bool = True
    metadata: Optional[Dict[str, Any]] = None
    allow_block_lists: AllowBlockLists = Field(default_factory=AllowBlockLists)
    keep_base_rules: bool = True
    deadline_buffer: int = 0
    source_url: Optional[str] = None


class SolverConfig(BaseModel):
    private_key_env: str = "SOLVER_PRIVATE_KEY"
    db_path: str = "state/orders.db"
    poll_interval: float = 4.0
    listen_interval: float = 4.0
    refund_interval: float = 15.0
    confirmation_timeout: float = 120.0
    order_timeout: float = 180.0
    gas_margin: float = 1.2
    refund_gas_margin: float = 1.1
    metrics_port: Optional[int] = None
    chains: List[ChainConfig] = Field(default_factory=list)
    solvers: Dict[str, SolverSettings] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check(self) -> "SolverConfig":
        if self.gas_margin < 1.1 or self.refund_gas_margin < 1.1:
            raise ValueError("gas margins must leave at least 10% headroom")
        names = [c.name for c in self.chains]
        if len(set(names)) != len(names):
            raise ValueError("duplicate chain names")
        for name, settings in self.solvers.items():
            if settings.enabled and settings.metadata is not None:
                validate_metadata(settings.metadata, self.chain_ids())
        return self

    # ------------------------------------------------------------------
    def chain_ids(self) -> Dict[str, int]:
        ids = dict(KNOWN_CHAIN_IDS)
        ids.update({c.name: c.chain_id for c in self.chains})
        return ids

    def chain_names(self) -> Dict[int, str]:
        return {cid: name for name, cid in self.chain_ids().items()}

    def private_key(self) -> str:
        key = os.getenv(self.private_key_env, "")
        if not key:
            raise ConfigurationError(f"${self.private_key_env} is not set")
        return key


def load_config(path: str | Path) -> SolverConfig:
    """Load the YAML config at ``path``; env vars override a few fields."""

    try:
        raw = yaml.safe_load(Path(path).read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"cannot read config {path}: {exc}") from exc
    if os.getenv("DB_PATH"):
        raw["db_path"] = os.environ["DB_PATH"]
    try:
        return SolverConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid config {path}: {exc}") from exc
