"""Deployment parameters for a rollup instance.

Parameters come from a JSON file (``config/params.json`` by default) and
may be overridden per environment through ``OPTIMIST_*`` variables,
optionally loaded from a ``.env`` file:

    OPTIMIST_STATE_DEPTH=32
    OPTIMIST_REGISTRY_DEPTH=31
    OPTIMIST_DEPOSIT_SUBTREE_DEPTH=2
    OPTIMIST_MAX_TXS_PER_COMMITMENT=32
    OPTIMIST_DOMAIN=0x...   (32 bytes)

The signing domain separates deployments: a signature made for one
rollup instance never verifies on another.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from eth_utils import to_bytes, to_hex

DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config" / "params.json"

_ENV_PREFIX = "OPTIMIST_"
_INT_FIELDS = ("state_depth", "registry_depth", "deposit_subtree_depth", "max_txs_per_commitment")


@dataclass(frozen=True)
class RollupParams:
    """Fixed shape of one rollup deployment."""
    state_depth: int = 32
    registry_depth: int = 31
    deposit_subtree_depth: int = 2
    max_txs_per_commitment: int = 32
    domain: bytes = b"\x00" * 31 + b"\x01"

    def __post_init__(self) -> None:
        for name in _INT_FIELDS:
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.deposit_subtree_depth > self.state_depth:
            raise ValueError("deposit subtrees cannot be deeper than the state tree")
        if self.max_txs_per_commitment < 1:
            raise ValueError("max_txs_per_commitment must be at least 1")
        if len(self.domain) != 32:
            raise ValueError("domain must be 32 bytes")

    @property
    def deposit_subtree_size(self) -> int:
        return 1 << self.deposit_subtree_depth

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RollupParams":
        values: dict[str, Any] = {k: int(data[k]) for k in _INT_FIELDS if k in data}
        if "domain" in data:
            values["domain"] = _domain_bytes(data["domain"])
        return cls(**values)

    @classmethod
    def from_file(cls, path: Path = DEFAULT_CONFIG) -> "RollupParams":
        return cls.from_dict(json.loads(path.read_text(encoding="utf-8")))

    @classmethod
    def load(
        cls,
        path: Optional[Path] = None,
        env_file: Optional[Path] = None,
    ) -> "RollupParams":
        """File parameters (if present) overridden by the environment."""
        if env_file is not None:
            load_dotenv(env_file)
        config_path = path or DEFAULT_CONFIG
        params = cls.from_file(config_path) if config_path.exists() else cls()
        return params.with_env_overrides(os.environ)

    def with_env_overrides(self, environ: Mapping[str, str]) -> "RollupParams":
        overrides: dict[str, Any] = {}
        for name in _INT_FIELDS:
            raw = environ.get(_ENV_PREFIX + name.upper())
            if raw:
                overrides[name] = int(raw)
        raw_domain = environ.get(_ENV_PREFIX + "DOMAIN")
        if raw_domain:
            overrides["domain"] = _domain_bytes(raw_domain)
        return replace(self, **overrides) if overrides else self

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {name: getattr(self, name) for name in _INT_FIELDS}
        data["domain"] = to_hex(self.domain)
        return data


def _domain_bytes(value: str | bytes) -> bytes:
    raw = to_bytes(hexstr=value) if isinstance(value, str) else bytes(value)
    if len(raw) != 32:
        raise ValueError(f"domain must be 32 bytes, got {len(raw)}")
    return raw
