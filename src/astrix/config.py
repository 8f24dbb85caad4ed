"""
SDK configuration.

Values are opaque constructor inputs for the core; ``from_env`` reads them
from the process environment after loading ~/.astrix/.env.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .anamnesis.cache import DEFAULT_TTL_SECONDS
from .errors import ChainConnectionError
from .operations import ZERO_ADDRESS
from .sigil.eth import ASTRIX_ENV

DEFAULT_RPC_URL = "http://127.0.0.1:8545"
DEFAULT_CHAIN_ID = 31337  # Hardhat / local development

_CONTRACT_ENV_RE = re.compile(r"^ASTRIX_([A-Z0-9_]+)_ADDRESS$")
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class SdkConfig:
    rpc_url: str = DEFAULT_RPC_URL
    chain_id: int = DEFAULT_CHAIN_ID
    contracts: Mapping[str, str] = field(default_factory=dict)
    cache_ttl: float = DEFAULT_TTL_SECONDS
    cache_disabled: bool = False
    default_block_based: bool = False
    tx_timeout: float = 120.0
    poll_interval: float = 2.0
    block_poll_interval: float = 4.0
    request_timeout: float = 30.0
    verbose: bool = False

    @classmethod
    def from_env(
        cls,
        env_path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "SdkConfig":
        """
        Build a config from ``ASTRIX_*`` environment variables.

        Contract addresses come from ``ASTRIX_<NAME>_ADDRESS``; ``NAME`` is
        lower-cased (``ASTRIX_TRIBE_CONTROLLER_ADDRESS`` becomes ``tribe_controller``).
        """
        if environ is None:
            env_path = env_path or ASTRIX_ENV
            if env_path.exists():
                load_dotenv(env_path, override=False)
            environ = os.environ

        contracts = {}
        for key, value in environ.items():
            match = _CONTRACT_ENV_RE.match(key)
            if match:
                contracts[match.group(1).lower()] = value

        return cls(
            rpc_url=environ.get("ASTRIX_RPC_URL", DEFAULT_RPC_URL),
            chain_id=int(environ.get("ASTRIX_CHAIN_ID", str(DEFAULT_CHAIN_ID))),
            contracts=contracts,
            cache_ttl=float(environ.get("ASTRIX_CACHE_TTL", str(DEFAULT_TTL_SECONDS))),
            cache_disabled=_flag(environ.get("ASTRIX_CACHE_DISABLED")),
            default_block_based=_flag(environ.get("ASTRIX_CACHE_BLOCK_BASED")),
            tx_timeout=float(environ.get("ASTRIX_TX_TIMEOUT", "120")),
            poll_interval=float(environ.get("ASTRIX_POLL_INTERVAL", "2")),
            block_poll_interval=float(environ.get("ASTRIX_BLOCK_POLL_INTERVAL", "4")),
            verbose=_flag(environ.get("ASTRIX_VERBOSE")),
        )

    def contract_address(self, name: str) -> str:
        address = self.contracts.get(name)
        if not address or address.lower() == ZERO_ADDRESS:
            raise ChainConnectionError(f"Contract address not configured for {name}")
        return address


def _flag(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in _TRUTHY
