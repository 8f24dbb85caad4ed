"""
Signing identity for state-mutating operations.

An identity is either a hex private key or a ready ``LocalAccount``. The
CLI reads the key from ~/.astrix/.env (or ``$ASTRIX_HOME/.env``) as
PRIVATE_KEY; library callers usually pass their own.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional, Union

from dotenv import dotenv_values
from eth_account import Account
from eth_account.signers.local import LocalAccount

ASTRIX_DIR = Path(os.environ.get("ASTRIX_HOME", Path.home() / ".astrix"))
ASTRIX_ENV = ASTRIX_DIR / ".env"

Identity = Union[str, LocalAccount]

_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def normalize_private_key(private_key: str) -> str:
    """
    Return ``private_key`` 0x-prefixed, or raise if it is not 32 bytes of hex.

    Raises:
        ValueError: Malformed key (the key itself is never echoed)
    """
    key = private_key.strip()
    if not key.startswith("0x"):
        key = "0x" + key
    if not _KEY_RE.match(key):
        raise ValueError("PRIVATE_KEY must be 32 bytes of hex")
    return key


def read_private_key(env_path: Optional[Path] = None) -> str:
    """
    Find the signing key: the .env file first, then the process environment.

    Args:
        env_path: Path to .env file (default: ~/.astrix/.env)

    Raises:
        ValueError: If PRIVATE_KEY is missing or malformed
    """
    env_path = env_path or ASTRIX_ENV

    private_key = None
    if env_path.exists():
        private_key = dotenv_values(env_path).get("PRIVATE_KEY")
    private_key = private_key or os.environ.get("PRIVATE_KEY")
    if not private_key:
        raise ValueError(f"PRIVATE_KEY not found. Set PRIVATE_KEY in {env_path}")
    return normalize_private_key(private_key)


def resolve_identity(identity: Identity) -> LocalAccount:
    if isinstance(identity, LocalAccount):
        return identity
    return Account.from_key(normalize_private_key(identity))


def load_identity(env_path: Optional[Path] = None) -> LocalAccount:
    return resolve_identity(read_private_key(env_path))
