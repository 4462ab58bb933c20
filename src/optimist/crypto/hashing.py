"""Hash primitives shared by every tree and leaf encoding.

All hashing is Keccak-256 over ABI-encoded values so that a ledger
contract recomputing the same leaf (``keccak256(abi.encode(...))``)
arrives at the same bytes. Hashes are raw 32-byte ``bytes`` values
throughout the core; hex is only used at the edges (CLI, JSON).
"""

from __future__ import annotations

from typing import Sequence

from eth_abi import encode
from eth_utils import keccak, to_bytes, to_hex

HASH_LENGTH = 32

# keccak256(abi.encode(uint256(0))), the empty leaf of every tree.
ZERO_BYTES32 = keccak(b"\x00" * HASH_LENGTH)


def hash_bytes(data: bytes) -> bytes:
    """Keccak-256 of raw bytes."""
    return keccak(data)


def hash_pair(left: bytes, right: bytes) -> bytes:
    """Hash two child nodes into their parent."""
    if len(left) != HASH_LENGTH or len(right) != HASH_LENGTH:
        raise ValueError("Merkle nodes must be 32 bytes")
    return keccak(left + right)


def hash_abi(types: Sequence[str], values: Sequence[object]) -> bytes:
    """Keccak-256 of the ABI encoding of ``values`` under ``types``."""
    return keccak(encode(list(types), list(values)))


def hash_uints(*values: int) -> bytes:
    """Keccak-256 of a tuple of ``uint256`` values (``abi.encode``)."""
    return hash_abi(["uint256"] * len(values), values)


def to_hash(value: str | bytes) -> bytes:
    """Normalise a hex string or raw bytes into a 32-byte hash."""
    raw = to_bytes(hexstr=value) if isinstance(value, str) else bytes(value)
    if len(raw) != HASH_LENGTH:
        raise ValueError(f"Expected {HASH_LENGTH} bytes, got {len(raw)}")
    return raw


def hex_hash(value: bytes) -> str:
    """Render a hash as a 0x-prefixed hex string."""
    return to_hex(value)
