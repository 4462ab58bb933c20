"""Batch commitment model.

A commitment is the compact summary of one batch that the ledger
stores. Its leaf hash must match the ledger's own derivation bit for
bit, so the encodings below are a versioned contract:

    generic (v1):
        keccak(abi.encode(bytes32 stateRoot, bytes32 accountRoot,
                          bytes32 txHashCommitment, uint256[2] signature,
                          uint8 batchType))
    mass migration (v1):
        keccak(abi.encode(bytes32 stateRoot, bytes32 accountRoot,
                          bytes32 txHashCommitment, uint256 tokenID,
                          uint256 amount, bytes32 withdrawRoot,
                          uint256 targetSpokeID, uint256[2] signature,
                          uint8 batchType))

The record is immutable once constructed and holds no timestamps or
other hidden inputs; the same record always hashes the same.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional

from optimist.crypto.hashing import hash_abi, hex_hash, to_hash

COMMITMENT_ENCODING_VERSION = 1


class BatchType(int, enum.Enum):
    """Batch discriminant as stored by the ledger. 4 is reserved."""
    GENESIS = 0
    TRANSFER = 1
    MASS_MIGRATION = 2
    CREATE_TRANSFER = 3
    BURN_CONSENT = 5
    BURN_EXECUTE = 6


@dataclass(frozen=True)
class MassMigrationMeta:
    """What a mass migration batch exports to its destination spoke."""
    token_id: int
    amount: int
    withdraw_root: bytes
    target_spoke_id: int


@dataclass(frozen=True)
class Commitment:
    """Summary of one batch. ``state_root`` is the post-batch root."""
    state_root: bytes
    account_root: bytes
    tx_hash_commitment: bytes
    signature: tuple[int, int]
    batch_type: BatchType
    mass_migration: Optional[MassMigrationMeta] = None

    def __post_init__(self) -> None:
        if (self.batch_type == BatchType.MASS_MIGRATION) != (self.mass_migration is not None):
            raise ValueError("mass migration metadata goes with mass migration batches only")

    def canonical_fields(self) -> tuple[list[str], list[Any]]:
        """Return ABI types and values in canonical order for hashing."""
        if self.mass_migration is not None:
            meta = self.mass_migration
            return (
                ["bytes32", "bytes32", "bytes32", "uint256", "uint256",
                 "bytes32", "uint256", "uint256[2]", "uint8"],
                [self.state_root, self.account_root, self.tx_hash_commitment,
                 meta.token_id, meta.amount, meta.withdraw_root,
                 meta.target_spoke_id, list(self.signature), int(self.batch_type)],
            )
        return (
            ["bytes32", "bytes32", "bytes32", "uint256[2]", "uint8"],
            [self.state_root, self.account_root, self.tx_hash_commitment,
             list(self.signature), int(self.batch_type)],
        )

    def leaf_hash(self) -> bytes:
        types, values = self.canonical_fields()
        return hash_abi(types, values)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "state_root": hex_hash(self.state_root),
            "account_root": hex_hash(self.account_root),
            "tx_hash_commitment": hex_hash(self.tx_hash_commitment),
            "signature": [str(w) for w in self.signature],
            "batch_type": self.batch_type.name,
        }
        if self.mass_migration is not None:
            data["mass_migration"] = {
                "token_id": self.mass_migration.token_id,
                "amount": self.mass_migration.amount,
                "withdraw_root": hex_hash(self.mass_migration.withdraw_root),
                "target_spoke_id": self.mass_migration.target_spoke_id,
            }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Commitment":
        meta = data.get("mass_migration")
        return cls(
            state_root=to_hash(data["state_root"]),
            account_root=to_hash(data["account_root"]),
            tx_hash_commitment=to_hash(data["tx_hash_commitment"]),
            signature=(int(data["signature"][0]), int(data["signature"][1])),
            batch_type=BatchType[data["batch_type"]],
            mass_migration=None if meta is None else MassMigrationMeta(
                token_id=int(meta["token_id"]),
                amount=int(meta["amount"]),
                withdraw_root=to_hash(meta["withdraw_root"]),
                target_spoke_id=int(meta["target_spoke_id"]),
            ),
        )
