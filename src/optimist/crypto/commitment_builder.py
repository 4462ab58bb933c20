"""Commitment builder — assembles batch commitments and their tree.

One ledger submission may carry several batches. Each batch becomes a
Commitment; the commitments are the leaves of a small Merkle tree whose
root is what the ledger anchors. A disputer later proves which
commitment it is challenging with that tree's witness.

The builder is deterministic: given the same batches in the same order,
it produces the same commitments, leaf hashes and root.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from optimist.crypto.hashing import hash_bytes
from optimist.crypto.merkle import MerkleTree, Witness, verify_witness
from optimist.models.commitment import BatchType, Commitment, MassMigrationMeta
from optimist.models.transaction import Transaction, encode_batch


def build_commitment(
    batch_type: BatchType,
    txs: Sequence[Transaction],
    state_root: bytes,
    account_root: bytes,
    signature: tuple[int, int],
    mass_migration: Optional[MassMigrationMeta] = None,
) -> Commitment:
    """Summarise applied transactions as a Commitment."""
    return Commitment(
        state_root=state_root,
        account_root=account_root,
        tx_hash_commitment=hash_bytes(encode_batch(list(txs))),
        signature=signature,
        batch_type=batch_type,
        mass_migration=mass_migration,
    )


@dataclass(frozen=True)
class CommitmentTree:
    """Commitments of one submission and the tree over their leaf hashes."""
    commitments: tuple[Commitment, ...]
    tree: MerkleTree

    @property
    def root(self) -> bytes:
        return self.tree.root

    def witness(self, position: int) -> Witness:
        return self.tree.witness(position)


class CommitmentBuilder:
    """Collects the batches of one ledger submission.

    Usage:
        builder = CommitmentBuilder()
        position = builder.add_batch(
            BatchType.TRANSFER,
            txs,
            state_root=post_root,
            account_root=registry.root(),
            signature=aggregate_signature,
        )
        tree = builder.build()
        proof = tree.witness(position)
    """

    def __init__(self) -> None:
        self._commitments: list[Commitment] = []
        self._built = False

    def add_commitment(self, commitment: Commitment) -> int:
        """Add a ready-made commitment. Returns its position in the tree."""
        if self._built:
            raise RuntimeError("Tree already built. Create a new builder.")
        self._commitments.append(commitment)
        return len(self._commitments) - 1

    def add_batch(
        self,
        batch_type: BatchType,
        txs: Sequence[Transaction],
        state_root: bytes,
        account_root: bytes,
        signature: tuple[int, int],
        mass_migration: Optional[MassMigrationMeta] = None,
    ) -> int:
        """Build a commitment from applied transactions and add it."""
        return self.add_commitment(
            build_commitment(batch_type, txs, state_root, account_root, signature, mass_migration)
        )

    @property
    def commitment_count(self) -> int:
        return len(self._commitments)

    def build(self) -> CommitmentTree:
        """Merklise the commitments (depth at least 1, zero padded)."""
        if not self._commitments:
            raise RuntimeError("No commitments to build a tree from")
        self._built = True
        leaves = [c.leaf_hash() for c in self._commitments]
        return CommitmentTree(commitments=tuple(self._commitments), tree=MerkleTree.merklise(leaves))


def verify_commitment_inclusion(
    commitment_root: bytes,
    commitment: Commitment,
    position: int,
    siblings: Sequence[bytes],
) -> bool:
    """True when ``commitment`` sits at ``position`` under ``commitment_root``."""
    return verify_witness(commitment.leaf_hash(), position, siblings, commitment_root)
