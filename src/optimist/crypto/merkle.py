"""Fixed-depth sparse Merkle tree.

Every leaf starts as ``ZERO_BYTES32``. The hash of an all-empty subtree
at each level is computed once per depth, so a tree of depth 32 costs
only the nodes that were actually written. Leaf hashes are opaque to
the tree; callers encode their own records.

Witnesses are the sibling hashes from leaf to root (``len == depth``).
Anyone holding a witness can recompute the root for a leaf, or fold a
new leaf into a new root, without the rest of the tree. That is what
lets a dispute run from proofs alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Sequence

from optimist.crypto.hashing import ZERO_BYTES32, hash_pair
from optimist.errors import IndexOutOfRange, MisalignedSubtree, StaleWitness

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def zero_hashes(depth: int) -> tuple[bytes, ...]:
    """Roots of empty subtrees for levels ``0..depth`` (leaf level first)."""
    zeros = [ZERO_BYTES32]
    for _ in range(depth):
        zeros.append(hash_pair(zeros[-1], zeros[-1]))
    return tuple(zeros)


@dataclass(frozen=True)
class Witness:
    """An inclusion proof for a single leaf.

    ``root`` is the root the witness was taken against. Verifiers must not
    trust it; it exists so a reader can tell whether the tree has moved on.
    """
    index: int
    siblings: tuple[bytes, ...]
    root: bytes

    @property
    def depth(self) -> int:
        return len(self.siblings)

    def compute_root(self, leaf: bytes) -> bytes:
        """Fold ``leaf`` up through the siblings."""
        return root_from_witness(leaf, self.index, self.siblings)

    def verify(self, leaf: bytes, root: bytes) -> bool:
        """True when ``leaf`` sits at ``index`` under ``root``."""
        return self.compute_root(leaf) == root


def root_from_witness(leaf: bytes, index: int, siblings: Sequence[bytes]) -> bytes:
    """Recompute a root from one leaf and its sibling path."""
    if index < 0 or index >= 1 << len(siblings):
        raise IndexOutOfRange(f"index {index} out of range for depth {len(siblings)}")
    node = leaf
    path = index
    for sibling in siblings:
        if path & 1:
            node = hash_pair(sibling, node)
        else:
            node = hash_pair(node, sibling)
        path >>= 1
    return node


def verify_witness(leaf: bytes, index: int, siblings: Sequence[bytes], root: bytes) -> bool:
    """True when ``leaf`` at ``index`` authenticates against ``root``."""
    return root_from_witness(leaf, index, siblings) == root


class MerkleTree:
    """A fixed-depth binary Merkle tree with sparse node storage.

    Usage:
        tree = MerkleTree(depth=4)
        tree.update_single(3, leaf_hash)
        tree.update_subtree(4, [h4, h5, h6, h7])
        witness = tree.witness(3)
        assert witness.verify(leaf_hash, tree.root)

    Single writer: callers that share a tree across threads must serialise
    mutations. Readers can compare ``witness.root`` with ``tree.root`` (see
    ``ensure_current``) to reject witnesses taken before a write.
    """

    def __init__(self, depth: int) -> None:
        if depth < 0:
            raise ValueError("depth must be non-negative")
        self._depth = depth
        self._zeros = zero_hashes(depth)
        # One dict per level, level 0 holds the leaves.
        self._nodes: list[dict[int, bytes]] = [{} for _ in range(depth + 1)]

    @classmethod
    def merklise(cls, leaves: Sequence[bytes], min_depth: int = 1) -> "MerkleTree":
        """Build the smallest tree (at least ``min_depth``) holding ``leaves``."""
        depth = min_depth
        while (1 << depth) < len(leaves):
            depth += 1
        tree = cls(depth)
        for i, leaf in enumerate(leaves):
            tree._set_leaf(i, leaf)
        tree._rehash_range(0, len(leaves), depth)
        return tree

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def capacity(self) -> int:
        return 1 << self._depth

    @property
    def root(self) -> bytes:
        return self._node(self._depth, 0)

    @property
    def zero_leaf(self) -> bytes:
        return self._zeros[0]

    def leaf(self, index: int) -> bytes:
        """Return the leaf hash at ``index`` (the zero leaf if never written)."""
        self._check_index(index)
        return self._node(0, index)

    def is_empty(self, index: int) -> bool:
        return self.leaf(index) == self._zeros[0]

    def update_single(self, index: int, leaf: bytes) -> bytes:
        """Write one leaf and return the new root."""
        self._check_index(index)
        self._set_leaf(index, leaf)
        self._rehash_path(0, index)
        logger.debug("tree depth=%d leaf %d updated", self._depth, index)
        return self.root

    def update_subtree(self, start: int, leaves: Sequence[bytes]) -> bytes:
        """Write ``2**k`` contiguous leaves starting at a multiple of ``2**k``.

        The subtree root is built bottom-up, then folded to the top using
        the untouched siblings above it.
        """
        size = len(leaves)
        if size == 0 or size & (size - 1):
            raise MisalignedSubtree(f"subtree size {size} is not a power of two")
        if start % size:
            raise MisalignedSubtree(f"start {start} is not aligned to {size}")
        self._check_index(start)
        self._check_index(start + size - 1)

        level = size.bit_length() - 1
        for offset, leaf in enumerate(leaves):
            self._set_leaf(start + offset, leaf)
        self._rehash_range(start, size, level)
        self._rehash_path(level, start >> level)
        logger.debug(
            "tree depth=%d subtree of %d leaves at %d updated", self._depth, size, start
        )
        return self.root

    def witness(self, index: int) -> Witness:
        """Sibling hashes from leaf ``index`` up to the root."""
        return self.subtree_witness(index, 0)

    def subtree_witness(self, start: int, level: int) -> Witness:
        """Witness for the subtree of height ``level`` that begins at ``start``."""
        self._check_index(start)
        if level > self._depth or start % (1 << level):
            raise MisalignedSubtree(f"start {start} is not aligned to level {level}")
        siblings: list[bytes] = []
        path = start >> level
        for lvl in range(level, self._depth):
            siblings.append(self._node(lvl, path ^ 1))
            path >>= 1
        return Witness(index=start >> level, siblings=tuple(siblings), root=self.root)

    def ensure_current(self, witness: Witness) -> None:
        """Raise ``StaleWitness`` if the tree has moved since ``witness`` was taken."""
        if witness.root != self.root:
            raise StaleWitness(f"witness for index {witness.index} predates the current root")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= self.capacity:
            raise IndexOutOfRange(
                f"index {index} out of range for depth {self._depth}"
            )

    def _node(self, level: int, index: int) -> bytes:
        return self._nodes[level].get(index, self._zeros[level])

    def _set_leaf(self, index: int, leaf: bytes) -> None:
        self._store(0, index, leaf)

    def _store(self, level: int, index: int, value: bytes) -> None:
        # Keep the storage sparse: empty subtrees fall back to the zero table.
        if value == self._zeros[level]:
            self._nodes[level].pop(index, None)
        else:
            self._nodes[level][index] = value

    def _rehash_path(self, level: int, index: int) -> None:
        for lvl in range(level, self._depth):
            parent = index >> 1
            left = self._node(lvl, parent << 1)
            right = self._node(lvl, (parent << 1) | 1)
            self._store(lvl + 1, parent, hash_pair(left, right))
            index = parent

    def _rehash_range(self, start: int, size: int, top_level: int) -> None:
        """Rebuild levels ``1..top_level`` over the leaf range ``[start, start+size)``."""
        lo, hi = start, start + size
        for lvl in range(top_level):
            lo_parent = lo >> 1
            hi_parent = (hi + 1) >> 1
            for parent in range(lo_parent, hi_parent):
                left = self._node(lvl, parent << 1)
                right = self._node(lvl, (parent << 1) | 1)
                self._store(lvl + 1, parent, hash_pair(left, right))
            lo, hi = lo_parent, hi_parent
