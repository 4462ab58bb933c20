"""Tests for the sparse Merkle tree."""

import pytest

from optimist.crypto.hashing import ZERO_BYTES32, hash_bytes, hash_pair
from optimist.crypto.merkle import MerkleTree, root_from_witness, verify_witness, zero_hashes
from optimist.errors import IndexOutOfRange, MisalignedSubtree, StaleWitness


def _leaf(n: int) -> bytes:
    return hash_bytes(n.to_bytes(32, "big"))


class TestEmptyTree:
    def test_zero_hash_chain(self) -> None:
        zeros = zero_hashes(3)
        assert len(zeros) == 4
        assert zeros[0] == ZERO_BYTES32
        assert zeros[1] == hash_pair(ZERO_BYTES32, ZERO_BYTES32)
        assert zeros[3] == hash_pair(zeros[2], zeros[2])

    def test_root_is_precomputed_zero_hash(self) -> None:
        assert MerkleTree(4).root == zero_hashes(4)[4]

    def test_every_leaf_starts_empty(self) -> None:
        tree = MerkleTree(3)
        assert all(tree.is_empty(i) for i in range(tree.capacity))

    def test_deep_tree_is_cheap(self) -> None:
        tree = MerkleTree(32)
        tree.update_single(2**32 - 1, _leaf(1))
        assert tree.witness(2**32 - 1).verify(_leaf(1), tree.root)

    def test_negative_depth_rejected(self) -> None:
        with pytest.raises(ValueError):
            MerkleTree(-1)


class TestUpdateSingle:
    def test_witness_round_trip(self) -> None:
        """Every written leaf authenticates against the root after the write."""
        tree = MerkleTree(3)
        for i in range(tree.capacity):
            root = tree.update_single(i, _leaf(i))
            witness = tree.witness(i)
            assert witness.depth == 3
            assert witness.verify(_leaf(i), root)

    def test_earlier_leaves_still_verify(self) -> None:
        tree = MerkleTree(3)
        tree.update_single(1, _leaf(1))
        tree.update_single(6, _leaf(6))
        assert tree.witness(1).verify(_leaf(1), tree.root)
        assert not tree.witness(1).verify(_leaf(2), tree.root)

    def test_writing_zero_restores_empty_root(self) -> None:
        tree = MerkleTree(3)
        empty = tree.root
        tree.update_single(5, _leaf(5))
        tree.update_single(5, ZERO_BYTES32)
        assert tree.root == empty

    def test_index_out_of_range(self) -> None:
        tree = MerkleTree(3)
        with pytest.raises(IndexOutOfRange):
            tree.update_single(8, _leaf(8))
        with pytest.raises(IndexOutOfRange):
            tree.update_single(-1, _leaf(0))


class TestUpdateSubtree:
    @pytest.mark.parametrize("start,size", [(0, 1), (6, 2), (4, 4), (0, 8)])
    def test_matches_sequential_writes(self, start: int, size: int) -> None:
        leaves = [_leaf(start + i) for i in range(size)]
        batched = MerkleTree(3)
        batched.update_single(1, _leaf(100))
        batched.update_subtree(start, leaves)

        sequential = MerkleTree(3)
        sequential.update_single(1, _leaf(100))
        for offset, leaf in enumerate(leaves):
            sequential.update_single(start + offset, leaf)

        assert batched.root == sequential.root
        for offset, leaf in enumerate(leaves):
            assert batched.witness(start + offset).verify(leaf, batched.root)

    def test_misaligned_start(self) -> None:
        with pytest.raises(MisalignedSubtree):
            MerkleTree(3).update_subtree(2, [_leaf(i) for i in range(4)])

    @pytest.mark.parametrize("size", [0, 3])
    def test_size_must_be_power_of_two(self, size: int) -> None:
        with pytest.raises(MisalignedSubtree):
            MerkleTree(3).update_subtree(0, [_leaf(i) for i in range(size)])

    def test_subtree_past_the_end(self) -> None:
        with pytest.raises(IndexOutOfRange):
            MerkleTree(3).update_subtree(8, [_leaf(0), _leaf(1)])

    def test_subtree_witness_folds_subtree_root(self) -> None:
        tree = MerkleTree(3)
        tree.update_single(0, _leaf(0))
        leaves = [_leaf(i) for i in range(4, 8)]

        before = tree.subtree_witness(4, 2)
        assert before.depth == 1
        assert before.compute_root(zero_hashes(2)[2]) == tree.root

        tree.update_subtree(4, leaves)
        subtree_root = MerkleTree.merklise(leaves, min_depth=0).root
        assert before.compute_root(subtree_root) == tree.root


class TestWitness:
    def test_stale_witness_detected(self) -> None:
        tree = MerkleTree(3)
        witness = tree.witness(2)
        tree.ensure_current(witness)
        tree.update_single(3, _leaf(3))
        with pytest.raises(StaleWitness):
            tree.ensure_current(witness)

    def test_root_from_witness_range_check(self) -> None:
        siblings = zero_hashes(2)[:2]
        with pytest.raises(IndexOutOfRange):
            root_from_witness(_leaf(0), 4, siblings)

    def test_verify_witness(self) -> None:
        tree = MerkleTree(2)
        tree.update_single(3, _leaf(3))
        siblings = tree.witness(3).siblings
        assert verify_witness(_leaf(3), 3, siblings, tree.root)
        assert not verify_witness(_leaf(3), 2, siblings, tree.root)


class TestMerklise:
    def test_depth_grows_with_leaves(self) -> None:
        assert MerkleTree.merklise([_leaf(0)]).depth == 1
        assert MerkleTree.merklise([_leaf(i) for i in range(3)]).depth == 2
        assert MerkleTree.merklise([_leaf(i) for i in range(5)]).depth == 3

    def test_empty_list(self) -> None:
        assert MerkleTree.merklise([]).root == zero_hashes(1)[1]

    def test_single_leaf_at_depth_zero(self) -> None:
        assert MerkleTree.merklise([_leaf(9)], min_depth=0).root == _leaf(9)

    def test_matches_incremental_build(self) -> None:
        leaves = [_leaf(i) for i in range(3)]
        tree = MerkleTree(2)
        for i, leaf in enumerate(leaves):
            tree.update_single(i, leaf)
        assert MerkleTree.merklise(leaves).root == tree.root
