"""Tests for the state tree and its proof bundles."""

import pytest

from optimist.crypto.hashing import ZERO_BYTES32, hash_uints
from optimist.crypto.merkle import MerkleTree, zero_hashes
from optimist.errors import IndexOutOfRange, MisalignedSubtree, SlotOccupied, Status, TransactionRejected
from optimist.models.state import UserState
from optimist.models.transaction import (
    NULL_STATE_INDEX,
    BurnConsent,
    BurnExecute,
    CreateTransfer,
    MassMigration,
    Transfer,
    fee_settlement,
)
from optimist.state.state_tree import StateTree, deposit_subtree_root


def _account(slot: int, balance: int = 10, token: int = 1) -> UserState:
    return UserState(state_id=slot, account_id=slot, token_id=token, balance=balance)


@pytest.fixture
def tree() -> StateTree:
    tree = StateTree(depth=4)
    tree.load([_account(0), _account(1, balance=0)])
    return tree


class TestUserState:
    def test_leaf_hash_covers_every_field(self) -> None:
        state = UserState(state_id=3, account_id=1, token_id=2, balance=9, nonce=4, burn=5, last_burn=6)
        assert state.leaf_hash() == hash_uints(3, 1, 2, 9, 4, 5, 6)

    def test_range_checked(self) -> None:
        with pytest.raises(ValueError):
            UserState(state_id=0, account_id=0, token_id=1, balance=-1)
        with pytest.raises(TypeError):
            UserState(state_id=0, account_id=0, token_id=1, balance=True)

    def test_dict_round_trip(self) -> None:
        state = _account(2).evolve(nonce=3)
        assert UserState.from_dict(state.to_dict()) == state


class TestCreateAccount:
    def test_create_and_read(self) -> None:
        tree = StateTree(depth=4)
        empty_root = tree.root
        proof = tree.create_account(_account(3))
        assert tree.get(3) == _account(3)
        assert proof.state is None
        assert proof.witness.verify(ZERO_BYTES32, empty_root)
        assert tree.witness(3).verify(_account(3).leaf_hash(), tree.root)

    def test_slot_occupied(self, tree: StateTree) -> None:
        with pytest.raises(SlotOccupied):
            tree.create_account(_account(0))

    def test_out_of_range(self, tree: StateTree) -> None:
        with pytest.raises(IndexOutOfRange):
            tree.get(16)
        with pytest.raises(IndexOutOfRange):
            tree.create_account(_account(16))

    def test_fee_settlement_slot_is_reserved(self) -> None:
        tree = StateTree(depth=32)
        root = tree.root
        with pytest.raises(IndexOutOfRange):
            tree.create_account(_account(NULL_STATE_INDEX))
        with pytest.raises(IndexOutOfRange):
            tree.apply_deposit_subtree(
                NULL_STATE_INDEX - 1, [_account(NULL_STATE_INDEX - 1), _account(NULL_STATE_INDEX)]
            )
        assert tree.root == root
        tree.create_account(_account(NULL_STATE_INDEX - 1))
        assert tree.get(NULL_STATE_INDEX - 1) == _account(NULL_STATE_INDEX - 1)

    def test_next_free_slot(self, tree: StateTree) -> None:
        assert tree.next_free_slot() == 2
        tree.create_account(_account(2))
        assert tree.next_free_slot() == 3


class TestDepositSubtree:
    def test_matches_single_creates(self, tree: StateTree) -> None:
        states = [_account(slot) for slot in range(4, 8)]
        witness = tree.apply_deposit_subtree(4, states)

        reference = StateTree(depth=4)
        reference.load([_account(0), _account(1, balance=0)] + states)
        assert tree.root == reference.root
        assert tree.states() == reference.states()

        assert witness.compute_root(deposit_subtree_root(states)) == tree.root

    def test_witness_proves_empty_subtree(self, tree: StateTree) -> None:
        before = tree.root
        witness = tree.apply_deposit_subtree(4, [_account(4), _account(5)])
        assert witness.compute_root(zero_hashes(1)[1]) == before

    def test_subtree_root(self) -> None:
        states = [_account(0), _account(1)]
        assert deposit_subtree_root(states) == MerkleTree.merklise(
            [s.leaf_hash() for s in states], min_depth=0
        ).root

    def test_misaligned(self, tree: StateTree) -> None:
        with pytest.raises(MisalignedSubtree):
            tree.apply_deposit_subtree(2, [_account(s) for s in range(2, 6)])

    def test_occupied_slot(self, tree: StateTree) -> None:
        root = tree.root
        with pytest.raises(SlotOccupied):
            tree.apply_deposit_subtree(0, [_account(0), _account(1)])
        assert tree.root == root

    def test_state_ids_must_follow_start(self, tree: StateTree) -> None:
        with pytest.raises(IndexOutOfRange):
            tree.apply_deposit_subtree(4, [_account(5), _account(4)])


class TestApply:
    def test_transfer_proofs_are_pre_state(self, tree: StateTree) -> None:
        pre_root = tree.root
        proof = tree.apply(Transfer(0, 1, 5, 1, 1))

        assert proof.sender.state == _account(0)
        assert proof.sender.witness.verify(_account(0).leaf_hash(), pre_root)
        # Receiver witness is taken after the sender's write.
        assert proof.receiver.state == _account(1, balance=0)
        assert proof.receiver.witness.root != pre_root

        assert tree.get(0) == _account(0).evolve(balance=4, nonce=1)
        assert tree.get(1) == _account(1, balance=0).evolve(balance=5)
        assert tree.witness(1).verify(tree.get(1).leaf_hash(), tree.root)

    def test_rejection_leaves_state_untouched(self, tree: StateTree) -> None:
        root = tree.root
        with pytest.raises(TransactionRejected) as exc:
            tree.apply(Transfer(0, 1, 50, 1, 1))
        assert exc.value.status == Status.INSUFFICIENT_BALANCE
        assert tree.root == root
        assert tree.get(0) == _account(0)

    def test_self_transfer_receiver_proof_holds_debited_record(self, tree: StateTree) -> None:
        proof = tree.apply(Transfer(0, 0, 5, 1, 1))
        assert proof.receiver.state == _account(0).evolve(balance=4, nonce=1)
        assert tree.get(0) == _account(0).evolve(balance=9, nonce=1)

    def test_create_transfer(self, tree: StateTree) -> None:
        proof = tree.apply(CreateTransfer(0, 5, 1, 1, 3, 1, 1))
        assert proof.receiver.state is None
        assert tree.get(5) == UserState(state_id=5, account_id=1, token_id=1, balance=3)

    def test_mass_migration_touches_sender_only(self, tree: StateTree) -> None:
        proof = tree.apply(MassMigration(0, 7, 5, 1, 1))
        assert proof.receiver is None
        assert tree.get(0).balance == 4
        assert tree.get(1).balance == 0

    def test_burn_cycle(self, tree: StateTree) -> None:
        tree.apply(BurnConsent(0, 3, 1))
        tree.apply(BurnExecute(0, 1))
        assert tree.get(0) == _account(0).evolve(balance=7, nonce=1, burn=3, last_burn=1)
        with pytest.raises(TransactionRejected) as exc:
            tree.apply(BurnExecute(0, 1))
        assert exc.value.status == Status.BURN_ALREADY_EXECUTED

    def test_fee_settlement_routed_separately(self, tree: StateTree) -> None:
        with pytest.raises(ValueError):
            tree.apply(fee_settlement(1, 1))
        proof = tree.apply_fee_settlement(fee_settlement(1, 2), collected=2, fee_token=1)
        assert proof.sender is None
        assert tree.get(1).balance == 2
