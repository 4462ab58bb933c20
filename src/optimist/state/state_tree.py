"""State tree — account records keyed by state slot.

Records live in an arena (a plain dict keyed by slot); the Merkle tree
beside it holds only their leaf hashes. Every ``apply_*`` call reads the
records from the arena, runs the pure transition engine, and writes the
new leaves back. It returns the proof bundle a disputer needs: each
touched record with the witness captured just before that slot changed.

Sender and receiver are updated one after the other, so the receiver's
witness is taken against the root that already includes the sender's
new leaf. A dispute replays them in the same order.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, Sequence

from optimist.crypto.merkle import MerkleTree, Witness
from optimist.engine import transition
from optimist.errors import IndexOutOfRange, MisalignedSubtree, SlotOccupied, Status, TransactionRejected
from optimist.models.proof import StateProof, TxProof
from optimist.models.state import UserState
from optimist.models.transaction import (
    NULL_STATE_INDEX,
    BurnConsent,
    BurnExecute,
    CreateTransfer,
    MassMigration,
    Transaction,
    Transfer,
    TxType,
)

logger = logging.getLogger(__name__)


def _check_assignable(state_id: int) -> None:
    # Transfers out of this slot decode as fee settlements.
    if state_id == NULL_STATE_INDEX:
        raise IndexOutOfRange(f"state slot {state_id} is reserved for the fee settlement")


def deposit_subtree_root(states: Sequence[UserState]) -> bytes:
    """Root of a deposit subtree built from ``states`` in order."""
    return MerkleTree.merklise([s.leaf_hash() for s in states], min_depth=0).root


class StateTree:
    """Account records plus the Merkle tree committing to them.

    Usage:
        tree = StateTree(depth=32)
        tree.create_account(UserState(state_id=0, account_id=0, token_id=1, balance=10))
        proof = tree.apply_transfer(Transfer(0, 1, amount=5, fee=1, nonce=1))
        root = tree.root
    """

    def __init__(self, depth: int) -> None:
        self._tree = MerkleTree(depth)
        self._states: dict[int, UserState] = {}
        self._apply: dict[TxType, Callable[..., TxProof]] = {
            TxType.TRANSFER: self.apply_transfer,
            TxType.CREATE_TRANSFER: self.apply_create_transfer,
            TxType.MASS_MIGRATION: self.apply_mass_migration,
            TxType.BURN_CONSENT: self.apply_burn_consent,
            TxType.BURN_EXECUTE: self.apply_burn_execute,
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def depth(self) -> int:
        return self._tree.depth

    @property
    def root(self) -> bytes:
        return self._tree.root

    def get(self, state_id: int) -> Optional[UserState]:
        self._tree.leaf(state_id)  # range check
        return self._states.get(state_id)

    def occupied(self, state_id: int) -> bool:
        return self.get(state_id) is not None

    def witness(self, state_id: int) -> Witness:
        return self._tree.witness(state_id)

    def proof(self, state_id: int) -> StateProof:
        return StateProof(state_id=state_id, state=self.get(state_id), witness=self.witness(state_id))

    def states(self) -> list[UserState]:
        return [self._states[k] for k in sorted(self._states)]

    def next_free_slot(self, start: int = 0) -> int:
        slot = start
        while slot in self._states or slot == NULL_STATE_INDEX:
            slot += 1
        self._tree.leaf(slot)
        return slot

    # ------------------------------------------------------------------
    # Account creation and deposits
    # ------------------------------------------------------------------

    def create_account(self, state: UserState) -> StateProof:
        """Place ``state`` in its (empty) slot."""
        _check_assignable(state.state_id)
        if self.occupied(state.state_id):
            raise SlotOccupied(f"state slot {state.state_id} already holds an account")
        proof = self.proof(state.state_id)
        self._write(state)
        return proof

    def apply_deposit_subtree(self, start: int, states: Sequence[UserState]) -> Witness:
        """Insert a batch of deposits as one aligned subtree.

        Returns the witness of the subtree root, taken before the write,
        which proves the subtree slot was empty.
        """
        size = len(states)
        if size == 0 or size & (size - 1) or start % size:
            raise MisalignedSubtree(f"{size} deposits cannot start at slot {start}")
        for offset, state in enumerate(states):
            if state.state_id != start + offset:
                raise IndexOutOfRange(
                    f"deposit {offset} targets slot {state.state_id}, expected {start + offset}"
                )
            _check_assignable(state.state_id)
            if self.occupied(state.state_id):
                raise SlotOccupied(f"state slot {state.state_id} already holds an account")

        level = size.bit_length() - 1
        witness = self._tree.subtree_witness(start, level)
        self._tree.update_subtree(start, [s.leaf_hash() for s in states])
        for state in states:
            self._states[state.state_id] = state
        logger.info("deposited %d accounts at slot %d", size, start)
        return witness

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def apply(self, tx: Transaction) -> TxProof:
        """Apply any transaction, dispatching on its type tag."""
        return self._apply[tx.tx_type](tx)

    def apply_transfer(self, tx: Transfer) -> TxProof:
        if tx.is_fee_settlement:
            raise ValueError("use apply_fee_settlement for the fee transfer")
        return self._apply_two_party(tx)

    def apply_create_transfer(self, tx: CreateTransfer) -> TxProof:
        return self._apply_two_party(tx)

    def apply_mass_migration(self, tx: MassMigration) -> TxProof:
        return self._apply_sender_only(tx)

    def apply_burn_consent(self, tx: BurnConsent) -> TxProof:
        return self._apply_sender_only(tx)

    def apply_burn_execute(self, tx: BurnExecute) -> TxProof:
        return self._apply_sender_only(tx)

    def apply_fee_settlement(
        self,
        tx: Transfer,
        collected: int,
        fee_token: Optional[int],
    ) -> TxProof:
        receiver = self.get(tx.to_index)
        result = transition.apply_fee_settlement(tx, receiver, collected, fee_token)
        self._raise_unless_ok(tx, result.status)
        proof = self.proof(tx.to_index)
        assert result.receiver is not None
        self._write(result.receiver)
        return TxProof(receiver=proof)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _apply_sender_only(self, tx: Transaction) -> TxProof:
        sender = self.get(tx.from_index)
        result = transition.apply(tx, sender)
        self._raise_unless_ok(tx, result.status)
        proof = self.proof(tx.from_index)
        assert result.sender is not None
        self._write(result.sender)
        return TxProof(sender=proof)

    def _apply_two_party(self, tx: Transfer | CreateTransfer) -> TxProof:
        sender = self.get(tx.from_index)
        receiver = self.get(tx.to_index)
        result = transition.apply(tx, sender, receiver)
        self._raise_unless_ok(tx, result.status)
        assert sender is not None

        # Debit first; for a self-transfer the receiver proof then holds
        # the debited record, as the replay expects.
        debit = transition.apply_sender(tx, sender)
        assert debit.sender is not None
        sender_proof = self.proof(tx.from_index)
        self._write(debit.sender)
        receiver_proof = self.proof(tx.to_index)
        credit = transition.apply_receiver(tx, sender.token_id, receiver_proof.state)
        assert credit.receiver is not None
        self._write(credit.receiver)
        return TxProof(sender=sender_proof, receiver=receiver_proof)

    def _write(self, state: UserState) -> None:
        self._tree.update_single(state.state_id, state.leaf_hash())
        self._states[state.state_id] = state

    @staticmethod
    def _raise_unless_ok(tx: Transaction, status: Status) -> None:
        if status != Status.OK:
            raise TransactionRejected(status, f"{tx.tx_type.name} from slot {tx.from_index}")

    def load(self, states: Iterable[UserState]) -> None:
        """Create several accounts at once (genesis state)."""
        for state in states:
            self.create_account(state)
