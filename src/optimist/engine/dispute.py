"""Dispute engine — decides whether a committed batch was applied correctly.

The replay never reads a state tree. It starts from the claimed
pre-batch root and, for each transaction, authenticates the supplied
records against the *running* root, applies the pure transition rules,
and folds the new leaves back in with the same witnesses. The claimed
post-batch root is only looked at once the fold is complete.

Order of checks:
1. keccak(blob) must equal the committed txHashCommitment.
2. The blob must decode; every signed transaction needs a registry
   proof against the committed accountRoot, and the aggregate signature
   must verify over all signing messages.
3. Fold the transactions in order (witness, signer, batch membership,
   registration of a new slot's account, transition rules). Rules are
   judged on the pre-state of both records, as ``transition.apply`` does.
4. Batch totals: fees paid out, mass-migration metadata.
5. The final running root must equal the committed stateRoot.

Fraud is a return value (``Verdict``). Only structurally unusable
inputs (wrong proof count, wrong witness depth, missing proofs) raise
``MalformedWitness``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Union

from optimist.crypto import bls
from optimist.crypto.hashing import hash_bytes
from optimist.crypto.merkle import root_from_witness
from optimist.engine import transition
from optimist.engine.transition import TWO_PARTY, BatchTally
from optimist.errors import MalformedTransaction, MalformedWitness, Status
from optimist.models.commitment import BatchType, Commitment
from optimist.models.proof import PubkeyProof, StateProof, TxProof
from optimist.models.state import UserState
from optimist.models.transaction import Transaction, TxType, decode_batch, signing_message

logger = logging.getLogger(__name__)


class FraudReason(str, enum.Enum):
    """Why a batch was found fraudulent."""
    HASH_MISMATCH = "hash_mismatch"
    MALFORMED_TRANSACTION = "malformed_transaction"
    SIGNATURE_INVALID = "signature_invalid"
    WITNESS_MISMATCH = "witness_mismatch"
    INVALID_TRANSITION = "invalid_transition"
    METADATA_MISMATCH = "metadata_mismatch"
    ROOT_MISMATCH = "root_mismatch"


@dataclass(frozen=True)
class Verdict:
    """Outcome of a dispute.

    ``tx_index`` pins the offending transaction where there is one, and
    ``status`` carries the broken transition rule for INVALID_TRANSITION.
    """
    fraudulent: bool
    reason: Optional[FraudReason] = None
    tx_index: Optional[int] = None
    status: Optional[Status] = None
    computed_root: Optional[bytes] = None
    detail: str = ""

    @property
    def valid(self) -> bool:
        return not self.fraudulent


def _fraud(
    reason: FraudReason,
    detail: str,
    tx_index: Optional[int] = None,
    status: Optional[Status] = None,
) -> Verdict:
    return Verdict(fraudulent=True, reason=reason, tx_index=tx_index, status=status, detail=detail)


def _rule(i: int, status: Status) -> Optional[Verdict]:
    if status == Status.OK:
        return None
    return _fraud(FraudReason.INVALID_TRANSITION, f"transaction {i} breaks {status.value}", i, status)


class DisputeEngine:
    """Replays committed batches against witnesses.

    Usage:
        engine = DisputeEngine(state_depth=32, registry_depth=31, domain=domain)
        verdict = engine.dispute(commitment, pre_state_root, blob, proofs)
        if verdict.fraudulent:
            ...  # hand the verdict to the ledger
    """

    def __init__(self, state_depth: int, registry_depth: int, domain: bytes) -> None:
        if len(domain) != 32:
            raise ValueError("signing domain must be 32 bytes")
        self._state_depth = state_depth
        self._registry_depth = registry_depth
        self._domain = domain

    def dispute(
        self,
        commitment: Commitment,
        pre_state_root: bytes,
        blob: bytes,
        proofs: Sequence[TxProof],
    ) -> Verdict:
        """Decide whether ``commitment`` follows from ``pre_state_root``."""
        verdict = self._replay(commitment, pre_state_root, blob, proofs)
        if verdict.fraudulent:
            logger.info(
                "batch fraudulent: %s at tx %s (%s)",
                verdict.reason.value if verdict.reason else "unknown",
                verdict.tx_index,
                verdict.detail,
            )
        else:
            logger.info("batch valid: %d transactions replayed", len(proofs))
        return verdict

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _replay(
        self,
        commitment: Commitment,
        pre_state_root: bytes,
        blob: bytes,
        proofs: Sequence[TxProof],
    ) -> Verdict:
        if hash_bytes(blob) != commitment.tx_hash_commitment:
            return _fraud(FraudReason.HASH_MISMATCH, "transaction blob does not match its commitment")

        try:
            txs = decode_batch(blob)
        except MalformedTransaction as e:
            return _fraud(FraudReason.MALFORMED_TRANSACTION, str(e))

        if len(proofs) != len(txs):
            raise MalformedWitness(f"{len(txs)} transactions but {len(proofs)} proofs")
        for i, (tx, proof) in enumerate(zip(txs, proofs)):
            self._check_shape(i, tx, proof)

        verdict = self._check_signature(commitment, txs, proofs)
        if verdict is not None:
            return verdict

        folded = self._fold(commitment, pre_state_root, txs, proofs)
        if isinstance(folded, Verdict):
            return folded
        running, tally = folded

        verdict = self._check_totals(commitment, tally)
        if verdict is not None:
            return verdict

        if running != commitment.state_root:
            return Verdict(
                fraudulent=True,
                reason=FraudReason.ROOT_MISMATCH,
                computed_root=running,
                detail="replayed root differs from the committed state root",
            )
        return Verdict(fraudulent=False, computed_root=running)

    def _check_shape(self, i: int, tx: Transaction, proof: TxProof) -> None:
        if not tx.is_fee_settlement and proof.sender is None:
            raise MalformedWitness(f"tx {i}: missing sender proof")
        if tx.tx_type in TWO_PARTY and proof.receiver is None:
            raise MalformedWitness(f"tx {i}: missing receiver proof")
        if tx.signed and proof.pubkey is None:
            raise MalformedWitness(f"tx {i}: missing registry proof")
        if (
            tx.tx_type == TxType.CREATE_TRANSFER
            and tx.to_account_id < 1 << self._registry_depth
            and proof.receiver_account is None
        ):
            raise MalformedWitness(f"tx {i}: missing registry proof for the new slot's account")
        for state_proof in (proof.sender, proof.receiver):
            if state_proof is not None and state_proof.witness.depth != self._state_depth:
                raise MalformedWitness(
                    f"tx {i}: state witness has {state_proof.witness.depth} siblings, "
                    f"expected {self._state_depth}"
                )
        for entry in (proof.pubkey, proof.receiver_account):
            if entry is not None and entry.witness.depth != self._registry_depth:
                raise MalformedWitness(
                    f"tx {i}: registry witness has {entry.witness.depth} siblings, "
                    f"expected {self._registry_depth}"
                )

    def _check_signature(
        self,
        commitment: Commitment,
        txs: Sequence[Transaction],
        proofs: Sequence[TxProof],
    ) -> Optional[Verdict]:
        pubkeys = []
        messages = []
        for i, (tx, proof) in enumerate(zip(txs, proofs)):
            if not tx.signed:
                continue
            entry = proof.pubkey
            assert entry is not None
            verdict = self._authenticate_account(i, entry, entry.account_id, commitment.account_root)
            if verdict is not None:
                return verdict
            if entry.pubkey is None:
                return _fraud(FraudReason.SIGNATURE_INVALID, f"account {entry.account_id} has no key", i)
            pubkeys.append(entry.pubkey)
            messages.append(signing_message(tx, entry.pubkey, self._domain))

        if not bls.verify_aggregate(commitment.signature, pubkeys, messages, self._domain):
            return _fraud(FraudReason.SIGNATURE_INVALID, "aggregate signature does not verify")
        return None

    def _fold(
        self,
        commitment: Commitment,
        pre_state_root: bytes,
        txs: Sequence[Transaction],
        proofs: Sequence[TxProof],
    ) -> Union[Verdict, tuple[bytes, BatchTally]]:
        meta = commitment.mass_migration
        tally = BatchTally(
            commitment.batch_type,
            token_id=None if meta is None else meta.token_id,
            spoke_id=None if meta is None else meta.target_spoke_id,
        )
        running = pre_state_root

        for i, (tx, proof) in enumerate(zip(txs, proofs)):
            if tx.is_fee_settlement:
                receiver_proof = proof.receiver
                assert receiver_proof is not None
                verdict = self._authenticate(i, receiver_proof, tx.to_index, running) or _rule(
                    i, tally.check(tx, None)
                )
                if verdict is not None:
                    return verdict
                credit = transition.apply_fee_settlement(
                    tx, receiver_proof.state, tally.fees, tally.fee_token
                )
                verdict = _rule(i, credit.status)
                if verdict is not None:
                    return verdict
                assert credit.receiver is not None
                running = self._fold_leaf(credit.receiver.leaf_hash(), receiver_proof)
                tally.record(tx, None, credit)
                continue

            sender_proof = proof.sender
            assert sender_proof is not None
            verdict = self._authenticate(i, sender_proof, tx.from_index, running)
            if verdict is not None:
                return verdict
            sender = sender_proof.state

            if tx.signed and sender is not None:
                assert proof.pubkey is not None
                if proof.pubkey.account_id != sender.account_id:
                    return _fraud(
                        FraudReason.SIGNATURE_INVALID,
                        f"slot {tx.from_index} is owned by account {sender.account_id}, "
                        f"signed by account {proof.pubkey.account_id}",
                        i,
                    )

            receiver: Optional[UserState] = None
            if tx.tx_type in TWO_PARTY and sender is not None:
                assert proof.receiver is not None
                verdict, receiver = self._receiver_before_debit(i, tx, sender_proof, proof.receiver, running)
                if verdict is not None:
                    return verdict

            verdict = (
                _rule(i, tally.check(tx, sender))
                or self._check_receiver_account(i, tx, proof.receiver_account, commitment.account_root)
                or _rule(i, transition.apply(tx, sender, receiver).status)
            )
            if verdict is not None:
                return verdict
            debit = transition.apply_sender(tx, sender)
            assert debit.sender is not None and sender is not None
            running = self._fold_leaf(debit.sender.leaf_hash(), sender_proof)

            if tx.tx_type in TWO_PARTY:
                receiver_proof = proof.receiver
                assert receiver_proof is not None
                verdict = self._authenticate(i, receiver_proof, tx.to_index, running)
                if verdict is not None:
                    return verdict
                credit = transition.apply_receiver(tx, sender.token_id, receiver_proof.state)
                verdict = _rule(i, credit.status)
                if verdict is not None:
                    return verdict
                assert credit.receiver is not None
                running = self._fold_leaf(credit.receiver.leaf_hash(), receiver_proof)

            tally.record(tx, sender, debit)

        return running, tally

    def _receiver_before_debit(
        self,
        i: int,
        tx: Transaction,
        sender_proof: StateProof,
        receiver_proof: StateProof,
        root: bytes,
    ) -> tuple[Optional[Verdict], Optional[UserState]]:
        """Authenticate the receiver's record against the root before the debit.

        The receiver witness is taken after the sender's write. Only one of
        its siblings covers the sender's slot: the one at the level where
        the two paths meet. Rebuilding that node from the sender's
        authenticated pre-state gives a witness against ``root``.
        """
        if tx.to_index == tx.from_index:
            return None, sender_proof.state
        if tx.to_index >= 1 << receiver_proof.witness.depth or receiver_proof.state_id != tx.to_index:
            return self._authenticate(i, receiver_proof, tx.to_index, root), None

        level = (tx.from_index ^ tx.to_index).bit_length() - 1
        sender_node = root_from_witness(
            sender_proof.leaf_hash(),
            tx.from_index & ((1 << level) - 1),
            sender_proof.witness.siblings[:level],
        )
        siblings = receiver_proof.witness.siblings
        witness = replace(
            receiver_proof.witness,
            siblings=siblings[:level] + (sender_node,) + siblings[level + 1:],
        )
        verdict = self._authenticate(i, replace(receiver_proof, witness=witness), tx.to_index, root)
        return verdict, receiver_proof.state

    def _check_receiver_account(
        self,
        i: int,
        tx: Transaction,
        entry: Optional[PubkeyProof],
        account_root: bytes,
    ) -> Optional[Verdict]:
        """A CreateTransfer may only open a slot for a registered account."""
        if tx.tx_type != TxType.CREATE_TRANSFER:
            return None
        if tx.to_account_id >= 1 << self._registry_depth:
            return _rule(i, Status.UNKNOWN_ACCOUNT)
        assert entry is not None
        verdict = self._authenticate_account(i, entry, tx.to_account_id, account_root)
        if verdict is not None:
            return verdict
        if entry.pubkey is None:
            return _rule(i, Status.UNKNOWN_ACCOUNT)
        return None


    @staticmethod
    def _check_totals(commitment: Commitment, tally: BatchTally) -> Optional[Verdict]:
        if tally.fees and not tally.settled:
            return _fraud(
                FraudReason.INVALID_TRANSITION,
                f"{tally.fees} in fees collected but never paid out",
                status=Status.BAD_FEE_SETTLEMENT,
            )
        meta = commitment.mass_migration
        if commitment.batch_type != BatchType.MASS_MIGRATION or meta is None:
            return None
        if meta.amount != tally.migrated:
            return _fraud(
                FraudReason.METADATA_MISMATCH,
                f"committed amount {meta.amount}, replayed {tally.migrated}",
            )
        if meta.withdraw_root != tally.withdraw_root():
            return _fraud(FraudReason.METADATA_MISMATCH, "withdraw root does not match the withdrawals")
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _authenticate(i: int, proof: StateProof, slot: int, root: bytes) -> Optional[Verdict]:
        if slot >= 1 << proof.witness.depth:
            return _rule(i, Status.UNKNOWN_ACCOUNT)
        if proof.state_id != slot or proof.witness.index != slot:
            return _fraud(FraudReason.WITNESS_MISMATCH, f"proof is for slot {proof.state_id}, not {slot}", i)
        if proof.state is not None and proof.state.state_id != slot:
            return _fraud(FraudReason.WITNESS_MISMATCH, f"record claims slot {proof.state.state_id}", i)
        if root_from_witness(proof.leaf_hash(), slot, proof.witness.siblings) != root:
            return _fraud(FraudReason.WITNESS_MISMATCH, f"slot {slot} does not authenticate", i)
        return None

    def _authenticate_account(
        self, i: int, entry: PubkeyProof, account_id: int, root: bytes
    ) -> Optional[Verdict]:
        if not 0 <= account_id < 1 << self._registry_depth:
            return _fraud(FraudReason.WITNESS_MISMATCH, "registry index out of range", i)
        if entry.account_id != account_id or entry.witness.index != account_id:
            return _fraud(
                FraudReason.WITNESS_MISMATCH,
                f"registry proof is for account {entry.account_id}, not {account_id}",
                i,
            )
        if root_from_witness(entry.leaf_hash(), account_id, entry.witness.siblings) != root:
            return _fraud(
                FraudReason.WITNESS_MISMATCH,
                f"registry entry of account {account_id} not under the account root",
                i,
            )
        return None

    @staticmethod
    def _fold_leaf(leaf: bytes, proof: StateProof) -> bytes:
        return root_from_witness(leaf, proof.state_id, proof.witness.siblings)
