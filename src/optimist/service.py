"""Rollup service — batch production facade over the core.

This is the primary interface for a batch producer. It owns the state
tree and the account registry of one deployment and orchestrates:
- Key registration and account creation (single and deposit subtrees)
- Batch production: apply user transactions, drop rejected ones, settle
  fees, aggregate signatures, build the commitment and dispute package
- Commitment trees for a ledger submission
- Dispute replay of a produced batch

Rejected transactions never abort a batch; they are logged, reported in
the batch, and left out of the blob. The state tree is only written
for transactions that are included.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

from eth_utils import to_hex

from optimist.config import RollupParams
from optimist.crypto import bls
from optimist.crypto.commitment_builder import CommitmentBuilder, CommitmentTree, build_commitment
from optimist.crypto.hashing import hex_hash
from optimist.engine.dispute import DisputeEngine, Verdict
from optimist.engine.transition import BatchTally, TransitionResult
from optimist.errors import (
    IndexOutOfRange,
    OptimistError,
    Status,
    TransactionRejected,
)
from optimist.models.commitment import BatchType, Commitment, MassMigrationMeta
from optimist.models.proof import TxProof
from optimist.models.state import UserState
from optimist.models.transaction import (
    Transaction,
    TxType,
    decode_batch,
    encode_batch,
    fee_settlement,
    signing_message,
)
from optimist.state.registry import AccountRegistry
from optimist.state.state_tree import StateTree

logger = logging.getLogger(__name__)

_FEE_BEARING = {BatchType.TRANSFER, BatchType.CREATE_TRANSFER, BatchType.MASS_MIGRATION}


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SignedTx:
    """A user transaction with its individual BLS signature (None if unsigned)."""
    tx: Transaction
    signature: Optional[tuple[int, int]] = None


@dataclass(frozen=True)
class Rejection:
    """A submitted transaction left out of the batch, and why."""
    index: int
    reason: str


@dataclass(frozen=True)
class Batch:
    """A produced batch: its commitment plus everything a disputer needs."""
    commitment: Commitment
    pre_state_root: bytes
    blob: bytes
    txs: tuple[Transaction, ...]
    proofs: tuple[TxProof, ...]
    rejected: tuple[Rejection, ...] = ()

    @property
    def fees(self) -> int:
        last = self.txs[-1] if self.txs else None
        if last is not None and last.is_fee_settlement:
            return last.amount
        return 0

    def dispute_package(self) -> dict[str, Any]:
        """JSON-ready inputs for an independent dispute replay."""
        return {
            "commitment": self.commitment.to_dict(),
            "pre_state_root": hex_hash(self.pre_state_root),
            "blob": to_hex(self.blob),
            "proofs": [p.to_dict() for p in self.proofs],
        }


class RollupService:
    """Batch producer for one rollup deployment.

    Usage:
        service = RollupService(RollupParams.load())
        alice_id = service.register_pubkey(alice.pubkey).data["account_id"]
        service.create_account(UserState(state_id=0, account_id=alice_id, token_id=1, balance=10))

        batch = service.produce_batch(
            BatchType.TRANSFER,
            [SignedTx(tx, alice.sign(service.signing_message(tx, alice_id), domain))],
            fee_receiver=0,
        )
        tree = service.submit([batch])
        assert service.dispute(batch).valid
    """

    def __init__(
        self,
        params: RollupParams,
        state_tree: Optional[StateTree] = None,
        registry: Optional[AccountRegistry] = None,
        verify_signatures: bool = True,
    ) -> None:
        self._params = params
        self._state = state_tree or StateTree(params.state_depth)
        self._registry = registry or AccountRegistry(params.registry_depth)
        self._verify_signatures = verify_signatures
        self._dispute_engine = DisputeEngine(
            state_depth=params.state_depth,
            registry_depth=params.registry_depth,
            domain=params.domain,
        )

    @property
    def params(self) -> RollupParams:
        return self._params

    @property
    def state_tree(self) -> StateTree:
        return self._state

    @property
    def registry(self) -> AccountRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def register_pubkey(self, pubkey: Sequence[int]) -> ServiceResult:
        """Register a public key. ``data["account_id"]`` is the new id."""
        try:
            account_id = self._registry.register(pubkey)
        except (OptimistError, ValueError) as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(success=True, data={"account_id": account_id})

    def create_account(self, state: UserState) -> ServiceResult:
        """Create a state record for a registered account."""
        if state.account_id >= self._registry.size:
            return ServiceResult(success=False, errors=[f"Account not registered: {state.account_id}"])
        try:
            proof = self._state.create_account(state)
        except OptimistError as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(success=True, data={"state_id": state.state_id, "proof": proof})

    def deposit(self, deposits: Sequence[tuple[int, int, int]]) -> ServiceResult:
        """Onboard ``(account_id, token_id, amount)`` deposits as one subtree.

        The number of deposits must equal the deposit subtree size; the
        subtree lands in the next aligned run of empty slots.
        """
        size = self._params.deposit_subtree_size
        if len(deposits) != size:
            return ServiceResult(
                success=False,
                errors=[f"A deposit subtree holds {size} deposits, got {len(deposits)}"],
            )
        try:
            start = self._free_subtree_start(size)
        except IndexOutOfRange:
            return ServiceResult(success=False, errors=["State tree has no room for another deposit subtree"])
        states = [
            UserState(state_id=start + i, account_id=acc, token_id=token, balance=amount)
            for i, (acc, token, amount) in enumerate(deposits)
        ]
        try:
            witness = self._state.apply_deposit_subtree(start, states)
        except OptimistError as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(
            success=True,
            data={"start": start, "state_ids": [s.state_id for s in states], "witness": witness},
        )

    def signing_message(self, tx: Transaction, account_id: int) -> bytes:
        """The message the owner of ``account_id`` signs for ``tx``."""
        return signing_message(tx, self._registry.pubkey(account_id), self._params.domain)

    # ------------------------------------------------------------------
    # Batch production
    # ------------------------------------------------------------------

    def produce_batch_from_blob(
        self,
        batch_type: BatchType,
        blob: bytes,
        signatures: Sequence[Optional[tuple[int, int]]],
        fee_receiver: Optional[int] = None,
    ) -> Batch:
        """Decode a raw transaction blob and produce a batch from it."""
        txs = decode_batch(blob)
        if len(signatures) != len(txs):
            raise ValueError(f"{len(txs)} transactions but {len(signatures)} signatures")
        return self.produce_batch(
            batch_type,
            [SignedTx(tx, sig) for tx, sig in zip(txs, signatures)],
            fee_receiver=fee_receiver,
        )

    def produce_batch(
        self,
        batch_type: BatchType,
        submitted: Sequence[SignedTx],
        fee_receiver: Optional[int] = None,
    ) -> Batch:
        """Apply ``submitted`` in order and build the batch commitment.

        Fee-bearing batches close with a fee settlement paying
        ``fee_receiver``; fee-paying transactions in another token than
        the receiver's are rejected.
        """
        if batch_type == BatchType.GENESIS:
            raise ValueError("genesis batches are not produced from transactions")
        receiver = self._fee_receiver(batch_type, fee_receiver)

        pre_state_root = self._state.root
        account_root = self._registry.root()
        tally = BatchTally(batch_type)
        capacity = self._params.max_txs_per_commitment - (1 if batch_type in _FEE_BEARING else 0)

        included: list[Transaction] = []
        proofs: list[TxProof] = []
        signatures: list[tuple[int, int]] = []
        rejected: list[Rejection] = []

        def reject(index: int, reason: str) -> None:
            logger.warning("tx %d rejected from %s batch: %s", index, batch_type.name, reason)
            rejected.append(Rejection(index=index, reason=reason))

        for index, item in enumerate(submitted):
            tx = item.tx
            if len(included) >= capacity:
                reject(index, "batch_full")
                continue
            if tx.is_fee_settlement:
                reject(index, Status.BAD_FEE_SETTLEMENT.value)
                continue
            try:
                sender = self._state.get(tx.from_index)
            except IndexOutOfRange:
                reject(index, Status.UNKNOWN_ACCOUNT.value)
                continue

            status = tally.check(tx, sender)
            if status == Status.OK and tx.fee_amount and receiver is None:
                status = Status.BAD_FEE_SETTLEMENT
            if (
                status == Status.OK
                and tx.tx_type == TxType.CREATE_TRANSFER
                and tx.to_account_id >= self._registry.size
            ):
                status = Status.UNKNOWN_ACCOUNT
            if (
                status == Status.OK
                and receiver is not None
                and tx.fee_amount
                and sender is not None
                and sender.token_id != receiver.token_id
            ):
                status = Status.TOKEN_MISMATCH
            if status != Status.OK:
                reject(index, status.value)
                continue

            if tx.signed:
                if sender is None:
                    reject(index, Status.UNKNOWN_ACCOUNT.value)
                    continue
                if item.signature is None or not self._signature_ok(tx, sender, item.signature):
                    reject(index, "bad_signature")
                    continue

            try:
                proof = self._state.apply(tx)
            except TransactionRejected as e:
                reject(index, e.status.value)
                continue
            except IndexOutOfRange:
                reject(index, Status.UNKNOWN_ACCOUNT.value)
                continue

            assert sender is not None
            if tx.signed:
                proof = replace(proof, pubkey=self._registry.proof(sender.account_id))
                assert item.signature is not None
                signatures.append(item.signature)
            if tx.tx_type == TxType.CREATE_TRANSFER:
                proof = replace(proof, receiver_account=self._registry.proof(tx.to_account_id))
            tally.record(
                tx,
                sender,
                TransitionResult(
                    status=Status.OK,
                    fee=tx.fee_amount,
                    burned=sender.burn if tx.tx_type == TxType.BURN_EXECUTE else 0,
                ),
            )
            included.append(tx)
            proofs.append(proof)

        if tally.fees:
            assert receiver is not None
            settlement = fee_settlement(receiver.state_id, tally.fees)
            proofs.append(self._state.apply_fee_settlement(settlement, tally.fees, tally.fee_token))
            tally.record(settlement, None, TransitionResult(status=Status.OK))
            included.append(settlement)

        meta = None
        if batch_type == BatchType.MASS_MIGRATION:
            meta = MassMigrationMeta(
                token_id=tally.token_id or 0,
                amount=tally.migrated,
                withdraw_root=tally.withdraw_root(),
                target_spoke_id=tally.spoke_id or 0,
            )

        commitment = build_commitment(
            batch_type,
            included,
            state_root=self._state.root,
            account_root=account_root,
            signature=bls.aggregate(signatures),
            mass_migration=meta,
        )
        logger.info(
            "produced %s batch: %d included, %d rejected, fees %d",
            batch_type.name,
            len(included),
            len(rejected),
            tally.fees,
        )
        return Batch(
            commitment=commitment,
            pre_state_root=pre_state_root,
            blob=encode_batch(included),
            txs=tuple(included),
            proofs=tuple(proofs),
            rejected=tuple(rejected),
        )

    def submit(self, batches: Sequence[Batch]) -> CommitmentTree:
        """Commitment tree for one ledger submission of ``batches``."""
        builder = CommitmentBuilder()
        for batch in batches:
            builder.add_commitment(batch.commitment)
        tree = builder.build()
        logger.info("commitment tree over %d batches", builder.commitment_count)
        return tree

    def dispute(self, batch: Batch) -> Verdict:
        """Replay a produced batch from its proofs alone."""
        return self._dispute_engine.dispute(
            batch.commitment, batch.pre_state_root, batch.blob, batch.proofs
        )

    @property
    def dispute_engine(self) -> DisputeEngine:
        return self._dispute_engine

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fee_receiver(self, batch_type: BatchType, fee_receiver: Optional[int]) -> Optional[UserState]:
        if batch_type not in _FEE_BEARING or fee_receiver is None:
            return None
        receiver = self._state.get(fee_receiver)
        if receiver is None:
            raise ValueError(f"Fee receiver slot {fee_receiver} is empty")
        return receiver

    def _signature_ok(self, tx: Transaction, sender: UserState, signature: tuple[int, int]) -> bool:
        if not self._verify_signatures:
            return True
        try:
            pubkey = self._registry.pubkey(sender.account_id)
        except IndexOutOfRange:
            return False
        message = signing_message(tx, pubkey, self._params.domain)
        return bls.verify(signature, pubkey, message, self._params.domain)

    def _free_subtree_start(self, size: int) -> int:
        start = 0
        while any(self._state.occupied(start + i) for i in range(size)):
            start += size
        return start
