"""State-transition engine — pure rules for applying one transaction.

Nothing here touches a tree. Each function takes account records and
returns a ``TransitionResult``; rule violations come back as a
``Status`` value, never as an exception. The same functions drive the
batch producer (over the live state tree) and the dispute replay (over
records lifted out of witnesses), so both sides agree by construction.

Rules, first failure wins:
1. Unknown sender, or nonce != sender.nonce + 1 (signed transactions).
2. Token mismatch: tx vs sender (CreateTransfer), sender vs receiver (Transfer).
3. amount + fee > sender.balance.
4. CreateTransfer target slot occupied; Transfer target slot empty.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from optimist.crypto.hashing import hash_uints
from optimist.crypto.merkle import MerkleTree
from optimist.errors import Status
from optimist.models.commitment import BatchType
from optimist.models.state import UserState
from optimist.models.transaction import AMOUNT_WIDTH, CreateTransfer, Transaction, Transfer, TxType


@dataclass(frozen=True)
class TransitionResult:
    """Post-state records of one transition plus its fee and burn deltas."""
    status: Status
    sender: Optional[UserState] = None
    receiver: Optional[UserState] = None
    fee: int = 0
    burned: int = 0

    @property
    def ok(self) -> bool:
        return self.status == Status.OK


TWO_PARTY = frozenset({TxType.TRANSFER, TxType.CREATE_TRANSFER})


def _rejected(status: Status) -> TransitionResult:
    return TransitionResult(status=status)


# ----------------------------------------------------------------------
# Sender side
# ----------------------------------------------------------------------

def check_sender(tx: Transaction, sender: Optional[UserState]) -> Status:
    """Rules that only need the sender's pre-state."""
    if sender is None:
        return Status.UNKNOWN_ACCOUNT

    if tx.tx_type == TxType.BURN_EXECUTE:
        # Cycles start at 1; last_burn 0 means never burned.
        if tx.cycle <= sender.last_burn:
            return Status.BURN_ALREADY_EXECUTED
        if sender.burn > sender.balance:
            return Status.INSUFFICIENT_BALANCE
        return Status.OK

    if tx.nonce != sender.nonce + 1:
        return Status.BAD_NONCE
    if tx.tx_type == TxType.CREATE_TRANSFER and tx.token_id != sender.token_id:
        return Status.TOKEN_MISMATCH
    if tx.tx_type == TxType.BURN_CONSENT:
        return Status.OK
    if tx.amount + tx.fee > sender.balance:
        return Status.INSUFFICIENT_BALANCE
    return Status.OK


def apply_sender(tx: Transaction, sender: Optional[UserState]) -> TransitionResult:
    """Apply the sender-side effects of ``tx``."""
    status = check_sender(tx, sender)
    if status != Status.OK:
        return _rejected(status)
    assert sender is not None

    if tx.tx_type == TxType.BURN_EXECUTE:
        return TransitionResult(
            status=Status.OK,
            sender=sender.evolve(balance=sender.balance - sender.burn, last_burn=tx.cycle),
            burned=sender.burn,
        )
    if tx.tx_type == TxType.BURN_CONSENT:
        return TransitionResult(
            status=Status.OK,
            sender=sender.evolve(burn=tx.amount, nonce=tx.nonce),
        )
    return TransitionResult(
        status=Status.OK,
        sender=sender.evolve(
            balance=sender.balance - tx.amount - tx.fee,
            nonce=tx.nonce,
        ),
        fee=tx.fee,
    )


# ----------------------------------------------------------------------
# Receiver side
# ----------------------------------------------------------------------

def apply_receiver(
    tx: Transfer | CreateTransfer,
    token_id: int,
    receiver: Optional[UserState],
) -> TransitionResult:
    """Credit ``tx.amount`` of ``token_id`` to the receiver slot."""
    if tx.tx_type == TxType.CREATE_TRANSFER:
        if receiver is not None:
            return _rejected(Status.SLOT_OCCUPIED)
        return TransitionResult(
            status=Status.OK,
            receiver=UserState(
                state_id=tx.to_index,
                account_id=tx.to_account_id,
                token_id=token_id,
                balance=tx.amount,
                nonce=0,
            ),
        )

    if receiver is None:
        return _rejected(Status.UNKNOWN_ACCOUNT)
    if receiver.token_id != token_id:
        return _rejected(Status.TOKEN_MISMATCH)
    return TransitionResult(
        status=Status.OK,
        receiver=receiver.evolve(balance=receiver.balance + tx.amount),
    )


def apply_fee_settlement(
    tx: Transfer,
    receiver: Optional[UserState],
    collected: int,
    fee_token: Optional[int],
) -> TransitionResult:
    """Pay the fees collected in a batch to its fee receiver."""
    if tx.amount != collected or tx.fee != 0 or tx.nonce != 0:
        return _rejected(Status.BAD_FEE_SETTLEMENT)
    if receiver is None:
        return _rejected(Status.UNKNOWN_ACCOUNT)
    if fee_token is not None and receiver.token_id != fee_token:
        return _rejected(Status.TOKEN_MISMATCH)
    return TransitionResult(
        status=Status.OK,
        receiver=receiver.evolve(balance=receiver.balance + tx.amount),
    )


# ----------------------------------------------------------------------
# Whole transaction
# ----------------------------------------------------------------------

def apply(
    tx: Transaction,
    sender: Optional[UserState],
    receiver: Optional[UserState] = None,
) -> TransitionResult:
    """Apply ``tx`` to the pre-state of its sender (and receiver).

    For a Transfer to the sender's own slot, pass the same record twice;
    the credit lands on the debited record.
    """
    if tx.is_fee_settlement:
        raise ValueError("fee settlements are applied with apply_fee_settlement")

    if sender is None:
        return _rejected(Status.UNKNOWN_ACCOUNT)
    if tx.tx_type in TWO_PARTY:
        if tx.nonce != sender.nonce + 1:
            return _rejected(Status.BAD_NONCE)
        if (
            tx.tx_type == TxType.TRANSFER
            and receiver is not None
            and receiver.token_id != sender.token_id
        ):
            return _rejected(Status.TOKEN_MISMATCH)

    debit = apply_sender(tx, sender)
    if not debit.ok or tx.tx_type not in TWO_PARTY:
        return debit
    assert debit.sender is not None

    if receiver is not None and receiver.state_id == sender.state_id:
        if tx.tx_type == TxType.CREATE_TRANSFER:
            return _rejected(Status.SLOT_OCCUPIED)
        receiver = debit.sender

    credit = apply_receiver(tx, sender.token_id, receiver)
    if not credit.ok:
        return credit
    assert credit.receiver is not None

    if credit.receiver.state_id == sender.state_id:
        return TransitionResult(status=Status.OK, sender=credit.receiver, fee=debit.fee)
    return TransitionResult(
        status=Status.OK,
        sender=debit.sender,
        receiver=credit.receiver,
        fee=debit.fee,
    )


# ----------------------------------------------------------------------
# Batch-level accounting
# ----------------------------------------------------------------------

_FEE_BEARING = {BatchType.TRANSFER, BatchType.CREATE_TRANSFER, BatchType.MASS_MIGRATION}

# Collected fees are paid out in one settlement amount field.
MAX_FEES = (1 << (8 * AMOUNT_WIDTH)) - 1


def withdrawal_leaf(sender: UserState, amount: int) -> bytes:
    return hash_uints(sender.account_id, sender.token_id, amount)


class BatchTally:
    """Running totals of one batch: fees, burns and mass-migration exports.

    Checks that a transaction belongs in the batch (type, spoke, token)
    and that fees can all be paid out in one token and one settlement
    amount. For mass migration batches the token and spoke are pinned by
    the first transaction unless given up front.
    """

    def __init__(
        self,
        batch_type: BatchType,
        token_id: Optional[int] = None,
        spoke_id: Optional[int] = None,
    ) -> None:
        self.batch_type = batch_type
        self.token_id = token_id
        self.spoke_id = spoke_id
        self.fees = 0
        self.fee_token: Optional[int] = None
        self.burned = 0
        self.migrated = 0
        self.settled = False
        self._withdrawals: list[bytes] = []

    @property
    def withdrawals(self) -> list[bytes]:
        return list(self._withdrawals)

    def check(self, tx: Transaction, sender: Optional[UserState]) -> Status:
        """Whether ``tx`` may join the batch at this point."""
        if self.settled:
            return Status.BATCH_MISMATCH
        if tx.is_fee_settlement:
            if self.batch_type not in _FEE_BEARING:
                return Status.BATCH_MISMATCH
            return Status.OK
        if tx.tx_type.value != self.batch_type.value:
            return Status.BATCH_MISMATCH
        if self.fees + tx.fee_amount > MAX_FEES:
            return Status.BAD_FEE_SETTLEMENT
        if sender is None:
            return Status.OK
        if tx.fee_amount and self.fee_token is not None and sender.token_id != self.fee_token:
            return Status.TOKEN_MISMATCH
        if tx.tx_type == TxType.MASS_MIGRATION:
            if self.token_id is not None and sender.token_id != self.token_id:
                return Status.TOKEN_MISMATCH
            if self.spoke_id is not None and tx.spoke_id != self.spoke_id:
                return Status.BATCH_MISMATCH
        return Status.OK

    def record(self, tx: Transaction, sender: Optional[UserState], result: TransitionResult) -> None:
        """Fold an applied transaction into the totals."""
        if tx.is_fee_settlement:
            self.settled = True
            return
        if result.fee:
            assert sender is not None
            self.fees += result.fee
            self.fee_token = sender.token_id
        self.burned += result.burned
        if tx.tx_type == TxType.MASS_MIGRATION:
            assert sender is not None
            if self.token_id is None:
                self.token_id = sender.token_id
            if self.spoke_id is None:
                self.spoke_id = tx.spoke_id
            self.migrated += tx.amount
            self._withdrawals.append(withdrawal_leaf(sender, tx.amount))

    def withdraw_root(self) -> bytes:
        return MerkleTree.merklise(self._withdrawals).root
