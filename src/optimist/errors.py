"""Error kinds raised by the rollup core.

Two families live here:

1. Faults: programming or capacity errors (bad index, misaligned
   subtree, full registry, malformed encodings or witnesses). These are
   raised and never retried.
2. Rejections: a well-formed transaction that breaks a transition rule.
   The transition engine reports these as ``Status`` values; the state
   tree wraps them in ``TransactionRejected`` so a batch producer can
   drop the transaction and carry on.

Dispute outcomes are neither: they are ``Verdict`` values returned by
the dispute engine.
"""

from __future__ import annotations

import enum


class Status(str, enum.Enum):
    """Outcome of applying one transaction to its account records."""
    OK = "ok"
    BAD_NONCE = "bad_nonce"
    TOKEN_MISMATCH = "token_mismatch"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    SLOT_OCCUPIED = "slot_occupied"
    UNKNOWN_ACCOUNT = "unknown_account"
    BURN_ALREADY_EXECUTED = "burn_already_executed"
    BAD_FEE_SETTLEMENT = "bad_fee_settlement"
    BATCH_MISMATCH = "batch_mismatch"


class OptimistError(Exception):
    """Base class for all rollup core faults."""


class IndexOutOfRange(OptimistError):
    """Raised when a leaf index falls outside ``[0, 2**depth)``."""


class MisalignedSubtree(OptimistError):
    """Raised when a subtree write is not a power of two or not aligned."""


class RegistryFull(OptimistError):
    """Raised when every leaf of the account registry is taken."""


class SlotOccupied(OptimistError):
    """Raised when creating an account on a slot that already holds one."""


class MalformedTransaction(OptimistError):
    """Raised when a transaction encoding has a bad length, tag or field."""


class MalformedWitness(OptimistError):
    """Raised when dispute inputs are structurally unusable.

    A witness with the wrong number of siblings, or a proof list that
    does not line up with the transactions, is a fault of the caller,
    not evidence of fraud.
    """


class StaleWitness(OptimistError):
    """Raised when a witness was taken against a root that has since moved."""


class TransactionRejected(OptimistError):
    """Raised by the state tree when a transaction breaks a transition rule.

    The account records are left untouched.
    """

    def __init__(self, status: Status, detail: str = "") -> None:
        self.status = status
        self.detail = detail
        message = status.value if not detail else f"{status.value}: {detail}"
        super().__init__(message)
