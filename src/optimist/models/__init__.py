"""Data models — account records, transactions, commitments and proofs."""

from optimist.models.state import UserState
from optimist.models.transaction import (
    BurnConsent,
    BurnExecute,
    CreateTransfer,
    MassMigration,
    Transfer,
    TxType,
)
from optimist.models.commitment import BatchType, Commitment, MassMigrationMeta
from optimist.models.proof import PubkeyProof, StateProof, TxProof

__all__ = [
    "UserState",
    "Transfer",
    "CreateTransfer",
    "MassMigration",
    "BurnConsent",
    "BurnExecute",
    "TxType",
    "BatchType",
    "Commitment",
    "MassMigrationMeta",
    "StateProof",
    "PubkeyProof",
    "TxProof",
]
