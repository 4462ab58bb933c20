"""Proof bundles handed to a disputer.

A state proof is an account record plus the witness captured for its
slot *before* the record was changed. A pubkey proof ties an account id
to a public key, or to the empty leaf, under the registry root. Together
with the commitment and the raw blob, these are all a dispute needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from optimist.crypto.bls import PubkeyWords, pubkey_bytes, pubkey_words
from optimist.crypto.hashing import ZERO_BYTES32, hash_bytes, hex_hash, to_hash
from optimist.crypto.merkle import Witness
from optimist.models.state import UserState


@dataclass(frozen=True)
class StateProof:
    """Pre-state of one slot. ``state`` is None for an empty slot."""
    state_id: int
    state: Optional[UserState]
    witness: Witness

    def leaf_hash(self) -> bytes:
        return ZERO_BYTES32 if self.state is None else self.state.leaf_hash()

    def to_dict(self) -> dict[str, Any]:
        return {
            "state_id": self.state_id,
            "state": None if self.state is None else self.state.to_dict(),
            "siblings": [hex_hash(s) for s in self.witness.siblings],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StateProof":
        # The root a proof was taken against is never trusted by a verifier.
        return cls(
            state_id=int(data["state_id"]),
            state=None if data["state"] is None else UserState.from_dict(data["state"]),
            witness=Witness(
                index=int(data["state_id"]),
                siblings=tuple(to_hash(s) for s in data["siblings"]),
                root=ZERO_BYTES32,
            ),
        )


@dataclass(frozen=True)
class PubkeyProof:
    """Registry entry for ``account_id`` with its witness.

    ``pubkey`` is None when the id has no key, which proves the empty leaf.
    """
    account_id: int
    pubkey: Optional[PubkeyWords]
    witness: Witness

    def leaf_hash(self) -> bytes:
        return ZERO_BYTES32 if self.pubkey is None else hash_bytes(pubkey_bytes(self.pubkey))

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "pubkey": None if self.pubkey is None else [str(w) for w in self.pubkey],
            "siblings": [hex_hash(s) for s in self.witness.siblings],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PubkeyProof":
        return cls(
            account_id=int(data["account_id"]),
            pubkey=None if data["pubkey"] is None else pubkey_words(data["pubkey"]),
            witness=Witness(
                index=int(data["account_id"]),
                siblings=tuple(to_hash(s) for s in data["siblings"]),
                root=ZERO_BYTES32,
            ),
        )


@dataclass(frozen=True)
class TxProof:
    """Everything needed to replay one transaction of a batch.

    ``sender`` is absent for the fee settlement, ``receiver`` for
    single-account transactions, ``pubkey`` for unsigned ones.
    ``receiver_account`` is the registry entry a CreateTransfer opens a
    slot for.
    """
    sender: Optional[StateProof] = None
    receiver: Optional[StateProof] = None
    pubkey: Optional[PubkeyProof] = None
    receiver_account: Optional[PubkeyProof] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sender": None if self.sender is None else self.sender.to_dict(),
            "receiver": None if self.receiver is None else self.receiver.to_dict(),
            "pubkey": None if self.pubkey is None else self.pubkey.to_dict(),
            "receiver_account": None if self.receiver_account is None else self.receiver_account.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TxProof":
        def _pubkey_proof(key: str) -> Optional[PubkeyProof]:
            return None if data.get(key) is None else PubkeyProof.from_dict(data[key])

        return cls(
            sender=None if data.get("sender") is None else StateProof.from_dict(data["sender"]),
            receiver=None if data.get("receiver") is None else StateProof.from_dict(data["receiver"]),
            pubkey=_pubkey_proof("pubkey"),
            receiver_account=_pubkey_proof("receiver_account"),
        )
