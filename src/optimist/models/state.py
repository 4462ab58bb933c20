"""Account state record model.

A state record is the balance of one token held by one registered key.
The state tree only stores the leaf hash of each record; the records
themselves are kept in the arena next to it (see ``optimist.state``).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from optimist.crypto.hashing import hash_uints

UINT256_MAX = (1 << 256) - 1


@dataclass(frozen=True)
class UserState:
    """One leaf of the state tree.

    ``burn`` is the per-cycle allowance the owner consented to, and
    ``last_burn`` the last cycle it was executed in. Both stay zero for
    accounts that never consent.
    """
    state_id: int
    account_id: int
    token_id: int
    balance: int
    nonce: int = 0
    burn: int = 0
    last_burn: int = 0

    def __post_init__(self) -> None:
        for name in ("state_id", "account_id", "token_id", "balance", "nonce", "burn", "last_burn"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise TypeError(f"{name} must be an int")
            if not 0 <= value <= UINT256_MAX:
                raise ValueError(f"{name} out of uint256 range: {value}")

    def canonical_fields(self) -> tuple[int, ...]:
        """Return all fields in canonical order for hashing."""
        return (
            self.state_id,
            self.account_id,
            self.token_id,
            self.balance,
            self.nonce,
            self.burn,
            self.last_burn,
        )

    def leaf_hash(self) -> bytes:
        return hash_uints(*self.canonical_fields())

    def evolve(self, **changes: int) -> "UserState":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state_id": self.state_id,
            "account_id": self.account_id,
            "token_id": self.token_id,
            "balance": self.balance,
            "nonce": self.nonce,
            "burn": self.burn,
            "last_burn": self.last_burn,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserState":
        return cls(**{k: int(v) for k, v in data.items()})
