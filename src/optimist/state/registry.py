"""Account registry — append-only Merkle tree of BLS public keys.

Account ids are handed out in order from 0. An id, once assigned, is
never reused and its key never changes.
"""

from __future__ import annotations

import logging
from typing import Sequence

from optimist.crypto.bls import PubkeyWords, pubkey_bytes, pubkey_words
from optimist.crypto.hashing import hash_bytes
from optimist.crypto.merkle import MerkleTree, Witness
from optimist.errors import IndexOutOfRange, RegistryFull
from optimist.models.proof import PubkeyProof

logger = logging.getLogger(__name__)


def pubkey_leaf(pubkey: Sequence[int]) -> bytes:
    """``keccak256(abi.encodePacked(uint256[4]))``."""
    return hash_bytes(pubkey_bytes(pubkey))


class AccountRegistry:
    """Registry of public keys keyed by account id.

    Usage:
        registry = AccountRegistry(depth=31)
        account_id = registry.register(keypair.pubkey)
        proof = registry.proof(account_id)
    """

    def __init__(self, depth: int) -> None:
        self._tree = MerkleTree(depth)
        self._pubkeys: list[PubkeyWords] = []

    @property
    def depth(self) -> int:
        return self._tree.depth

    @property
    def size(self) -> int:
        return len(self._pubkeys)

    def root(self) -> bytes:
        return self._tree.root

    def register(self, pubkey: Sequence[int]) -> int:
        """Append ``pubkey`` and return its account id."""
        words = pubkey_words(pubkey)
        account_id = len(self._pubkeys)
        if account_id >= self._tree.capacity:
            raise RegistryFull(f"registry of depth {self.depth} holds {account_id} keys")
        self._tree.update_single(account_id, pubkey_leaf(words))
        self._pubkeys.append(words)
        logger.debug("registered account %d", account_id)
        return account_id

    def pubkey(self, account_id: int) -> PubkeyWords:
        if not 0 <= account_id < len(self._pubkeys):
            raise IndexOutOfRange(f"account {account_id} is not registered")
        return self._pubkeys[account_id]

    def witness(self, account_id: int) -> Witness:
        return self._tree.witness(account_id)

    def proof(self, account_id: int) -> PubkeyProof:
        """Registry proof for ``account_id``.

        For an id not yet assigned the proof carries no key and shows the
        empty leaf; a disputer uses it to show an account does not exist.
        """
        witness = self.witness(account_id)
        pubkey = self._pubkeys[account_id] if account_id < len(self._pubkeys) else None
        return PubkeyProof(account_id=account_id, pubkey=pubkey, witness=witness)
