"""Cryptographic primitives — Keccak hashing, sparse Merkle trees, BLS over BN254."""

from optimist.crypto.merkle import MerkleTree, Witness
from optimist.crypto.bls import KeyPair

__all__ = ["MerkleTree", "Witness", "KeyPair"]
