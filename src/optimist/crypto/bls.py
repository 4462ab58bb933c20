"""BLS signatures over BN254 (alt_bn128).

Public keys live in G2 and are exchanged as four ``uint256`` values in
EIP-197 order ``[x.imag, x.real, y.imag, y.real]``, the layout the
ledger's pairing precompile expects. Signatures live in G1 and are two
``uint256`` values ``[x, y]``. The point at infinity encodes as zeros.

Messages are mapped to G1 by try-and-increment: hash the domain,
message and a counter until the result is a valid x coordinate. G1 has
cofactor 1, so every curve point is in the right subgroup.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from functools import reduce
from typing import Sequence

from eth_utils import keccak
from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    G2,
    Z1,
    add,
    b,
    b2,
    curve_order,
    field_modulus,
    is_inf,
    is_on_curve,
    multiply,
    normalize,
    pairing,
)

PubkeyWords = tuple[int, int, int, int]
SignatureWords = tuple[int, int]

EMPTY_SIGNATURE: SignatureWords = (0, 0)

_SQRT_EXPONENT = (field_modulus + 1) // 4
_WORD_LIMIT = 1 << 256


@dataclass(frozen=True)
class KeyPair:
    """A BLS secret key with its derived public key."""
    secret: int
    pubkey: PubkeyWords

    @classmethod
    def generate(cls) -> "KeyPair":
        return cls.from_secret(secrets.randbelow(curve_order - 1) + 1)

    @classmethod
    def from_secret(cls, secret: int) -> "KeyPair":
        if not 0 < secret < curve_order:
            raise ValueError("secret key out of range")
        return cls(secret=secret, pubkey=encode_pubkey(multiply(G2, secret)))

    def sign(self, message: bytes, domain: bytes) -> SignatureWords:
        return sign(self.secret, message, domain)


# ----------------------------------------------------------------------
# Point encodings
# ----------------------------------------------------------------------

def encode_pubkey(point) -> PubkeyWords:
    x, y = normalize(point)
    return (int(x.coeffs[1]), int(x.coeffs[0]), int(y.coeffs[1]), int(y.coeffs[0]))


def pubkey_words(words: Sequence[int]) -> PubkeyWords:
    """Check that ``words`` are four ``uint256`` values; raises ``ValueError``."""
    if len(words) != 4:
        raise ValueError("a public key is four words")
    values = tuple(int(w) for w in words)
    if not all(0 <= w < _WORD_LIMIT for w in values):
        raise ValueError("public key words must be in the uint256 range")
    return values  # type: ignore[return-value]


def decode_pubkey(words: Sequence[int]):
    """Decode four words into a G2 point; raises ``ValueError`` if invalid."""
    x_imag, x_real, y_imag, y_real = pubkey_words(words)
    point = (FQ2([x_real, x_imag]), FQ2([y_real, y_imag]), FQ2.one())
    if not is_on_curve(point, b2):
        raise ValueError("public key is not on the G2 twist")
    if not is_inf(multiply(point, curve_order)):
        raise ValueError("public key is not in the G2 subgroup")
    return point


def pubkey_bytes(words: Sequence[int]) -> bytes:
    """``abi.encodePacked(uint256[4])`` of a public key."""
    return b"".join(w.to_bytes(32, "big") for w in pubkey_words(words))


def encode_signature(point) -> SignatureWords:
    if is_inf(point):
        return EMPTY_SIGNATURE
    x, y = normalize(point)
    return (x.n, y.n)


def decode_signature(words: Sequence[int]):
    """Decode two words into a G1 point; ``(0, 0)`` is the point at infinity."""
    if len(words) != 2:
        raise ValueError("a signature is two words")
    x, y = (int(w) for w in words)
    if (x, y) == EMPTY_SIGNATURE:
        return Z1
    point = (FQ(x), FQ(y), FQ.one())
    if not is_on_curve(point, b):
        raise ValueError("signature is not on G1")
    return point


# ----------------------------------------------------------------------
# Hash to curve, sign, aggregate, verify
# ----------------------------------------------------------------------

def hash_to_point(message: bytes, domain: bytes):
    """Map a message onto G1 (try-and-increment)."""
    for counter in range(256):
        x = int.from_bytes(keccak(domain + message + bytes([counter])), "big") % field_modulus
        rhs = (pow(x, 3, field_modulus) + 3) % field_modulus
        y = pow(rhs, _SQRT_EXPONENT, field_modulus)
        if y * y % field_modulus == rhs:
            return (FQ(x), FQ(y), FQ.one())
    raise ValueError("could not map message to G1")  # pragma: no cover


def sign(secret: int, message: bytes, domain: bytes) -> SignatureWords:
    return encode_signature(multiply(hash_to_point(message, domain), secret))


def aggregate(signatures: Sequence[Sequence[int]]) -> SignatureWords:
    """Sum signatures in G1. An empty list aggregates to the infinity point."""
    points = [decode_signature(s) for s in signatures]
    return encode_signature(reduce(add, points, Z1))


def verify(signature: Sequence[int], pubkey: Sequence[int], message: bytes, domain: bytes) -> bool:
    return verify_aggregate(signature, [pubkey], [message], domain)


def verify_aggregate(
    signature: Sequence[int],
    pubkeys: Sequence[Sequence[int]],
    messages: Sequence[bytes],
    domain: bytes,
) -> bool:
    """Check ``e(sig, G2) == prod e(H(m_i), pk_i)``.

    Malformed keys or signatures verify as False rather than raising; a
    batch carrying them is invalid, not broken.
    """
    if len(pubkeys) != len(messages):
        raise ValueError("pubkeys and messages must line up")
    try:
        sig_point = decode_signature(signature)
        key_points = [decode_pubkey(pk) for pk in pubkeys]
    except ValueError:
        return False

    if not messages:
        return is_inf(sig_point)
    if is_inf(sig_point):
        return False

    expected = pairing(G2, sig_point)
    actual = reduce(
        lambda acc, pair: acc * pairing(pair[0], hash_to_point(pair[1], domain)),
        zip(key_points, messages),
        FQ12.one(),
    )
    return expected == actual


__all__ = [
    "EMPTY_SIGNATURE",
    "KeyPair",
    "PubkeyWords",
    "SignatureWords",
    "aggregate",
    "decode_pubkey",
    "decode_signature",
    "encode_pubkey",
    "encode_signature",
    "hash_to_point",
    "pubkey_bytes",
    "sign",
    "verify",
    "verify_aggregate",
]
