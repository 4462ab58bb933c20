"""Transaction model — the closed set of rollup transaction variants.

Every variant has one canonical byte encoding: a one-byte type tag
followed by big-endian fixed-width unsigned fields. The tag alone
decides the length of the record, so a batch blob is simply the
concatenation of its transactions.

    tag  variant             fields (bytes)
    1    Transfer            from 4, to 4, amount 16, fee 16, nonce 4
    2    MassMigration       from 4, spoke 4, amount 16, fee 16, nonce 4
    3    CreateTransfer      from 4, to 4, to_account 4, token 4,
                             amount 16, fee 16, nonce 4
    5    BurnConsent         from 4, amount 16, nonce 4
    6    BurnExecute         from 4, cycle 4

A Transfer whose sender is ``NULL_STATE_INDEX`` is the fee settlement
closing a batch: it pays the collected fees to the batch's fee receiver.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, fields
from typing import Any, ClassVar, Union

from eth_utils import keccak

from optimist.crypto.bls import pubkey_bytes
from optimist.errors import MalformedTransaction

INDEX_WIDTH = 4
AMOUNT_WIDTH = 16

# Sender slot of the fee settlement transfer.
NULL_STATE_INDEX = (1 << (8 * INDEX_WIDTH)) - 1


class TxType(int, enum.Enum):
    """Transaction type tag; shares its numbering with ``BatchType``."""
    TRANSFER = 1
    MASS_MIGRATION = 2
    CREATE_TRANSFER = 3
    BURN_CONSENT = 5
    BURN_EXECUTE = 6


@dataclass(frozen=True)
class _Tx:
    tx_type: ClassVar[TxType]
    layout: ClassVar[tuple[tuple[str, int], ...]]

    def __post_init__(self) -> None:
        for name, width in self.layout:
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise MalformedTransaction(f"{name} must be an int")
            if not 0 <= value < 1 << (8 * width):
                raise MalformedTransaction(
                    f"{name}={value} does not fit in {width} bytes"
                )

    @classmethod
    def encoded_length(cls) -> int:
        return 1 + sum(width for _, width in cls.layout)

    @property
    def signed(self) -> bool:
        """Whether the sender's BLS signature must cover this transaction."""
        return True

    @property
    def fee_amount(self) -> int:
        return getattr(self, "fee", 0)

    @property
    def is_fee_settlement(self) -> bool:
        return False

    def encode(self) -> bytes:
        out = bytearray([self.tx_type.value])
        for name, width in self.layout:
            out += getattr(self, name).to_bytes(width, "big")
        return bytes(out)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.tx_type.name}
        data.update({f.name: getattr(self, f.name) for f in fields(self)})
        return data


@dataclass(frozen=True)
class Transfer(_Tx):
    from_index: int
    to_index: int
    amount: int
    fee: int
    nonce: int

    tx_type: ClassVar[TxType] = TxType.TRANSFER
    layout: ClassVar[tuple[tuple[str, int], ...]] = (
        ("from_index", INDEX_WIDTH),
        ("to_index", INDEX_WIDTH),
        ("amount", AMOUNT_WIDTH),
        ("fee", AMOUNT_WIDTH),
        ("nonce", INDEX_WIDTH),
    )

    @property
    def is_fee_settlement(self) -> bool:
        return self.from_index == NULL_STATE_INDEX

    @property
    def signed(self) -> bool:
        return not self.is_fee_settlement


def fee_settlement(fee_receiver: int, amount: int) -> Transfer:
    """The unsigned transfer that pays a batch's collected fees."""
    return Transfer(
        from_index=NULL_STATE_INDEX,
        to_index=fee_receiver,
        amount=amount,
        fee=0,
        nonce=0,
    )


@dataclass(frozen=True)
class CreateTransfer(_Tx):
    """Transfer into a fresh state slot owned by ``to_account_id``."""
    from_index: int
    to_index: int
    to_account_id: int
    token_id: int
    amount: int
    fee: int
    nonce: int

    tx_type: ClassVar[TxType] = TxType.CREATE_TRANSFER
    layout: ClassVar[tuple[tuple[str, int], ...]] = (
        ("from_index", INDEX_WIDTH),
        ("to_index", INDEX_WIDTH),
        ("to_account_id", INDEX_WIDTH),
        ("token_id", INDEX_WIDTH),
        ("amount", AMOUNT_WIDTH),
        ("fee", AMOUNT_WIDTH),
        ("nonce", INDEX_WIDTH),
    )


@dataclass(frozen=True)
class MassMigration(_Tx):
    """Exit ``amount`` towards the spoke (destination domain) ``spoke_id``."""
    from_index: int
    spoke_id: int
    amount: int
    fee: int
    nonce: int

    tx_type: ClassVar[TxType] = TxType.MASS_MIGRATION
    layout: ClassVar[tuple[tuple[str, int], ...]] = (
        ("from_index", INDEX_WIDTH),
        ("spoke_id", INDEX_WIDTH),
        ("amount", AMOUNT_WIDTH),
        ("fee", AMOUNT_WIDTH),
        ("nonce", INDEX_WIDTH),
    )


@dataclass(frozen=True)
class BurnConsent(_Tx):
    """Owner consents to ``amount`` being burned once per cycle."""
    from_index: int
    amount: int
    nonce: int

    tx_type: ClassVar[TxType] = TxType.BURN_CONSENT
    layout: ClassVar[tuple[tuple[str, int], ...]] = (
        ("from_index", INDEX_WIDTH),
        ("amount", AMOUNT_WIDTH),
        ("nonce", INDEX_WIDTH),
    )


@dataclass(frozen=True)
class BurnExecute(_Tx):
    """Operator burns the consented allowance for ``cycle``. Unsigned.

    Cycles are numbered from 1: a fresh record has ``last_burn == 0``, so
    cycle 0 counts as already executed.
    """
    from_index: int
    cycle: int

    tx_type: ClassVar[TxType] = TxType.BURN_EXECUTE
    layout: ClassVar[tuple[tuple[str, int], ...]] = (
        ("from_index", INDEX_WIDTH),
        ("cycle", INDEX_WIDTH),
    )

    @property
    def signed(self) -> bool:
        return False


Transaction = Union[Transfer, CreateTransfer, MassMigration, BurnConsent, BurnExecute]

_VARIANTS: dict[TxType, type] = {
    TxType.TRANSFER: Transfer,
    TxType.MASS_MIGRATION: MassMigration,
    TxType.CREATE_TRANSFER: CreateTransfer,
    TxType.BURN_CONSENT: BurnConsent,
    TxType.BURN_EXECUTE: BurnExecute,
}


def decode_tx(data: bytes) -> Transaction:
    """Decode exactly one transaction; the length must match its tag."""
    txs = decode_batch(data)
    if len(txs) != 1:
        raise MalformedTransaction(f"expected one transaction, found {len(txs)}")
    return txs[0]


def decode_batch(blob: bytes) -> list[Transaction]:
    """Split a batch blob into transactions.

    Raises ``MalformedTransaction`` on an unknown tag, a truncated record,
    or a field out of range.
    """
    txs: list[Transaction] = []
    offset = 0
    while offset < len(blob):
        tag = blob[offset]
        try:
            cls = _VARIANTS[TxType(tag)]
        except ValueError:
            raise MalformedTransaction(f"unknown transaction tag {tag} at byte {offset}") from None

        end = offset + cls.encoded_length()
        if end > len(blob):
            raise MalformedTransaction(
                f"truncated {cls.__name__} at byte {offset}: "
                f"need {cls.encoded_length()} bytes, have {len(blob) - offset}"
            )
        cursor = offset + 1
        values: dict[str, int] = {}
        for name, width in cls.layout:
            values[name] = int.from_bytes(blob[cursor:cursor + width], "big")
            cursor += width
        txs.append(cls(**values))
        offset = end
    return txs


def encode_batch(txs: list[Transaction]) -> bytes:
    return b"".join(tx.encode() for tx in txs)


def tx_from_dict(data: dict[str, Any]) -> Transaction:
    values = dict(data)
    try:
        cls = _VARIANTS[TxType[values.pop("type")]]
    except KeyError as e:
        raise MalformedTransaction(f"unknown transaction type {e}") from None
    return cls(**{k: int(v) for k, v in values.items()})


def signing_message(tx: Transaction, pubkey: tuple[int, ...], domain: bytes) -> bytes:
    """Message the sender signs: ``keccak(encoded tx ‖ pubkey ‖ domain)``.

    The domain separates deployments so a signature cannot be replayed
    on another rollup instance.
    """
    if len(domain) != 32:
        raise ValueError("signing domain must be 32 bytes")
    return keccak(tx.encode() + pubkey_bytes(pubkey) + domain)
