"""Ledger anchoring — publishes a commitment-tree root on an EVM chain.

The rollup contract that stores roots and enforces disputes lives
outside this package. For deployments without it (testnets, audits),
a commitment root can still be anchored as tamper-evident evidence: a
0-ETH self-send whose data field is

    ANCHOR_MAGIC ‖ batch_id (uint64) ‖ commitment_root (32 bytes)

Nothing executes on-chain; the transaction is a notary stamp.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from eth_utils import to_hex

logger = logging.getLogger(__name__)

ANCHOR_MAGIC = b"OPTM"
SEPOLIA_CHAIN_ID = 11155111


@dataclass(frozen=True)
class AnchorRecord:
    """A record of a successful commitment root anchor."""
    batch_id: int
    commitment_root: str
    tx_hash: str
    block_number: int
    chain_id: int
    timestamp_utc: str


def anchor_payload(batch_id: int, commitment_root: bytes) -> bytes:
    """Data field of the anchoring transaction."""
    if len(commitment_root) != 32:
        raise ValueError("commitment root must be 32 bytes")
    if not 0 <= batch_id < 1 << 64:
        raise ValueError("batch id must fit in 8 bytes")
    return ANCHOR_MAGIC + batch_id.to_bytes(8, "big") + commitment_root


def parse_anchor_payload(data: bytes) -> tuple[int, bytes]:
    """Inverse of ``anchor_payload``: ``(batch_id, commitment_root)``."""
    if len(data) != 44 or not data.startswith(ANCHOR_MAGIC):
        raise ValueError("not a commitment anchor payload")
    return int.from_bytes(data[4:12], "big"), data[12:]


def anchor_to_chain(
    batch_id: int,
    commitment_root: bytes,
    rpc_url: str,
    private_key: str,
    chain_id: int = SEPOLIA_CHAIN_ID,
    gas: int = 30_000,
    gas_price_gwei: str = "2",
) -> AnchorRecord:
    """Anchor a commitment root by embedding it in a self-send transaction.

    Waits for one confirmation and returns the AnchorRecord.
    """
    from web3 import Web3, HTTPProvider
    from eth_account import Account

    w3 = Web3(HTTPProvider(rpc_url))
    acct = Account.from_key(private_key)

    nonce = w3.eth.get_transaction_count(acct.address)
    tx = {
        "to": acct.address,  # self-send, 0 ETH
        "value": 0,
        "gas": gas,
        "gasPrice": w3.to_wei(gas_price_gwei, "gwei"),
        "nonce": nonce,
        "chainId": chain_id,
        "data": anchor_payload(batch_id, commitment_root),
    }

    signed = acct.sign_transaction(tx)
    tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
    logger.info("anchor tx sent: %s", tx_hash.hex())

    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=300)
    logger.info("anchor confirmed in block %d", receipt.blockNumber)

    return AnchorRecord(
        batch_id=batch_id,
        commitment_root=to_hex(commitment_root),
        tx_hash=tx_hash.hex(),
        block_number=receipt.blockNumber,
        chain_id=chain_id,
        timestamp_utc=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    )
