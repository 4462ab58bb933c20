"""Tests for commitment root anchoring."""

from types import SimpleNamespace

import pytest

from optimist.crypto import anchor
from optimist.crypto.anchor import ANCHOR_MAGIC, anchor_payload, anchor_to_chain, parse_anchor_payload

ROOT = b"\xab" * 32


class TestPayload:
    def test_layout(self) -> None:
        payload = anchor_payload(7, ROOT)
        assert len(payload) == 44
        assert payload.startswith(ANCHOR_MAGIC)
        assert parse_anchor_payload(payload) == (7, ROOT)

    def test_root_length(self) -> None:
        with pytest.raises(ValueError):
            anchor_payload(7, b"\xab" * 31)

    def test_batch_id_range(self) -> None:
        with pytest.raises(ValueError):
            anchor_payload(1 << 64, ROOT)

    def test_foreign_payload(self) -> None:
        with pytest.raises(ValueError):
            parse_anchor_payload(b"GNSS" + b"\x00" * 40)


class _FakeEth:
    def __init__(self) -> None:
        self.sent: list[bytes] = []

    def get_transaction_count(self, address: str) -> int:
        return 3

    def send_raw_transaction(self, raw: bytes) -> bytes:
        self.sent.append(bytes(raw))
        return b"\x01" * 32

    def wait_for_transaction_receipt(self, tx_hash: bytes, timeout: int) -> SimpleNamespace:
        return SimpleNamespace(blockNumber=42)


class _FakeWeb3:
    instances: list["_FakeWeb3"] = []

    def __init__(self, provider: object) -> None:
        self.eth = _FakeEth()
        _FakeWeb3.instances.append(self)

    @staticmethod
    def to_wei(value: str, unit: str) -> int:
        return int(value) * 10**9


class TestAnchorToChain:
    def test_sends_signed_self_transfer(self, monkeypatch: pytest.MonkeyPatch) -> None:
        import web3

        monkeypatch.setattr(web3, "Web3", _FakeWeb3)
        monkeypatch.setattr(web3, "HTTPProvider", lambda url: url)

        record = anchor_to_chain(9, ROOT, "http://localhost:8545", "0x" + "11" * 32)

        assert record.block_number == 42
        assert record.batch_id == 9
        assert record.chain_id == anchor.SEPOLIA_CHAIN_ID
        assert record.commitment_root == "0x" + "ab" * 32
        assert record.tx_hash == "01" * 32
        sent = _FakeWeb3.instances[-1].eth.sent
        assert len(sent) == 1
        assert anchor_payload(9, ROOT) in sent[0]
