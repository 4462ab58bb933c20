"""Tests for the Optimist CLI — proves the CLI dispatches correctly."""

import json
from pathlib import Path

import pytest
from eth_utils import to_hex

from optimist.cli import build_parser, main
from optimist.config import RollupParams
from optimist.models.commitment import BatchType
from optimist.models.transaction import BurnExecute, Transfer, encode_batch
from optimist.service import RollupService


@pytest.fixture
def config_file(tmp_path: Path, params: RollupParams) -> Path:
    path = tmp_path / "params.json"
    path.write_text(json.dumps(params.to_dict()), encoding="utf-8")
    return path


@pytest.fixture
def package_file(tmp_path: Path, service: RollupService, sign, alice) -> Path:
    batch = service.produce_batch(BatchType.TRANSFER, [sign(Transfer(0, 1, 5, 1, 1), alice)], fee_receiver=1)
    path = tmp_path / "package.json"
    path.write_text(json.dumps(batch.dispute_package()), encoding="utf-8")
    return path


class TestCLIParsing:
    def test_decode_batch_command(self) -> None:
        args = build_parser().parse_args(["decode-batch", "0x06"])
        assert args.command == "decode-batch"
        assert args.blob == "0x06"

    def test_anchor_command(self) -> None:
        args = build_parser().parse_args(["anchor", "--batch-id", "3", "--root", "0x" + "00" * 32])
        assert args.batch_id == 3

    def test_global_options(self, tmp_path: Path) -> None:
        args = build_parser().parse_args(["--config", str(tmp_path / "p.json"), "-v", "params"])
        assert args.config == tmp_path / "p.json"
        assert args.verbose


class TestCLIExecution:
    def test_no_command_shows_help(self) -> None:
        assert main([]) == 0

    def test_params(self, config_file: Path, capsys: pytest.CaptureFixture) -> None:
        assert main(["--config", str(config_file), "params"]) == 0
        assert json.loads(capsys.readouterr().out)["state_depth"] == 4

    def test_keygen(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["keygen"]) == 0
        output = json.loads(capsys.readouterr().out)
        assert len(output["pubkey"]) == 4

    def test_decode_batch(self, capsys: pytest.CaptureFixture) -> None:
        blob = to_hex(encode_batch([Transfer(0, 1, 5, 1, 1), BurnExecute(2, 1)]))
        assert main(["decode-batch", blob]) == 0
        decoded = json.loads(capsys.readouterr().out)
        assert [d["type"] for d in decoded] == ["TRANSFER", "BURN_EXECUTE"]
        assert decoded[0]["amount"] == 5

    def test_decode_batch_malformed(self) -> None:
        assert main(["decode-batch", "0x04"]) == 1

    def test_commitment_hash(self, tmp_path: Path, service: RollupService, capsys: pytest.CaptureFixture) -> None:
        batch = service.produce_batch(BatchType.TRANSFER, [])
        path = tmp_path / "commitment.json"
        path.write_text(json.dumps(batch.commitment.to_dict()), encoding="utf-8")
        assert main(["commitment-hash", str(path)]) == 0
        assert capsys.readouterr().out.strip() == to_hex(batch.commitment.leaf_hash())

    def test_dispute_valid(self, config_file: Path, package_file: Path, capsys: pytest.CaptureFixture) -> None:
        assert main(["--config", str(config_file), "dispute", str(package_file)]) == 0
        assert json.loads(capsys.readouterr().out)["fraudulent"] is False

    def test_dispute_fraud(self, config_file: Path, package_file: Path, capsys: pytest.CaptureFixture) -> None:
        package = json.loads(package_file.read_text(encoding="utf-8"))
        root = package["commitment"]["state_root"]
        package["commitment"]["state_root"] = root[:-1] + ("0" if root[-1] != "0" else "1")
        package_file.write_text(json.dumps(package), encoding="utf-8")

        assert main(["--config", str(config_file), "dispute", str(package_file)]) == 2
        assert json.loads(capsys.readouterr().out)["reason"] == "root_mismatch"

    @pytest.mark.parametrize("word", [-1, 1 << 256])
    def test_dispute_bad_pubkey_word(self, config_file: Path, package_file: Path, word: int) -> None:
        package = json.loads(package_file.read_text(encoding="utf-8"))
        package["proofs"][0]["pubkey"]["pubkey"][0] = str(word)
        package_file.write_text(json.dumps(package), encoding="utf-8")
        assert main(["--config", str(config_file), "dispute", str(package_file)]) == 1

    def test_dispute_wrong_depth_config(self, package_file: Path) -> None:
        """The shipped config expects depth-32 witnesses."""
        assert main(["dispute", str(package_file)]) == 1

    def test_anchor_without_credentials(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("SEPOLIA_RPC_URL", "PRIVATE_KEY", "SEPOLIA_PRIVATE_KEY"):
            monkeypatch.delenv(name, raising=False)
        empty_env = tmp_path / ".env"
        empty_env.write_text("", encoding="utf-8")
        code = main(["--env-file", str(empty_env), "anchor", "--batch-id", "1", "--root", "0x" + "00" * 32])
        assert code == 1
