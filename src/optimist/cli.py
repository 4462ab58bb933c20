"""Optimist CLI — command-line access to the rollup core.

Usage:
    python -m optimist.cli params
    python -m optimist.cli keygen
    python -m optimist.cli decode-batch 0x01000000000000000100...
    python -m optimist.cli commitment-hash commitment.json
    python -m optimist.cli dispute package.json
    python -m optimist.cli anchor --batch-id 7 --root 0xabc...
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from eth_utils import to_bytes

from optimist.config import DEFAULT_CONFIG, RollupParams
from optimist.crypto.bls import KeyPair
from optimist.crypto.hashing import hex_hash, to_hash
from optimist.engine.dispute import DisputeEngine
from optimist.errors import MalformedTransaction, MalformedWitness
from optimist.models.commitment import Commitment
from optimist.models.proof import TxProof
from optimist.models.transaction import decode_batch

ROOT = Path(__file__).resolve().parents[2]


def _load_params(args: argparse.Namespace) -> RollupParams:
    return RollupParams.load(args.config, env_file=args.env_file)


def _read_json(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


def cmd_params(args: argparse.Namespace) -> int:
    print(json.dumps(_load_params(args).to_dict(), indent=2))
    return 0


def cmd_keygen(args: argparse.Namespace) -> int:
    """Generate a BLS key pair. The secret is printed; handle it with care."""
    pair = KeyPair.generate()
    print(json.dumps(
        {"secret": hex(pair.secret), "pubkey": [str(w) for w in pair.pubkey]},
        indent=2,
    ))
    return 0


def cmd_decode_batch(args: argparse.Namespace) -> int:
    try:
        txs = decode_batch(to_bytes(hexstr=args.blob))
    except (MalformedTransaction, ValueError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps([tx.to_dict() for tx in txs], indent=2))
    return 0


def cmd_commitment_hash(args: argparse.Namespace) -> int:
    try:
        commitment = Commitment.from_dict(_read_json(args.file))
    except (KeyError, ValueError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    print(hex_hash(commitment.leaf_hash()))
    return 0


def cmd_dispute(args: argparse.Namespace) -> int:
    """Replay a dispute package. Exit 0 when the batch is valid, 2 on fraud."""
    params = _load_params(args)
    engine = DisputeEngine(params.state_depth, params.registry_depth, params.domain)
    try:
        package = _read_json(args.file)
        verdict = engine.dispute(
            Commitment.from_dict(package["commitment"]),
            to_hash(package["pre_state_root"]),
            to_bytes(hexstr=package["blob"]),
            [TxProof.from_dict(p) for p in package["proofs"]],
        )
    except (KeyError, TypeError, ValueError, MalformedWitness) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1

    print(json.dumps({
        "fraudulent": verdict.fraudulent,
        "reason": verdict.reason.value if verdict.reason else None,
        "tx_index": verdict.tx_index,
        "status": verdict.status.value if verdict.status else None,
        "computed_root": hex_hash(verdict.computed_root) if verdict.computed_root else None,
        "detail": verdict.detail,
    }, indent=2))
    return 2 if verdict.fraudulent else 0


def cmd_anchor(args: argparse.Namespace) -> int:
    """Anchor a commitment root. Needs SEPOLIA_RPC_URL and PRIVATE_KEY."""
    from optimist.crypto.anchor import anchor_to_chain

    load_dotenv(args.env_file or ROOT / ".env")
    rpc_url = os.getenv("SEPOLIA_RPC_URL")
    private_key = os.getenv("PRIVATE_KEY") or os.getenv("SEPOLIA_PRIVATE_KEY")
    if not rpc_url or not private_key:
        print("Failed: missing SEPOLIA_RPC_URL and/or PRIVATE_KEY", file=sys.stderr)
        return 1

    record = anchor_to_chain(args.batch_id, to_hash(args.root), rpc_url, private_key)
    print(json.dumps(record.__dict__, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="optimist",
        description="Optimist — rollup state transition and fraud proof CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to params JSON (default: config/params.json)",
    )
    parser.add_argument("--env-file", type=Path, help="Optional .env file with OPTIMIST_* overrides")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at debug level")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("params", help="Show deployment parameters")
    sub.add_parser("keygen", help="Generate a BLS key pair")

    p_decode = sub.add_parser("decode-batch", help="Decode a hex transaction blob")
    p_decode.add_argument("blob", help="0x-prefixed blob")

    p_hash = sub.add_parser("commitment-hash", help="Leaf hash of a commitment JSON file")
    p_hash.add_argument("file", type=Path)

    p_dispute = sub.add_parser("dispute", help="Replay a dispute package JSON file")
    p_dispute.add_argument("file", type=Path)

    p_anchor = sub.add_parser("anchor", help="Anchor a commitment root on an EVM chain")
    p_anchor.add_argument("--batch-id", type=int, required=True)
    p_anchor.add_argument("--root", required=True, help="0x-prefixed commitment root")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "params": cmd_params,
        "keygen": cmd_keygen,
        "decode-batch": cmd_decode_batch,
        "commitment-hash": cmd_commitment_hash,
        "dispute": cmd_dispute,
        "anchor": cmd_anchor,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
