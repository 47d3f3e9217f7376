"""CLI entry point for starksigner.

Commands that touch the signer import it lazily: ``serve`` must export
STARKSIGNER_WORKERS before the metrics registry is created.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import msgspec

from .config import (
    VALID_LOG_LEVELS,
    WORKERS_ENV_VAR,
    add_rpc_arguments,
    add_server_arguments,
    config_from_args,
)

if TYPE_CHECKING:
    from .config import Config
    from .typed_data import TypedData
    from .types import Point

PRIVATE_KEY_ENV_VAR = "STARKSIGNER_PRIVATE_KEY"

COMMANDS = ("serve", "hash", "sign", "verify", "verify-account")


class CliError(Exception):
    """A command failed; the message is printed to stderr."""


def setup_logging(log_level: str) -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="starksigner",
        description="starksigner - Starknet typed data hashing, signing and verification",
    )
    subparsers = parser.add_subparsers(dest="command")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        choices=VALID_LOG_LEVELS,
        default="WARNING",
        help="Logging level (logs go to stderr)",
    )

    document = argparse.ArgumentParser(add_help=False)
    document.add_argument("file", help="Typed data JSON document, or - for stdin")

    serve = subparsers.add_parser(
        "serve",
        help="Run the HTTP API (default)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    add_server_arguments(serve)

    hash_cmd = subparsers.add_parser("hash", parents=[common, document], help="Compute the message hash")
    hash_cmd.add_argument("--account", required=True, help="Signer account address")

    sign_cmd = subparsers.add_parser(
        "sign",
        parents=[common, document],
        help=f"Sign a typed data document with the key in ${PRIVATE_KEY_ENV_VAR}",
    )
    sign_cmd.add_argument("--account", default=None, help="Account address (default: the public key)")
    sign_cmd.add_argument(
        "--private-key-file",
        type=Path,
        default=None,
        help=f"Read the private key from this file instead of ${PRIVATE_KEY_ENV_VAR}",
    )

    verify_cmd = subparsers.add_parser(
        "verify",
        parents=[common, document],
        help="Verify a signature against a public key",
    )
    verify_cmd.add_argument("--public-key", required=True, help="Stark public key: x-coordinate or uncompressed 0x04 key")
    verify_cmd.add_argument("--signature", nargs="+", required=True, metavar="FELT", help="r s [extra]")
    verify_cmd.add_argument("--account", default=None, help="Account address (default: the public key)")

    account_cmd = subparsers.add_parser(
        "verify-account",
        parents=[common, document],
        help="Verify a signature with the account contract over JSON-RPC",
    )
    account_cmd.add_argument("--account", required=True, help="Account contract address")
    account_cmd.add_argument("--signature", nargs="+", required=True, metavar="FELT", help="r s [extra]")
    add_rpc_arguments(account_cmd, required=True)

    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse arguments, running ``serve`` when no command is given."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or (args[0] not in COMMANDS and args[0] not in ("-h", "--help")):
        args.insert(0, "serve")
    return build_parser().parse_args(args)


def load_typed_data(path: str) -> TypedData:
    from .typed_data import TypedData

    raw = sys.stdin.buffer.read() if path == "-" else Path(path).read_bytes()
    return TypedData.from_json(raw)


def read_private_key(key_file: Path | None) -> int:
    """Read the signing key. Error messages never include the key text."""
    from .models import parse_felt

    if key_file is not None:
        text = key_file.read_text().strip()
    else:
        text = os.environ.get(PRIVATE_KEY_ENV_VAR, "").strip()
        if not text:
            raise CliError(f"No private key: set {PRIVATE_KEY_ENV_VAR} or pass --private-key-file")
    try:
        return parse_felt(text)
    except ValueError:
        raise CliError("Private key must be a decimal or 0x-prefixed hex number") from None


def _parse_number(name: str, value: str) -> int:
    from .models import parse_felt

    try:
        return parse_felt(value)
    except ValueError as e:
        raise CliError(f"{name} must be a decimal or 0x-prefixed hex number") from e


def _parse_public_key(value: str) -> int | Point:
    from .curve import parse_public_key

    try:
        return parse_public_key(value)
    except ValueError as e:
        raise CliError(f"--public-key is invalid: {e}") from e


def write_json(data: dict[str, Any]) -> None:
    sys.stdout.write(msgspec.json.format(msgspec.json.encode(data), indent=2).decode() + "\n")


def cmd_hash(args: argparse.Namespace) -> None:
    from .signer import Signer

    typed_data = load_typed_data(args.file)
    account = _parse_number("--account", args.account)
    message_hash = Signer().hash_typed_data(typed_data, account)
    write_json(
        {
            "message_hash": hex(message_hash),
            "domain_hash": hex(typed_data.domain_hash()),
            "struct_hash": hex(typed_data.struct_hash()),
            "account": hex(account),
        },
    )


def cmd_sign(args: argparse.Namespace) -> None:
    from .curve import encode_public_key
    from .signer import Signer

    typed_data = load_typed_data(args.file)
    account = None if args.account is None else _parse_number("--account", args.account)
    signed = Signer().sign_typed_data(typed_data, read_private_key(args.private_key_file), account)
    write_json(
        {
            "message_hash": hex(signed.message_hash),
            "signature": signed.signature.to_hex(),
            "public_key": hex(signed.public_key),
            "public_key_y": hex(signed.public_point[1]),
            "full_public_key": encode_public_key(signed.public_point),
            "account": hex(signed.public_key if account is None else account),
        },
    )


def cmd_verify(args: argparse.Namespace) -> None:
    from .models import Signature
    from .signer import Signer

    typed_data = load_typed_data(args.file)
    signature = Signature.from_sequence(args.signature)
    public_key = _parse_public_key(args.public_key)
    account = None if args.account is None else _parse_number("--account", args.account)
    result = Signer().verify_typed_data(typed_data, signature, public_key, account)
    write_json({"valid": result.valid, "message_hash": hex(result.message_hash)})


async def _verify_account(args: argparse.Namespace, config: Config) -> dict[str, Any]:
    from .models import Signature
    from .rpc import RemoteVerifier, StarknetRpcClient
    from .signer import Signer

    typed_data = load_typed_data(args.file)
    signature = Signature.from_sequence(args.signature)
    account = _parse_number("--account", args.account)

    async with StarknetRpcClient(args.rpc_url, timeout=config.rpc_timeout) as client:
        signer = Signer(RemoteVerifier(client, block_id=config.block_id))
        result = await signer.verify_typed_data_remote(typed_data, account, signature)
    return {"valid": result.valid, "message_hash": hex(result.message_hash), "account": hex(account)}


def cmd_verify_account(args: argparse.Namespace) -> None:
    config = config_from_args(args)
    write_json(asyncio.run(_verify_account(args, config)))


def cmd_serve(args: argparse.Namespace) -> None:
    config = config_from_args(args)
    os.environ[WORKERS_ENV_VAR] = str(config.workers)

    from .server import run_server

    run_server(config)


HANDLERS = {
    "hash": cmd_hash,
    "sign": cmd_sign,
    "verify": cmd_verify,
    "verify-account": cmd_verify_account,
}


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level.upper())

    if args.command == "serve":
        try:
            cmd_serve(args)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        except KeyboardInterrupt:
            print("\nShutting down...")
            sys.exit(0)
        except Exception:
            logging.getLogger(__name__).exception("Server error")
            sys.exit(1)
        return

    from .curve import InvalidScalarError
    from .models import InvalidSignatureFormat
    from .rpc import RemoteVerificationError
    from .schema import SchemaError
    from .signer import SigningError
    from .typed_data import EncodingError

    try:
        HANDLERS[args.command](args)
    except (
        CliError,
        SchemaError,
        EncodingError,
        InvalidSignatureFormat,
        InvalidScalarError,
        SigningError,
        RemoteVerificationError,
        ValueError,
        OSError,
    ) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
