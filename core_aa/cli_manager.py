import logging
import os
import re
from argparse import ArgumentParser, ArgumentTypeError, Namespace
from dataclasses import dataclass

from .config import (CORE_TESTNET_CHAIN_ID, CORE_TESTNET_RPC_URL,
                     DEFAULT_ENTRYPOINT_ADDRESS, DEFAULT_PAYMASTER_ADDRESS,
                     CoreAAConfig)
from .typing import Address
from .user_operation.user_operation import is_user_operation_hash
from .utils.import_key import (DEFAULT_KEYSTORE_PATTERN,
                               import_owner_private_key,
                               public_address_from_private_key)


@dataclass()
class InitData:
    command: str
    config: CoreAAConfig
    owner_pk: str | None
    owner_address: Address | None
    args: Namespace


def address(ep: str):
    address_pattern = "^0x[0-9a-fA-F]{40}$"
    if not isinstance(ep, str) or re.match(address_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong address format : {ep}")
    return ep


def unsigned_int(value):
    ivalue = int(value, 0) if isinstance(value, str) else int(value)
    if ivalue < 0:
        raise ArgumentTypeError(
                "%s is an invalid unsigned int value" % value)
    return ivalue


def hex_bytes(value: str):
    if not isinstance(value, str) or value[:2] != "0x":
        raise ArgumentTypeError(f"Wrong hex format : {value}")
    try:
        return bytes.fromhex(value[2:])
    except ValueError:
        raise ArgumentTypeError(f"Wrong hex format : {value}")


def user_operation_hash(value: str):
    if not is_user_operation_hash(value):
        raise ArgumentTypeError(f"Wrong UserOperation hash format : {value}")
    return value


def _get_env_or_default(env_var, default, value_type):
    """
    Helper function to get the value from an environment variable or return the default value.
    """
    value = os.getenv(env_var, None)
    if value is not None:
        return value_type(value)
    return default


def initialize_argument_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="core-aa",
        description="ERC-4337 UserOperation builder, signer and bundler client",
    )

    parser.add_argument(
        "--chain_id",
        type=unsigned_int,
        help="Chain id - defaults to Core testnet (1114)",
        nargs="?",
        default=_get_env_or_default(
            "CORE_AA_CHAIN_ID", CORE_TESTNET_CHAIN_ID, unsigned_int),
    )

    parser.add_argument(
        "--rpc_url",
        type=str,
        help="Eth client JSON-RPC url - defaults to Core testnet rpc",
        nargs="?",
        default=_get_env_or_default(
            "CORE_AA_RPC_URL", CORE_TESTNET_RPC_URL, str),
    )

    parser.add_argument(
        "--bundler_url",
        type=str,
        help="Bundler JSON-RPC url",
        nargs="?",
        default=_get_env_or_default("CORE_AA_BUNDLER_URL", None, str),
    )

    parser.add_argument(
        "--entrypoint",
        type=address,
        help="EntryPoint address",
        nargs="?",
        default=_get_env_or_default(
            "CORE_AA_ENTRYPOINT", DEFAULT_ENTRYPOINT_ADDRESS, address),
    )

    parser.add_argument(
        "--paymaster_address",
        type=address,
        help="Paymaster address",
        nargs="?",
        default=_get_env_or_default(
            "CORE_AA_PAYMASTER_ADDRESS", DEFAULT_PAYMASTER_ADDRESS, address),
    )

    parser.add_argument(
        "--account_factory",
        type=address,
        help="SimpleAccount factory address",
        nargs="?",
        default=_get_env_or_default("CORE_AA_ACCOUNT_FACTORY", None, address),
    )

    parser.add_argument(
        "--query_timeout",
        type=float,
        help="Timeout in seconds for the nonce and fee lookups",
        nargs="?",
        default=_get_env_or_default("CORE_AA_QUERY_TIMEOUT", None, float),
    )

    parser.add_argument(
        "--verbose",
        help="show debug log",
        action="store_true",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    hash_parser = subparsers.add_parser(
        "hash", help="Print the hash of a UserOperation json file")
    hash_parser.add_argument(
        "--user_operation",
        type=str,
        help="Path to a json file holding a UserOperation",
        required=True,
    )

    build_parser = subparsers.add_parser(
        "build", help="Build and sign a UserOperation")
    group = build_parser.add_mutually_exclusive_group(required=False)
    group.add_argument(
        "--owner_secret",
        type=str,
        help="Account owner private key",
        nargs="?",
        default=_get_env_or_default("CORE_AA_OWNER_SECRET", None, str),
    )
    group.add_argument(
        "--keystore_file_path",
        type=str,
        help=(
            "Account owner keystore file path or glob pattern - "
            "the first matching file is used"
        ),
        nargs="?",
        const=DEFAULT_KEYSTORE_PATTERN,
        default=_get_env_or_default("CORE_AA_KEYSTORE_FILE_PATH", None, str),
    )
    build_parser.add_argument(
        "--keystore_file_password",
        type=str,
        help="Keystore file password - defaults to no password",
        nargs="?",
        const="",
        default=_get_env_or_default(
            "CORE_AA_KEYSTORE_FILE_PASSWORD", "", str),
    )
    build_parser.add_argument(
        "--sender", type=address, help="Smart account address", required=True)
    build_parser.add_argument(
        "--to", type=address, help="Call destination", required=True)
    build_parser.add_argument(
        "--value", type=unsigned_int, help="Call value in wei", default=0)
    build_parser.add_argument(
        "--data", type=hex_bytes, help="Call data as 0x hex", default=b"")
    build_parser.add_argument(
        "--nonce", type=unsigned_int, help="Nonce override", default=None)
    build_parser.add_argument(
        "--init_code",
        type=hex_bytes,
        help="Account init code as 0x hex",
        default=b"",
    )
    build_parser.add_argument(
        "--paymaster",
        help="Attach the configured paymaster",
        action="store_true",
    )
    build_parser.add_argument(
        "--send",
        help="Submit the signed UserOperation to the bundler",
        action="store_true",
    )

    status_parser = subparsers.add_parser(
        "status", help="Print the bundler status of a UserOperation")
    status_parser.add_argument(
        "--user_operation_hash",
        type=user_operation_hash,
        help="UserOperation hash",
        required=True,
    )

    return parser


def parse_args(cmd_args: list[str]) -> InitData:
    argument_parser: ArgumentParser = initialize_argument_parser()
    args = argument_parser.parse_args(cmd_args)
    if args.command == "build":
        if args.owner_secret and args.keystore_file_path:
            argument_parser.error(
                "You can only specify either --owner_secret or "
                "--keystore_file_path but not both at the same time"
            )
        if args.send and not (args.owner_secret or args.keystore_file_path):
            argument_parser.error(
                "--send requires --owner_secret or --keystore_file_path")
    if args.command == "status" or getattr(args, "send", False):
        if args.bundler_url is None:
            argument_parser.error(
                "--bundler_url (or CORE_AA_BUNDLER_URL) is required")
    return get_init_data(args)


def init_logging(args: Namespace):
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(message)s",
        datefmt="%b %d %H:%M:%S",
    )


def init_owner_address_and_secret(
    args: Namespace,
) -> tuple[Address | None, str | None]:
    if getattr(args, "keystore_file_path", None) is not None:
        owner_pk = import_owner_private_key(
            args.keystore_file_password, args.keystore_file_path
        )
    elif getattr(args, "owner_secret", None) is not None:
        owner_pk = args.owner_secret
    else:
        return None, None
    return Address(public_address_from_private_key(owner_pk)), owner_pk


def get_init_data(args: Namespace) -> InitData:
    init_logging(args)

    owner_address, owner_pk = init_owner_address_and_secret(args)

    config = CoreAAConfig(
        chain_id=args.chain_id,
        rpc_url=args.rpc_url,
        entrypoint_address=args.entrypoint,
        account_factory_address=args.account_factory,
        paymaster_address=args.paymaster_address,
        bundler_url=args.bundler_url,
    )
    logging.debug(f"Using configuration {config}")

    return InitData(
        command=args.command,
        config=config,
        owner_pk=owner_pk,
        owner_address=owner_address,
        args=args,
    )
