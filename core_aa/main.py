import json
import logging
import sys

import uvloop

from .bundler.bundler_client import BundlerClient
from .cli_manager import InitData, parse_args
from .exceptions import (InvalidIntentException, JsonRpcException,
                         NetworkQueryFailedException,
                         SignerUnavailableException, ValidationException)
from .paymaster.paymaster_and_data import attach_paymaster
from .paymaster.paymaster_client import PaymasterClient
from .user_operation.user_operation import TransactionIntent, UserOperation
from .user_operation.user_operation_builder import UserOperationBuilder
from .user_operation.user_operation_hash import get_user_operation_hash
from .user_operation.user_operation_signer import (
    LocalSigner, sign_user_operation)
from .utils.eth_client_utils import JsonRpcTransport


def load_user_operation(path: str) -> UserOperation:
    with open(path) as user_operation_file:
        user_operation_json = json.load(user_operation_file)
    if "userOperation" in user_operation_json:
        user_operation_json = user_operation_json["userOperation"]
    return UserOperation.from_json(user_operation_json)


async def hash_command(init_data: InitData) -> dict:
    user_operation = load_user_operation(init_data.args.user_operation)
    user_operation_hash = get_user_operation_hash(
        user_operation,
        init_data.config.entrypoint_address,
        init_data.config.chain_id,
    )
    return {"userOperationHash": "0x" + user_operation_hash.hex()}


async def warn_if_paymaster_underfunded(
    init_data: InitData, user_operation: UserOperation
) -> None:
    config = init_data.config
    paymaster_client = PaymasterClient(
        JsonRpcTransport(config.rpc_url),
        paymaster_address=config.paymaster_address,
        entrypoint_address=config.entrypoint_address,
        chain_id=config.chain_id,
    )
    if not await paymaster_client.can_sponsor(user_operation):
        logging.warning(
            f"Paymaster {config.paymaster_address} deposit does not cover "
            f"the required prefund of {user_operation.get_required_prefund()}"
        )


async def build_command(init_data: InitData) -> dict:
    args = init_data.args
    config = init_data.config

    builder = UserOperationBuilder(
        JsonRpcTransport(config.rpc_url),
        query_timeout=args.query_timeout,
    )
    user_operation = await builder.build(
        args.sender,
        TransactionIntent(
            to=args.to,
            value=args.value,
            data=args.data,
            nonce=args.nonce,
        ),
        init_code=args.init_code,
    )
    if args.paymaster:
        user_operation = attach_paymaster(
            user_operation, config.paymaster_address)

    user_operation_hash = get_user_operation_hash(
        user_operation, config.entrypoint_address, config.chain_id)
    if init_data.owner_pk is not None:
        user_operation = sign_user_operation(
            user_operation,
            user_operation_hash,
            LocalSigner(init_data.owner_pk),
        )
    else:
        logging.warning("No owner key given, the UserOperation is unsigned")

    result = {
        "userOperation": user_operation.get_user_operation_json(),
        "userOperationHash": "0x" + user_operation_hash.hex(),
        "estimationFallbacks": list(user_operation.estimation_fallbacks),
    }
    if args.send:
        if args.paymaster:
            await warn_if_paymaster_underfunded(init_data, user_operation)
        bundler_client = BundlerClient(
            config.bundler_url, config.entrypoint_address)
        result["bundlerUserOperationHash"] = (
            await bundler_client.send_user_operation(user_operation)
        )
    return result


async def status_command(init_data: InitData) -> dict:
    bundler_client = BundlerClient(
        init_data.config.bundler_url, init_data.config.entrypoint_address)
    status = await bundler_client.get_user_operation_status(
        init_data.args.user_operation_hash)
    return {
        "state": str(status.state),
        "transactionHash": status.transaction_hash,
        "blockNumber": status.block_number,
        "actualGasCost": status.actual_gas_cost,
        "success": status.success,
        "error": status.error,
    }


COMMANDS = {
    "hash": hash_command,
    "build": build_command,
    "status": status_command,
}


async def run_command(init_data: InitData) -> dict:
    return await COMMANDS[init_data.command](init_data)


def main(cmd_args=sys.argv[1:]) -> None:
    try:
        init_data = parse_args(cmd_args)
        result = uvloop.run(run_command(init_data))
    except (ValidationException, InvalidIntentException,
            SignerUnavailableException) as excp:
        logging.critical(f"Invalid input: {excp.message}")
        sys.exit(1)
    except JsonRpcException as excp:
        logging.critical(f"JSON-RPC error {excp.code}: {excp.message}")
        sys.exit(1)
    except NetworkQueryFailedException as excp:
        logging.critical(f"{excp.method} failed: {excp.message}")
        sys.exit(1)
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
