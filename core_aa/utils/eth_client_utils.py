import asyncio
import itertools
import json
import logging
from typing import Any

from aiohttp import ClientError, ClientSession, ClientTimeout
from eth_utils import to_checksum_address

from core_aa.exceptions import JsonRpcException, NetworkQueryFailedException
from core_aa.typing import Address, TransactionHash


async def send_rpc_request_to_eth_client(
    ethereum_node_url: str,
    method: str,
    params=None,
    request_id: int = 1,
    timeout: float | None = None,
) -> Any:
    json_request = {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": method,
        "params": params if params is not None else [],
    }
    headers = {
        "content-type": "application/json",
        "connection": "keep-alive"
    }
    try:
        async with ClientSession(
            timeout=ClientTimeout(total=timeout)
        ) as session:
            async with session.post(
                ethereum_node_url,
                json=json_request,
                headers=headers
            ) as response:
                resp = await response.read()
                return json.loads(resp)
    except json.decoder.JSONDecodeError:
        logging.error(f"Invalid json response from {ethereum_node_url} for {method}")
        raise NetworkQueryFailedException(
            method, "Invalid json response from eth client")
    except asyncio.TimeoutError:
        logging.error(f"Call to {ethereum_node_url} timed out for {method}")
        raise NetworkQueryFailedException(method, "Request timed out")
    except ClientError as excp:
        logging.error(
            f"Call to {ethereum_node_url} failed for {method}. error: {str(excp)}"
        )
        raise NetworkQueryFailedException(method, str(excp))


class JsonRpcTransport:
    """JSON-RPC 2.0 over HTTP bound to a single node or bundler url.

    Request ids come from a counter owned by the transport instance, so
    separate transports never share id state.
    """

    def __init__(self, url: str, timeout: float | None = None):
        self.url = url
        self.timeout = timeout
        self._request_ids = itertools.count(1)

    def next_request_id(self) -> int:
        return next(self._request_ids)

    async def request(self, method: str, params=None) -> Any:
        json_result = await send_rpc_request_to_eth_client(
            self.url,
            method,
            params,
            self.next_request_id(),
            self.timeout,
        )
        if not isinstance(json_result, dict):
            raise NetworkQueryFailedException(
                method, f"Unexpected response: {json_result}")
        if "error" in json_result:
            error = json_result["error"]
            if not isinstance(error, dict):
                raise JsonRpcException(-32603, str(error))
            raise JsonRpcException(
                error.get("code", -32603),
                error.get("message", "Unknown error"),
                error.get("data"),
            )
        if "result" not in json_result:
            raise NetworkQueryFailedException(
                method, f"Missing result in response: {json_result}")
        return json_result["result"]


async def eth_call(
    transport: JsonRpcTransport,
    to: Address,
    call_data: bytes,
    block: str = "latest",
) -> bytes:
    result = await transport.request(
        "eth_call",
        [{"to": to, "data": "0x" + call_data.hex()}, block],
    )
    return bytes.fromhex(result[2:])


async def get_code(
    transport: JsonRpcTransport, address: Address, block: str = "latest"
) -> bytes:
    result = await transport.request("eth_getCode", [address, block])
    return bytes.fromhex(result[2:])


async def get_block_info(
    transport: JsonRpcTransport, block_number_hex: str = "latest"
) -> tuple[int, int | None, int, str]:
    latest_block = await transport.request(
        "eth_getBlockByNumber", [block_number_hex, False]
    )

    latest_block_number = int(latest_block["number"], 16)

    if "baseFeePerGas" in latest_block:
        latest_block_basefee = int(latest_block["baseFeePerGas"], 16)
    else:  # for block requested before the EIP-1559 upgrade
        latest_block_basefee = None

    latest_block_timestamp = int(latest_block["timestamp"], 16)
    latest_block_hash = latest_block["hash"]

    return (
        latest_block_number,
        latest_block_basefee,
        latest_block_timestamp,
        latest_block_hash,
    )


async def get_fee_data(
    transport: JsonRpcTransport,
) -> tuple[int, int] | None:
    """Returns (max_fee_per_gas, max_priority_fee_per_gas), or None when the
    chain has no base fee."""
    block_info, max_priority_fee_per_gas_hex = await asyncio.gather(
        get_block_info(transport),
        transport.request("eth_maxPriorityFeePerGas", []),
    )
    base_fee = block_info[1]
    if base_fee is None:
        return None
    max_priority_fee_per_gas = int(max_priority_fee_per_gas_hex, 16)
    max_fee_per_gas = 2 * base_fee + max_priority_fee_per_gas
    return max_fee_per_gas, max_priority_fee_per_gas


async def send_transaction(
    transport: JsonRpcTransport,
    signer,
    chain_id: int,
    to: Address,
    call_data: bytes,
    value: int = 0,
) -> TransactionHash:
    call_object = {
        "from": signer.address,
        "to": to,
        "data": "0x" + call_data.hex(),
        "value": hex(value),
    }
    gas_estimation_hex, nonce_hex, fee_data = await asyncio.gather(
        transport.request("eth_estimateGas", [call_object]),
        transport.request(
            "eth_getTransactionCount", [signer.address, "latest"]),
        get_fee_data(transport),
    )

    txnDict = {
        "chainId": chain_id,
        "to": to_checksum_address(to),
        "nonce": int(nonce_hex, 16),
        "gas": int(gas_estimation_hex, 16),
        "data": call_data,
        "value": value,
    }
    if fee_data is None:
        gas_price_hex = await transport.request("eth_gasPrice", [])
        txnDict["gasPrice"] = int(gas_price_hex, 16)
    else:
        max_fee_per_gas, max_priority_fee_per_gas = fee_data
        txnDict.update(
            {
                "maxFeePerGas": max_fee_per_gas,
                "maxPriorityFeePerGas": max_priority_fee_per_gas,
            }
        )
    raw_transaction = signer.sign_transaction(txnDict)

    transaction_hash = await transport.request(
        "eth_sendRawTransaction", ["0x" + raw_transaction.hex()]
    )
    logging.info(f"Sent transaction {transaction_hash} to {to}")
    return TransactionHash(transaction_hash)
