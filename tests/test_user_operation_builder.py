import asyncio

import pytest
from eth_abi import encode
from eth_utils import keccak

from core_aa.config import DEFAULT_FEE_PER_GAS
from core_aa.exceptions import (InvalidIntentException, JsonRpcException,
                                NetworkQueryFailedException)
from core_aa.user_operation.user_operation import TransactionIntent
from core_aa.user_operation.user_operation_builder import UserOperationBuilder

from conftest import DESTINATION, SENDER, FakeEthClient, uint256_result

LATEST_BLOCK = {
    "number": "0x10",
    "baseFeePerGas": "0x64",
    "timestamp": "0x6553f100",
    "hash": "0x" + "aa" * 32,
}


def eth_client_with(**responses) -> FakeEthClient:
    defaults = {
        "eth_call": uint256_result(7),
        "eth_getBlockByNumber": LATEST_BLOCK,
        "eth_maxPriorityFeePerGas": "0xa",
    }
    defaults.update(responses)
    return FakeEthClient(defaults)


@pytest.mark.asyncio
async def test_build_queries_nonce_and_fees():
    eth_client = eth_client_with()
    builder = UserOperationBuilder(eth_client)

    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION, value=10, data=b"\x01\x02"))

    assert user_operation.sender_address == SENDER
    assert user_operation.nonce == 7
    # 2 * base fee + priority fee
    assert user_operation.max_fee_per_gas == 210
    assert user_operation.max_priority_fee_per_gas == 10
    assert user_operation.signature == b""
    assert user_operation.init_code == b""
    assert user_operation.paymaster_and_data == b""
    assert user_operation.estimation_fallbacks == ()

    nonce_call = eth_client.calls[eth_client.methods().index("eth_call")]
    assert nonce_call[1][0] == {
        "to": SENDER, "data": "0x" + keccak(text="nonce()")[:4].hex()}


@pytest.mark.asyncio
async def test_call_data_wraps_execute():
    builder = UserOperationBuilder(eth_client_with())
    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION, value=10, data=b"\x01\x02"))

    expected = keccak(text="execute(address,uint256,bytes)")[:4] + encode(
        ["address", "uint256", "bytes"], [DESTINATION, 10, b"\x01\x02"])
    assert user_operation.call_data == expected


@pytest.mark.asyncio
async def test_intent_defaults():
    builder = UserOperationBuilder(eth_client_with())
    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION))

    expected = keccak(text="execute(address,uint256,bytes)")[:4] + encode(
        ["address", "uint256", "bytes"], [DESTINATION, 0, b""])
    assert user_operation.call_data == expected


@pytest.mark.asyncio
async def test_placeholder_gas_limits_and_override():
    user_operation = await UserOperationBuilder(eth_client_with()).build(
        SENDER, TransactionIntent(to=DESTINATION))
    assert user_operation.call_gas_limit == 100000
    assert user_operation.verification_gas_limit == 100000
    assert user_operation.pre_verification_gas == 50000

    builder = UserOperationBuilder(
        eth_client_with(), gas_limits={"verification": 400000})
    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION))
    assert user_operation.call_gas_limit == 100000
    assert user_operation.verification_gas_limit == 400000


@pytest.mark.asyncio
async def test_nonce_fallback_to_zero():
    eth_client = eth_client_with(
        eth_call=JsonRpcException(3, "execution reverted"))
    builder = UserOperationBuilder(eth_client)

    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION))

    assert user_operation.nonce == 0
    assert user_operation.estimation_fallbacks == ("nonce",)


@pytest.mark.asyncio
async def test_nonce_fallback_for_undeployed_account():
    # eth_call to an address without code returns empty data
    builder = UserOperationBuilder(eth_client_with(eth_call="0x"))
    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION))
    assert user_operation.nonce == 0
    assert "nonce" in user_operation.estimation_fallbacks


@pytest.mark.asyncio
async def test_nonce_override_skips_lookup():
    eth_client = eth_client_with()
    builder = UserOperationBuilder(eth_client)

    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION, nonce=0))

    assert user_operation.nonce == 0
    assert user_operation.estimation_fallbacks == ()
    assert "eth_call" not in eth_client.methods()


@pytest.mark.asyncio
async def test_fee_overrides_skip_lookup():
    eth_client = eth_client_with()
    builder = UserOperationBuilder(eth_client)

    user_operation = await builder.build(
        SENDER,
        TransactionIntent(
            to=DESTINATION,
            max_fee_per_gas=500,
            max_priority_fee_per_gas=20,
        ),
    )

    assert user_operation.max_fee_per_gas == 500
    assert user_operation.max_priority_fee_per_gas == 20
    assert "eth_getBlockByNumber" not in eth_client.methods()
    assert "eth_maxPriorityFeePerGas" not in eth_client.methods()


@pytest.mark.asyncio
async def test_partial_fee_override():
    builder = UserOperationBuilder(eth_client_with())
    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION, max_fee_per_gas=500))
    assert user_operation.max_fee_per_gas == 500
    assert user_operation.max_priority_fee_per_gas == 10


@pytest.mark.asyncio
async def test_fee_fallback_for_legacy_block():
    legacy_block = dict(LATEST_BLOCK)
    del legacy_block["baseFeePerGas"]
    builder = UserOperationBuilder(
        eth_client_with(eth_getBlockByNumber=legacy_block))

    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION))

    assert user_operation.max_fee_per_gas == DEFAULT_FEE_PER_GAS
    assert user_operation.max_priority_fee_per_gas == DEFAULT_FEE_PER_GAS
    assert user_operation.estimation_fallbacks == (
        "max_fee_per_gas", "max_priority_fee_per_gas")


@pytest.mark.asyncio
async def test_everything_falls_back_when_node_is_down():
    down = NetworkQueryFailedException("eth_call", "Connection refused")
    eth_client = FakeEthClient({
        "eth_call": down,
        "eth_getBlockByNumber": down,
        "eth_maxPriorityFeePerGas": down,
    })
    builder = UserOperationBuilder(eth_client, default_fee_per_gas=7)

    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION))

    assert user_operation.nonce == 0
    assert user_operation.max_fee_per_gas == 7
    assert user_operation.max_priority_fee_per_gas == 7
    assert user_operation.estimation_fallbacks == (
        "nonce", "max_fee_per_gas", "max_priority_fee_per_gas")


@pytest.mark.asyncio
async def test_query_timeout_falls_back():
    async def slow_call(params):
        await asyncio.sleep(5)
        return uint256_result(7)

    builder = UserOperationBuilder(
        eth_client_with(eth_call=slow_call), query_timeout=0.05)

    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION))

    assert user_operation.nonce == 0
    assert user_operation.estimation_fallbacks == ("nonce",)
    assert user_operation.max_fee_per_gas == 210


@pytest.mark.asyncio
async def test_nonce_and_fee_queries_run_concurrently():
    fee_query_started = asyncio.Event()

    async def nonce_call(params):
        # only completes if the fee query is already in flight
        await asyncio.wait_for(fee_query_started.wait(), 1)
        return uint256_result(3)

    def latest_block(params):
        fee_query_started.set()
        return LATEST_BLOCK

    builder = UserOperationBuilder(eth_client_with(
        eth_call=nonce_call, eth_getBlockByNumber=latest_block))

    user_operation = await builder.build(
        SENDER, TransactionIntent(to=DESTINATION))

    assert user_operation.nonce == 3
    assert user_operation.estimation_fallbacks == ()


@pytest.mark.asyncio
async def test_init_code_and_paymaster_and_data_are_kept():
    builder = UserOperationBuilder(eth_client_with())
    user_operation = await builder.build(
        SENDER,
        TransactionIntent(to=DESTINATION),
        init_code=b"\x55" * 20 + b"\x01",
        paymaster_and_data="0x" + "44" * 20,
    )
    assert user_operation.init_code == b"\x55" * 20 + b"\x01"
    assert user_operation.paymaster_and_data == b"\x44" * 20


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "sender, intent",
    [
        ("", TransactionIntent(to=DESTINATION)),
        ("0x1234", TransactionIntent(to=DESTINATION)),
        (SENDER, TransactionIntent(to=None)),
        (SENDER, TransactionIntent(to="0xnot-an-address")),
        (SENDER, TransactionIntent(to=DESTINATION, value=-1)),
        (SENDER, TransactionIntent(to=DESTINATION, data="abcd")),
        (SENDER, TransactionIntent(to=DESTINATION, nonce=-2)),
    ],
)
async def test_invalid_intent(sender, intent):
    eth_client = eth_client_with()
    builder = UserOperationBuilder(eth_client)
    with pytest.raises(InvalidIntentException):
        await builder.build(sender, intent)
    assert eth_client.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "init_code, paymaster_and_data",
    [
        ("abcd", b""),
        (b"", "0xzz"),
        ("0x" + "55" * 20 + "0", b""),
    ],
)
async def test_invalid_init_code_or_paymaster_and_data(
    init_code, paymaster_and_data
):
    eth_client = eth_client_with()
    builder = UserOperationBuilder(eth_client)
    with pytest.raises(InvalidIntentException):
        await builder.build(
            SENDER,
            TransactionIntent(to=DESTINATION),
            init_code=init_code,
            paymaster_and_data=paymaster_and_data,
        )
    assert eth_client.calls == []
