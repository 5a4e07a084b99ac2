import inspect
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from core_aa.exceptions import JsonRpcException
from core_aa.user_operation.user_operation import UserOperation
from core_aa.user_operation.user_operation_signer import LocalSigner

OWNER_SECRET = (
    "0x897368deaa9f3797c02570ef7d3fa4df179b0fc7ad8d8fc2547d04701604eb72")
PAYMASTER_SECRET = (
    "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318")

SENDER = "0x1111111111111111111111111111111111111111"
ENTRYPOINT = "0x2222222222222222222222222222222222222222"
DESTINATION = "0x3333333333333333333333333333333333333333"
PAYMASTER = "0x4444444444444444444444444444444444444444"
FACTORY = "0x5555555555555555555555555555555555555555"
CHAIN_ID = 1114

CORE_AA_ENV_VARS = (
    "CORE_AA_CHAIN_ID",
    "CORE_AA_RPC_URL",
    "CORE_AA_BUNDLER_URL",
    "CORE_AA_ENTRYPOINT",
    "CORE_AA_PAYMASTER_ADDRESS",
    "CORE_AA_ACCOUNT_FACTORY",
    "CORE_AA_QUERY_TIMEOUT",
    "CORE_AA_OWNER_SECRET",
    "CORE_AA_KEYSTORE_FILE_PATH",
    "CORE_AA_KEYSTORE_FILE_PASSWORD",
)


def uint256_result(value: int) -> str:
    return "0x" + value.to_bytes(32, "big").hex()


def address_result(address: str) -> str:
    return "0x" + "00" * 12 + address[2:].lower()


class FakeEthClient:
    """Stands in for JsonRpcTransport.

    `responses` maps a method name to a value, an exception instance, or a
    (possibly async) callable receiving the params.
    """

    def __init__(self, responses: dict[str, Any] | None = None):
        self.responses = responses or {}
        self.calls: list[tuple[str, Any]] = []

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    async def request(self, method: str, params=None) -> Any:
        self.calls.append((method, params))
        if method not in self.responses:
            raise JsonRpcException(-32601, f"method {method} not found")
        response = self.responses[method]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            result = response(params)
            if inspect.isawaitable(result):
                result = await result
            return result
        return response


class FakeRpcServer:
    """aiohttp JSON-RPC endpoint recording every request body."""

    def __init__(self):
        self.requests: list[dict] = []
        self.responses: dict[str, dict] = {}
        self.raw_response: str | None = None
        self.url = ""

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(body)
        if self.raw_response is not None:
            return web.Response(text=self.raw_response)
        response = {"jsonrpc": "2.0", "id": body["id"]}
        method_response = self.responses.get(
            body["method"],
            {"error": {"code": -32601, "message": "Method not found"}},
        )
        if callable(method_response):
            method_response = method_response(body.get("params"))
        response.update(method_response)
        return web.json_response(response)


@pytest_asyncio.fixture
async def rpc_server():
    rpc = FakeRpcServer()
    app = web.Application()
    app.router.add_post("/rpc", rpc.handle)
    server = TestServer(app)
    await server.start_server()
    rpc.url = str(server.make_url("/rpc"))
    yield rpc
    await server.close()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for env_var in CORE_AA_ENV_VARS:
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture
def owner_signer() -> LocalSigner:
    return LocalSigner(OWNER_SECRET)


@pytest.fixture
def user_operation() -> UserOperation:
    return UserOperation(
        sender_address=SENDER,
        nonce=5,
        init_code=b"",
        call_data=bytes.fromhex("abcd"),
        call_gas_limit=1,
        verification_gas_limit=2,
        pre_verification_gas=3,
        max_fee_per_gas=4,
        max_priority_fee_per_gas=5,
        paymaster_and_data=b"",
        signature=b"",
    )
