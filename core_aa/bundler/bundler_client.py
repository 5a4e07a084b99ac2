import logging
from dataclasses import dataclass
from enum import Enum

from core_aa.config import DEFAULT_ENTRYPOINT_ADDRESS
from core_aa.exceptions import JsonRpcException, NetworkQueryFailedException
from core_aa.typing import Address, UserOperationHash
from core_aa.user_operation.user_operation import UserOperation
from core_aa.utils.eth_client_utils import JsonRpcTransport

# 65 byte r||s||v placeholder used while estimating gas
DUMMY_SIGNATURE = bytes.fromhex("ff" * 64 + "1c")


class UserOperationState(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self):
        return self.value


@dataclass
class UserOperationStatus:
    state: UserOperationState
    transaction_hash: str | None = None
    block_number: int | None = None
    actual_gas_cost: int | None = None
    success: bool | None = None
    error: str | None = None


@dataclass
class GasEstimate:
    pre_verification_gas: int
    verification_gas_limit: int
    call_gas_limit: int


def _to_int(value) -> int:
    if isinstance(value, str):
        return int(value, 16) if value[:2] == "0x" else int(value)
    return int(value)


class BundlerClient:
    """JSON-RPC client for an ERC-4337 bundler. One request per call,
    errors are raised to the caller."""

    def __init__(
        self,
        bundler_url: str,
        entrypoint_address: Address = DEFAULT_ENTRYPOINT_ADDRESS,
        timeout: float | None = None,
    ):
        self.entrypoint_address = entrypoint_address
        self.transport = JsonRpcTransport(bundler_url, timeout)

    async def send_user_operation(
        self, user_operation: UserOperation
    ) -> UserOperationHash:
        logging.info(
            f"Sending UserOperation from {user_operation.sender_address} "
            f"with nonce {user_operation.nonce} to bundler"
        )
        result = await self.transport.request(
            "eth_sendUserOperation",
            [
                user_operation.get_user_operation_json(),
                self.entrypoint_address,
            ],
        )
        logging.info(f"UserOperation accepted by bundler: {result}")
        return UserOperationHash(result)

    async def estimate_user_operation_gas(
        self, user_operation: UserOperation
    ) -> GasEstimate:
        if len(user_operation.signature) == 0:
            user_operation = user_operation.with_signature(DUMMY_SIGNATURE)
        result = await self.transport.request(
            "eth_estimateUserOperationGas",
            [
                user_operation.get_user_operation_json(),
                self.entrypoint_address,
            ],
        )
        # v0.6 bundlers differ on the key name
        if "verificationGasLimit" in result:
            verification_gas_limit = result["verificationGasLimit"]
        else:
            verification_gas_limit = result["verificationGas"]
        return GasEstimate(
            pre_verification_gas=_to_int(result["preVerificationGas"]),
            verification_gas_limit=_to_int(verification_gas_limit),
            call_gas_limit=_to_int(result["callGasLimit"]),
        )

    async def get_user_operation_receipt(
        self, user_operation_hash: UserOperationHash
    ) -> dict | None:
        return await self.transport.request(
            "eth_getUserOperationReceipt", [user_operation_hash]
        )

    async def get_user_operation_status(
        self, user_operation_hash: UserOperationHash
    ) -> UserOperationStatus:
        try:
            receipt = await self.get_user_operation_receipt(
                user_operation_hash)
        except (JsonRpcException, NetworkQueryFailedException) as excp:
            logging.error(
                f"Failed to get receipt for {user_operation_hash}. "
                f"error: {excp.message}"
            )
            return UserOperationStatus(
                state=UserOperationState.FAILED,
                error=excp.message,
            )

        if not receipt:
            return UserOperationStatus(state=UserOperationState.PENDING)

        transaction_hash = receipt.get("transactionHash")
        block_number = receipt.get("blockNumber")
        if "receipt" in receipt:
            transaction_hash = receipt["receipt"].get(
                "transactionHash", transaction_hash)
            block_number = receipt["receipt"].get("blockNumber", block_number)

        return UserOperationStatus(
            state=UserOperationState.COMPLETED,
            transaction_hash=transaction_hash,
            block_number=(
                _to_int(block_number) if block_number is not None else None),
            actual_gas_cost=(
                _to_int(receipt["actualGasCost"])
                if receipt.get("actualGasCost") is not None else None),
            success=receipt.get("success"),
        )

    async def get_supported_entry_points(self) -> list[Address]:
        return await self.transport.request("eth_supportedEntryPoints", [])

    async def is_entry_point_supported(
        self, entrypoint_address: Address
    ) -> bool:
        supported_entry_points = await self.get_supported_entry_points()
        return any(
            entrypoint.lower() == entrypoint_address.lower()
            for entrypoint in supported_entry_points
        )

    async def get_chain_id(self) -> int:
        return int(await self.transport.request("eth_chainId", []), 16)
