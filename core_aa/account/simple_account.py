import logging

from eth_abi import encode
from eth_utils import keccak

from core_aa.config import CORE_TESTNET_CHAIN_ID
from core_aa.exceptions import (AccountNotInitializedException,
                                SignerUnavailableException)
from core_aa.typing import Address, TransactionHash
from core_aa.user_operation.user_operation import TransactionIntent
from core_aa.utils.decode import decode_address_result, decode_uint256_result
from core_aa.utils.encode import (encode_create_account_calldata,
                                  encode_execute_calldata,
                                  encode_get_address_calldata,
                                  encode_nonce_calldata,
                                  encode_owner_calldata)
from core_aa.utils.eth_client_utils import (JsonRpcTransport, eth_call,
                                            get_code, send_transaction)


def get_salt(owner: Address, index: int = 0) -> int:
    return int.from_bytes(
        keccak(encode(["address", "uint256"], [owner, index])), "big")


class SimpleAccount:
    """Counterfactual SimpleAccount resolved through its factory."""

    def __init__(
        self,
        eth_client: JsonRpcTransport,
        factory_address: Address,
        owner_signer=None,
        chain_id: int = CORE_TESTNET_CHAIN_ID,
    ):
        self.eth_client = eth_client
        self.factory_address = factory_address
        self.owner_signer = owner_signer
        self.chain_id = chain_id
        self.account_address: Address | None = None

    async def get_counterfactual_address(
        self, owner: Address, salt: int
    ) -> Address:
        raw_result = await eth_call(
            self.eth_client,
            self.factory_address,
            encode_get_address_calldata(owner, salt),
        )
        return decode_address_result(raw_result)

    async def is_deployed(self, address: Address) -> bool:
        code = await get_code(self.eth_client, address)
        return len(code) > 0

    def get_init_code(self, owner: Address, salt: int) -> bytes:
        return (
            bytes.fromhex(self.factory_address[2:]) +
            encode_create_account_calldata(owner, salt)
        )

    async def get_account(
        self,
        owner: Address,
        index: int = 0,
        salt: int | None = None,
        deploy: bool = False,
    ) -> Address:
        if salt is None:
            salt = get_salt(owner, index)

        account_address = await self.get_counterfactual_address(owner, salt)
        if deploy and not await self.is_deployed(account_address):
            logging.info(f"Deploying account {account_address} for {owner}")
            await self._send(
                self.factory_address,
                encode_create_account_calldata(owner, salt),
            )

        self.account_address = account_address
        return account_address

    def get_address(self) -> Address | None:
        return self.account_address

    async def get_nonce(self) -> int:
        if self.account_address is None:
            raise AccountNotInitializedException(
                "Account not initialized. Call get_account first.")
        raw_result = await eth_call(
            self.eth_client, self.account_address, encode_nonce_calldata())
        return decode_uint256_result(raw_result)

    async def get_owner(self) -> Address:
        if self.account_address is None:
            raise AccountNotInitializedException(
                "Account not initialized. Call get_account first.")
        raw_result = await eth_call(
            self.eth_client, self.account_address, encode_owner_calldata())
        return decode_address_result(raw_result)

    async def execute(self, intent: TransactionIntent) -> TransactionHash:
        """Calls execute() on the account directly from the owner key,
        bypassing the EntryPoint."""
        if self.account_address is None:
            raise AccountNotInitializedException(
                "Account not initialized. Call get_account first.")
        return await self._send(
            self.account_address,
            encode_execute_calldata(intent.to, intent.value, intent.data),
        )

    async def _send(self, to: Address, call_data: bytes) -> TransactionHash:
        if self.owner_signer is None:
            raise SignerUnavailableException(
                "Owner signer is required for this operation")
        return await send_transaction(
            self.eth_client, self.owner_signer, self.chain_id, to, call_data)
