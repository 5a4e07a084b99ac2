from core_aa.exceptions import PaymasterNotInitializedException
from core_aa.typing import Address
from core_aa.user_operation.user_operation import (UserOperation,
                                                   verify_address)
from core_aa.utils.decode import (decode_address_result,
                                  decode_bytes32_result,
                                  decode_uint256_result)
from core_aa.utils.encode import (encode_get_hash_calldata,
                                  encode_get_token_value_of_eth_calldata,
                                  encode_owner_calldata,
                                  encode_token_calldata)
from core_aa.utils.eth_client_utils import JsonRpcTransport, eth_call
from .paymaster_and_data import VerifyingPaymasterSigner


class PaymasterService:
    """Verifying and token paymaster helpers.

    The configured paymaster address, if any, is treated as a verifying
    paymaster. A token paymaster has to be set explicitly with
    `set_token_paymaster`.
    """

    def __init__(
        self,
        eth_client: JsonRpcTransport,
        paymaster_address: Address | None = None,
    ):
        self.eth_client = eth_client
        self.verifying_paymaster_address: Address | None = None
        self.token_paymaster_address: Address | None = None
        if paymaster_address is not None:
            self.set_verifying_paymaster(paymaster_address)

    def set_verifying_paymaster(self, paymaster_address: Address) -> None:
        verify_address("paymaster", paymaster_address)
        self.verifying_paymaster_address = paymaster_address

    def set_token_paymaster(self, paymaster_address: Address) -> None:
        verify_address("paymaster", paymaster_address)
        self.token_paymaster_address = paymaster_address

    def _get_verifying_paymaster(self) -> Address:
        if self.verifying_paymaster_address is None:
            raise PaymasterNotInitializedException(
                "Verifying paymaster not initialized. "
                "Call set_verifying_paymaster first."
            )
        return self.verifying_paymaster_address

    def _get_token_paymaster(self) -> Address:
        if self.token_paymaster_address is None:
            raise PaymasterNotInitializedException(
                "Token paymaster not initialized. "
                "Call set_token_paymaster first."
            )
        return self.token_paymaster_address

    async def get_hash(self, user_operation: UserOperation) -> bytes:
        """Digest the verifying paymaster expects its signer to sign."""
        raw_result = await eth_call(
            self.eth_client,
            self._get_verifying_paymaster(),
            encode_get_hash_calldata(user_operation),
        )
        return decode_bytes32_result(raw_result)

    async def get_owner(self) -> Address:
        raw_result = await eth_call(
            self.eth_client,
            self._get_verifying_paymaster(),
            encode_owner_calldata(),
        )
        return decode_address_result(raw_result)

    async def get_token_amount(self, eth_amount: int) -> int:
        raw_result = await eth_call(
            self.eth_client,
            self._get_token_paymaster(),
            encode_get_token_value_of_eth_calldata(eth_amount),
        )
        return decode_uint256_result(raw_result)

    async def get_token_address(self) -> Address:
        raw_result = await eth_call(
            self.eth_client,
            self._get_token_paymaster(),
            encode_token_calldata(),
        )
        return decode_address_result(raw_result)

    def sign_paymaster_data(self, user_operation_hash: bytes, signer) -> bytes:
        return VerifyingPaymasterSigner(
            self._get_verifying_paymaster(), signer
        ).sign_paymaster_data(user_operation_hash)
