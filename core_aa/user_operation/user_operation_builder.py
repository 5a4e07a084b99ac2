import asyncio
import logging

from eth_abi.exceptions import DecodingError
from eth_utils import is_address

from core_aa.config import DEFAULT_FEE_PER_GAS, DEFAULT_GAS_LIMITS
from core_aa.exceptions import (InvalidIntentException, JsonRpcException,
                                NetworkQueryFailedException)
from core_aa.typing import Address
from core_aa.utils.decode import decode_uint256_result
from core_aa.utils.encode import (encode_execute_calldata,
                                  encode_nonce_calldata)
from core_aa.utils.eth_client_utils import (JsonRpcTransport, eth_call,
                                            get_fee_data)
from .user_operation import (TransactionIntent, UserOperation,
                             UINT256_MAX)

QUERY_FAILURES = (
    NetworkQueryFailedException,
    JsonRpcException,
    asyncio.TimeoutError,
    DecodingError,
    ValueError,
    KeyError,
    TypeError,
)


class UserOperationBuilder:
    """Assembles unsigned UserOperations for SimpleAccount-style accounts.

    Gas limits are fixed placeholders (see DEFAULT_GAS_LIMITS), not
    estimates; pass `gas_limits` to override them. The nonce and fee lookups
    run concurrently and fall back to 0 and `default_fee_per_gas` when they
    fail. Every fallback is logged and listed in the returned operation's
    `estimation_fallbacks`.
    """

    def __init__(
        self,
        eth_client: JsonRpcTransport,
        gas_limits: dict[str, int] | None = None,
        default_fee_per_gas: int = DEFAULT_FEE_PER_GAS,
        query_timeout: float | None = None,
    ):
        self.eth_client = eth_client
        self.gas_limits = DEFAULT_GAS_LIMITS | (gas_limits or {})
        self.default_fee_per_gas = default_fee_per_gas
        self.query_timeout = query_timeout

    async def build(
        self,
        sender: Address,
        intent: TransactionIntent,
        init_code: bytes | str = b"",
        paymaster_and_data: bytes | str = b"",
    ) -> UserOperation:
        verify_intent(sender, intent, init_code, paymaster_and_data)
        call_data = encode_execute_calldata(
            intent.to, intent.value, to_bytes("data", intent.data))

        (nonce, nonce_fallback), fee_result = await asyncio.gather(
            self.resolve_nonce(sender, intent.nonce),
            self.resolve_fees(
                intent.max_fee_per_gas, intent.max_priority_fee_per_gas),
        )
        max_fee_per_gas, max_priority_fee_per_gas, fee_fallbacks = fee_result

        estimation_fallbacks = fee_fallbacks
        if nonce_fallback:
            estimation_fallbacks = ("nonce",) + estimation_fallbacks

        return UserOperation(
            sender_address=sender,
            nonce=nonce,
            init_code=to_bytes("initCode", init_code),
            call_data=call_data,
            call_gas_limit=self.gas_limits["call"],
            verification_gas_limit=self.gas_limits["verification"],
            pre_verification_gas=self.gas_limits["pre_verification"],
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
            paymaster_and_data=to_bytes(
                "paymasterAndData", paymaster_and_data),
            signature=b"",
            estimation_fallbacks=estimation_fallbacks,
        )

    async def resolve_nonce(
        self, sender: Address, nonce_override: int | None
    ) -> tuple[int, bool]:
        if nonce_override is not None:
            return nonce_override, False
        try:
            raw_nonce = await asyncio.wait_for(
                eth_call(self.eth_client, sender, encode_nonce_calldata()),
                self.query_timeout,
            )
            return decode_uint256_result(raw_nonce), False
        except QUERY_FAILURES as excp:
            # most likely the account is not deployed yet
            logging.warning(
                f"Nonce lookup for {sender} failed, using nonce 0. "
                f"error: {excp!r}"
            )
            return 0, True

    async def resolve_fees(
        self,
        max_fee_per_gas: int | None,
        max_priority_fee_per_gas: int | None,
    ) -> tuple[int, int, tuple[str, ...]]:
        fee_data = None
        if max_fee_per_gas is None or max_priority_fee_per_gas is None:
            try:
                fee_data = await asyncio.wait_for(
                    get_fee_data(self.eth_client), self.query_timeout)
            except QUERY_FAILURES as excp:
                logging.warning(f"Fee data lookup failed. error: {excp!r}")

        fallbacks: tuple[str, ...] = ()
        if max_fee_per_gas is None:
            if fee_data is not None:
                max_fee_per_gas = fee_data[0]
            else:
                max_fee_per_gas = self.default_fee_per_gas
                fallbacks += ("max_fee_per_gas",)
        if max_priority_fee_per_gas is None:
            if fee_data is not None:
                max_priority_fee_per_gas = fee_data[1]
            else:
                max_priority_fee_per_gas = self.default_fee_per_gas
                fallbacks += ("max_priority_fee_per_gas",)
        if fallbacks:
            logging.warning(
                f"No fee data available, using default fee per gas "
                f"{self.default_fee_per_gas} for {', '.join(fallbacks)}"
            )
        return max_fee_per_gas, max_priority_fee_per_gas, fallbacks


def verify_intent(
    sender: Address,
    intent: TransactionIntent,
    init_code: bytes | str = b"",
    paymaster_and_data: bytes | str = b"",
) -> None:
    if not sender:
        raise InvalidIntentException("Missing sender address")
    if not is_address(sender):
        raise InvalidIntentException(f"Invalid sender address : {sender}")
    if intent.to is None or intent.to == "":
        raise InvalidIntentException("Missing destination address")
    if not is_address(intent.to):
        raise InvalidIntentException(
            f"Invalid destination address : {intent.to}")
    for field_name, value in (
        ("value", intent.value),
        ("nonce", intent.nonce),
        ("maxFeePerGas", intent.max_fee_per_gas),
        ("maxPriorityFeePerGas", intent.max_priority_fee_per_gas),
    ):
        if field_name != "value" and value is None:
            continue
        if (
            not isinstance(value, int) or
            isinstance(value, bool) or
            value < 0 or
            value > UINT256_MAX
        ):
            raise InvalidIntentException(
                f"Invalid {field_name} value : {value}")
    to_bytes("data", intent.data)
    to_bytes("initCode", init_code)
    to_bytes("paymasterAndData", paymaster_and_data)


def to_bytes(field_name: str, value: bytes | str) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str) and value[:2] == "0x":
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            pass
    raise InvalidIntentException(f"Invalid bytes value : {value} in {field_name}")
