import re
from dataclasses import dataclass, field, replace

from core_aa.exceptions import ValidationException, ValidationExceptionCode
from core_aa.typing import Address

UINT256_MAX = 2**256 - 1

USER_OPERATION_FIELDS = [
    "sender",
    "nonce",
    "initCode",
    "callData",
    "callGasLimit",
    "verificationGasLimit",
    "preVerificationGas",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "paymasterAndData",
    "signature",
]


@dataclass(frozen=True)
class TransactionIntent:
    to: Address | None
    value: int = 0
    data: bytes = b""
    nonce: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None


@dataclass(frozen=True)
class UserOperation:
    sender_address: Address
    nonce: int
    init_code: bytes
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: bytes = b""
    signature: bytes = b""
    # values the builder could not query and had to default
    estimation_fallbacks: tuple[str, ...] = field(
        default=(), compare=False)

    def __post_init__(self) -> None:
        verify_address("sender", self.sender_address)
        for field_name, value in (
            ("nonce", self.nonce),
            ("callGasLimit", self.call_gas_limit),
            ("verificationGasLimit", self.verification_gas_limit),
            ("preVerificationGas", self.pre_verification_gas),
            ("maxFeePerGas", self.max_fee_per_gas),
            ("maxPriorityFeePerGas", self.max_priority_fee_per_gas),
        ):
            verify_uint256(field_name, value)
        for field_name, value in (
            ("initCode", self.init_code),
            ("callData", self.call_data),
            ("paymasterAndData", self.paymaster_and_data),
            ("signature", self.signature),
        ):
            if not isinstance(value, bytes):
                raise ValidationException(
                    ValidationExceptionCode.InvalidFields,
                    f"Invalid bytes value : {value!r} in field {field_name}",
                )

    @classmethod
    def from_json(
        cls, jsonRequestDict: dict[str, str]
    ) -> "UserOperation":
        for field_name in USER_OPERATION_FIELDS:
            if field_name not in jsonRequestDict:
                raise ValidationException(
                    ValidationExceptionCode.InvalidFields,
                    f"UserOperation missing {field_name} field",
                )

        return cls(
            sender_address=verify_and_get_address(
                "sender", jsonRequestDict["sender"]),
            nonce=verify_and_get_uint("nonce", jsonRequestDict["nonce"]),
            init_code=verify_and_get_bytes(
                "initCode", jsonRequestDict["initCode"]),
            call_data=verify_and_get_bytes(
                "callData", jsonRequestDict["callData"]),
            call_gas_limit=verify_and_get_uint(
                "callGasLimit", jsonRequestDict["callGasLimit"]),
            verification_gas_limit=verify_and_get_uint(
                "verificationGasLimit",
                jsonRequestDict["verificationGasLimit"]
            ),
            pre_verification_gas=verify_and_get_uint(
                "preVerificationGas", jsonRequestDict["preVerificationGas"]),
            max_fee_per_gas=verify_and_get_uint(
                "maxFeePerGas", jsonRequestDict["maxFeePerGas"]),
            max_priority_fee_per_gas=verify_and_get_uint(
                "maxPriorityFeePerGas",
                jsonRequestDict["maxPriorityFeePerGas"]
            ),
            paymaster_and_data=verify_and_get_bytes(
                "paymasterAndData", jsonRequestDict["paymasterAndData"]),
            signature=verify_and_get_bytes(
                "signature", jsonRequestDict["signature"]),
        )

    def get_user_operation_json(self) -> dict[str, Address | str]:
        return {
            "sender": self.sender_address,
            "nonce": hex(self.nonce),
            "initCode": "0x" + self.init_code.hex(),
            "callData": "0x" + self.call_data.hex(),
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "paymasterAndData": "0x" + self.paymaster_and_data.hex(),
            "signature": "0x" + self.signature.hex(),
        }

    def to_list(self) -> list[Address | int | bytes]:
        return [
            self.sender_address,
            self.nonce,
            self.init_code,
            self.call_data,
            self.call_gas_limit,
            self.verification_gas_limit,
            self.pre_verification_gas,
            self.max_fee_per_gas,
            self.max_priority_fee_per_gas,
            self.paymaster_and_data,
            self.signature,
        ]

    def with_signature(self, signature: bytes) -> "UserOperation":
        return replace(self, signature=signature)

    def with_paymaster_and_data(
        self, paymaster_and_data: bytes
    ) -> "UserOperation":
        # any previous signature covered the old paymaster data
        return replace(
            self, paymaster_and_data=paymaster_and_data, signature=b"")

    @property
    def factory_address(self) -> Address | None:
        if len(self.init_code) >= 20:
            return Address("0x" + self.init_code[:20].hex())
        return None

    @property
    def paymaster_address(self) -> Address | None:
        if len(self.paymaster_and_data) >= 20:
            return Address("0x" + self.paymaster_and_data[:20].hex())
        return None

    def get_required_prefund(self) -> int:
        gas = (
            self.pre_verification_gas +
            self.verification_gas_limit +
            self.call_gas_limit
        )
        if self.paymaster_address is not None:
            gas += 2 * self.verification_gas_limit
        return gas * self.max_fee_per_gas


def is_address(value) -> bool:
    address_pattern = "^0x[0-9a-fA-F]{40}$"
    return isinstance(value, str) and re.match(address_pattern, value) is not None


def verify_address(field_name: str, value) -> None:
    if not is_address(value):
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid address value : {value} in field {field_name}",
        )


def verify_uint256(field_name: str, value) -> None:
    if (
        not isinstance(value, int) or
        isinstance(value, bool) or
        value < 0 or
        value > UINT256_MAX
    ):
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid uint256 value : {value} in field {field_name}",
        )


def verify_and_get_address(field_name: str, value: str | None) -> Address:
    verify_address(field_name, value)
    return Address(value)


def verify_and_get_uint(field_name: str, value: str | None) -> int:
    if value is None:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid uint hex value in field {field_name}",
        )

    if value == "0x":
        return 0
    elif isinstance(value, str) and value[:2] == "0x":
        try:
            return int(value, 16)
        except ValueError:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"Invalid uint hex value : {value} in field {field_name}",
            )
    else:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid uint hex value : {value} in field {field_name}",
        )


def verify_and_get_bytes(field_name: str, value: str | None) -> bytes:
    if value is None:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid bytes hex value in field {field_name}",
        )

    if isinstance(value, str) and value[:2] == "0x":
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"Invalid bytes hex value : {value} in field {field_name}",
            )
    else:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid bytes hex value : {value} in field {field_name}",
        )


def is_user_operation_hash(user_operation_hash: str) -> bool:
    hash_pattern = "^0x[0-9a-fA-F]{64}$"
    return (
        isinstance(user_operation_hash, str)
        and re.match(hash_pattern, user_operation_hash) is not None
    )
