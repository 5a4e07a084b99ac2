from core_aa.exceptions import (SignerUnavailableException,
                                ValidationException, ValidationExceptionCode)
from core_aa.typing import Address
from core_aa.user_operation.user_operation import (UserOperation,
                                                   verify_address)


def address_to_bytes(address: Address) -> bytes:
    verify_address("paymaster", address)
    return bytes.fromhex(address[2:])


def extra_data_to_bytes(extra_data: bytes | str) -> bytes:
    if isinstance(extra_data, bytes):
        return extra_data
    if isinstance(extra_data, str) and extra_data[:2] == "0x":
        try:
            return bytes.fromhex(extra_data[2:])
        except ValueError:
            pass
    raise ValidationException(
        ValidationExceptionCode.InvalidFields,
        f"Invalid paymaster extra data : {extra_data}",
    )


def encode_paymaster_and_data(
    paymaster_address: Address, extra_data: bytes | str = b""
) -> bytes:
    # no delimiter: the EntryPoint reads the first 20 bytes as the paymaster
    return address_to_bytes(paymaster_address) + extra_data_to_bytes(extra_data)


def attach_paymaster(
    user_operation: UserOperation,
    paymaster_address: Address,
    extra_data: bytes | str = b"",
) -> UserOperation:
    return user_operation.with_paymaster_and_data(
        encode_paymaster_and_data(paymaster_address, extra_data)
    )


class VerifyingPaymasterSigner:
    """Produces paymasterAndData for a verifying paymaster: the paymaster
    address followed by the paymaster signer's signature over the
    UserOperation hash."""

    def __init__(self, paymaster_address: Address, signer=None):
        verify_address("paymaster", paymaster_address)
        self.paymaster_address = paymaster_address
        self.signer = signer

    def sign_paymaster_data(self, user_operation_hash: bytes) -> bytes:
        if self.signer is None:
            raise SignerUnavailableException(
                "A paymaster signer is required to sign paymaster data")
        signature = self.signer.sign_digest(user_operation_hash)
        return encode_paymaster_and_data(self.paymaster_address, signature)

    def attach(
        self, user_operation: UserOperation, user_operation_hash: bytes
    ) -> UserOperation:
        return user_operation.with_paymaster_and_data(
            self.sign_paymaster_data(user_operation_hash))
