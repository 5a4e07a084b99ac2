from eth_account import Account, messages

from core_aa.exceptions import SignerUnavailableException
from core_aa.typing import Address
from .user_operation import UserOperation
from .user_operation_hash import get_user_operation_hash


class LocalSigner:
    """Signs with an in-memory private key.

    Digests are signed with the personal-message (EIP-191) convention, which
    is what SimpleAccount-style accounts and verifying paymasters recover
    against.
    """

    def __init__(self, private_key: str | bytes):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> Address:
        return Address(self._account.address)

    def sign_digest(self, digest: bytes) -> bytes:
        message = messages.encode_defunct(primitive=digest)
        signed_message = self._account.sign_message(message)
        return bytes(signed_message.signature)

    def sign_transaction(self, transaction: dict) -> bytes:
        signed_transaction = self._account.sign_transaction(transaction)
        return bytes(signed_transaction.raw_transaction)


def sign_user_operation(
    user_operation: UserOperation,
    user_operation_hash: bytes,
    signer: LocalSigner | None,
) -> UserOperation:
    if signer is None:
        raise SignerUnavailableException(
            "A signer is required to sign a UserOperation")
    signature = signer.sign_digest(user_operation_hash)
    return user_operation.with_signature(signature)


def sign_and_hash_user_operation(
    user_operation: UserOperation,
    entrypoint_addr: Address,
    chain_id: int,
    signer: LocalSigner | None,
) -> tuple[UserOperation, bytes]:
    user_operation_hash = get_user_operation_hash(
        user_operation, entrypoint_addr, chain_id)
    signed_user_operation = sign_user_operation(
        user_operation, user_operation_hash, signer)
    return signed_user_operation, user_operation_hash


def recover_signer(user_operation_hash: bytes, signature: bytes) -> Address:
    message = messages.encode_defunct(primitive=user_operation_hash)
    return Address(Account.recover_message(message, signature=signature))


def verify_user_operation_signature(
    user_operation: UserOperation,
    user_operation_hash: bytes,
    signer_address: Address,
) -> bool:
    if len(user_operation.signature) != 65:
        return False
    recovered = recover_signer(user_operation_hash, user_operation.signature)
    return recovered.lower() == signer_address.lower()
