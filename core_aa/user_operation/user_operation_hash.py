from eth_abi import encode
from eth_utils import keccak

from core_aa.typing import Address
from .user_operation import UserOperation

# initCode, callData and paymasterAndData are replaced by their keccak
# digests and the signature is left out
HASHED_USER_OPERATION_TYPES = (
    ["address", "uint256", "bytes32", "bytes32"] +
    ["uint256"] * 5 +
    ["bytes32"]
)
HASHED_FIELD_INDEXES = (2, 3, 9)


def get_user_operation_hash(
    user_operation: UserOperation, entrypoint_addr: Address, chain_id: int
) -> bytes:
    inner_hash = keccak(pack_user_operation(user_operation))
    return keccak(
        encode(
            ["bytes32", "address", "uint256"],
            [inner_hash, entrypoint_addr, chain_id],
        )
    )


def get_user_operation_hash_hex(
    user_operation: UserOperation, entrypoint_addr: Address, chain_id: int
) -> str:
    return "0x" + get_user_operation_hash(
        user_operation, entrypoint_addr, chain_id).hex()


def pack_user_operation(user_operation: UserOperation) -> bytes:
    fields = user_operation.to_list()
    for index in HASHED_FIELD_INDEXES:
        fields[index] = keccak(fields[index])
    return encode(HASHED_USER_OPERATION_TYPES, fields[:-1])
