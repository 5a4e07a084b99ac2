from typing import Any

from eth_abi import encode
from eth_utils import keccak

from core_aa.typing import Address
from core_aa.user_operation.user_operation import UserOperation


def function_selector(function_signature: str) -> bytes:
    return keccak(text=function_signature)[:4]


# account
EXECUTE_SELECTOR = function_selector("execute(address,uint256,bytes)")
NONCE_SELECTOR = function_selector("nonce()")
OWNER_SELECTOR = function_selector("owner()")

# account factory
GET_ADDRESS_SELECTOR = function_selector("getAddress(address,uint256)")
CREATE_ACCOUNT_SELECTOR = function_selector("createAccount(address,uint256)")

# paymaster
ENTRY_POINT_SELECTOR = function_selector("entryPoint()")
WHITELISTED_ACCOUNTS_SELECTOR = function_selector(
    "whitelistedAccounts(address)")
ACCOUNT_GAS_LIMITS_SELECTOR = function_selector("accountGasLimits(address)")
ACCOUNT_GAS_USED_SELECTOR = function_selector("accountGasUsed(address)")
IS_ENABLED_SELECTOR = function_selector("isEnabled()")
GET_BALANCE_SELECTOR = function_selector("getBalance()")
DEPOSIT_SELECTOR = function_selector("deposit()")
WITHDRAW_SELECTOR = function_selector("withdraw(uint256)")
SET_ENABLED_SELECTOR = function_selector("setEnabled(bool)")
SET_WHITELISTED_ACCOUNT_SELECTOR = function_selector(
    "setWhitelistedAccount(address,bool)")
SET_ACCOUNT_GAS_LIMIT_SELECTOR = function_selector(
    "setAccountGasLimit(address,uint256)")
BATCH_SET_WHITELISTED_ACCOUNTS_SELECTOR = function_selector(
    "batchSetWhitelistedAccounts(address[],bool)")
RESET_ACCOUNT_GAS_USED_SELECTOR = function_selector(
    "resetAccountGasUsed(address)")

# verifying paymaster
GET_HASH_SELECTOR = function_selector(
    "getHash(address,uint256,bytes,bytes,uint256,uint256,uint256,uint256,uint256)")

# token paymaster
GET_TOKEN_VALUE_OF_ETH_SELECTOR = function_selector(
    "getTokenValueOfEth(uint256)")
TOKEN_SELECTOR = function_selector("token()")

# entrypoint
GET_DEPOSIT_INFO_SELECTOR = function_selector("getDepositInfo(address)")

PAYMASTER_EVENT_SIGNATURES = {
    "AccountWhitelisted": "AccountWhitelisted(address,bool)",
    "AccountGasLimitSet": "AccountGasLimitSet(address,uint256)",
    "PaymasterDeposited": "PaymasterDeposited(address,uint256)",
    "PaymasterWithdrawn": "PaymasterWithdrawn(address,uint256)",
    "GasPaymentMade": "GasPaymentMade(address,uint256)",
}
PAYMASTER_EVENT_TOPICS = {
    name: "0x" + keccak(text=signature).hex()
    for name, signature in PAYMASTER_EVENT_SIGNATURES.items()
}


def _encode_call(selector: bytes, types: list[str], args: list[Any]) -> bytes:
    return selector + encode(types, args)


def encode_execute_calldata(to: Address, value: int, data: bytes) -> bytes:
    return _encode_call(
        EXECUTE_SELECTOR, ["address", "uint256", "bytes"], [to, value, data])


def encode_nonce_calldata() -> bytes:
    return NONCE_SELECTOR


def encode_owner_calldata() -> bytes:
    return OWNER_SELECTOR


def encode_get_address_calldata(owner: Address, salt: int) -> bytes:
    return _encode_call(
        GET_ADDRESS_SELECTOR, ["address", "uint256"], [owner, salt])


def encode_create_account_calldata(owner: Address, salt: int) -> bytes:
    return _encode_call(
        CREATE_ACCOUNT_SELECTOR, ["address", "uint256"], [owner, salt])


def encode_entry_point_calldata() -> bytes:
    return ENTRY_POINT_SELECTOR


def encode_whitelisted_accounts_calldata(account: Address) -> bytes:
    return _encode_call(WHITELISTED_ACCOUNTS_SELECTOR, ["address"], [account])


def encode_account_gas_limits_calldata(account: Address) -> bytes:
    return _encode_call(ACCOUNT_GAS_LIMITS_SELECTOR, ["address"], [account])


def encode_account_gas_used_calldata(account: Address) -> bytes:
    return _encode_call(ACCOUNT_GAS_USED_SELECTOR, ["address"], [account])


def encode_is_enabled_calldata() -> bytes:
    return IS_ENABLED_SELECTOR


def encode_get_balance_calldata() -> bytes:
    return GET_BALANCE_SELECTOR


def encode_deposit_calldata() -> bytes:
    return DEPOSIT_SELECTOR


def encode_withdraw_calldata(amount: int) -> bytes:
    return _encode_call(WITHDRAW_SELECTOR, ["uint256"], [amount])


def encode_set_enabled_calldata(enabled: bool) -> bytes:
    return _encode_call(SET_ENABLED_SELECTOR, ["bool"], [enabled])


def encode_set_whitelisted_account_calldata(
    account: Address, whitelisted: bool
) -> bytes:
    return _encode_call(
        SET_WHITELISTED_ACCOUNT_SELECTOR,
        ["address", "bool"],
        [account, whitelisted],
    )


def encode_set_account_gas_limit_calldata(
    account: Address, gas_limit: int
) -> bytes:
    return _encode_call(
        SET_ACCOUNT_GAS_LIMIT_SELECTOR,
        ["address", "uint256"],
        [account, gas_limit],
    )


def encode_batch_set_whitelisted_accounts_calldata(
    accounts: list[Address], whitelisted: bool
) -> bytes:
    return _encode_call(
        BATCH_SET_WHITELISTED_ACCOUNTS_SELECTOR,
        ["address[]", "bool"],
        [accounts, whitelisted],
    )


def encode_reset_account_gas_used_calldata(account: Address) -> bytes:
    return _encode_call(RESET_ACCOUNT_GAS_USED_SELECTOR, ["address"], [account])


def encode_get_deposit_info_calldata(account: Address) -> bytes:
    return _encode_call(GET_DEPOSIT_INFO_SELECTOR, ["address"], [account])


def encode_get_hash_calldata(user_operation: UserOperation) -> bytes:
    # the paymaster hashes everything but paymasterAndData and signature
    return _encode_call(
        GET_HASH_SELECTOR,
        ["address", "uint256", "bytes", "bytes"] + ["uint256"] * 5,
        user_operation.to_list()[:9],
    )


def encode_get_token_value_of_eth_calldata(eth_amount: int) -> bytes:
    return _encode_call(
        GET_TOKEN_VALUE_OF_ETH_SELECTOR, ["uint256"], [eth_amount])


def encode_token_calldata() -> bytes:
    return TOKEN_SELECTOR
