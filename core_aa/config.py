from dataclasses import dataclass

from core_aa.typing import Address

CORE_TESTNET_CHAIN_ID = 1114
CORE_TESTNET_RPC_URL = "https://rpc.test2.btcs.network"
CORE_TESTNET_EXPLORER_URL = "https://scan.test2.btcs.network"

DEFAULT_PAYMASTER_ADDRESS = Address(
    "0x9A5e0F8D2153c8391b098FfCB2404149D7e0b402")
DEFAULT_ENTRYPOINT_ADDRESS = Address(
    "0x6136Bed7B15ebc86830c642500F6aeA304A6aa95")

# Placeholders until a bundler gas estimate is wired in.
DEFAULT_GAS_LIMITS = {
    "call": 100000,
    "verification": 100000,
    "pre_verification": 50000,
}

# 1 gwei, used when the node returns no EIP-1559 fee data
DEFAULT_FEE_PER_GAS = 1_000_000_000


@dataclass()
class CoreAAConfig:
    chain_id: int = CORE_TESTNET_CHAIN_ID
    rpc_url: str = CORE_TESTNET_RPC_URL
    entrypoint_address: Address = DEFAULT_ENTRYPOINT_ADDRESS
    account_factory_address: Address | None = None
    paymaster_address: Address | None = DEFAULT_PAYMASTER_ADDRESS
    bundler_url: str | None = None
