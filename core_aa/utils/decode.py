from dataclasses import dataclass

from eth_abi import decode
from eth_utils import to_checksum_address

from core_aa.typing import Address


@dataclass
class DepositInfo:
    deposit: int
    staked: bool
    stake: int
    unstakeDelaySec: int
    withdrawTime: int


def decode_uint256_result(raw_result: bytes) -> int:
    return decode(["uint256"], raw_result)[0]


def decode_bool_result(raw_result: bytes) -> bool:
    return decode(["bool"], raw_result)[0]


def decode_address_result(raw_result: bytes) -> Address:
    return Address(to_checksum_address(decode(["address"], raw_result)[0]))


def decode_deposit_info_result(raw_result: bytes) -> DepositInfo:
    DEPOSIT_INFO_ABI = [
        "(uint112,bool,uint112,uint32,uint64)",
    ]
    (
        deposit,
        staked,
        stake,
        unstake_delay_sec,
        withdraw_time,
    ) = decode(DEPOSIT_INFO_ABI, raw_result)[0]
    return DepositInfo(
        deposit, staked, stake, unstake_delay_sec, withdraw_time)


def decode_indexed_address(topic: str) -> Address:
    return Address(
        to_checksum_address(decode(["address"], bytes.fromhex(topic[2:]))[0])
    )


def decode_bytes32_result(raw_result: bytes) -> bytes:
    return decode(["bytes32"], raw_result)[0]
