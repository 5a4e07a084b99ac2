import asyncio
import logging
from dataclasses import dataclass

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from core_aa.config import (CORE_TESTNET_CHAIN_ID, DEFAULT_ENTRYPOINT_ADDRESS,
                            DEFAULT_PAYMASTER_ADDRESS)
from core_aa.exceptions import (JsonRpcException, NetworkQueryFailedException,
                                SignerUnavailableException)
from core_aa.typing import Address, TransactionHash
from core_aa.user_operation.user_operation import UserOperation
from core_aa.utils import encode as paymaster_encode
from core_aa.utils.decode import (DepositInfo, decode_address_result,
                                  decode_bool_result,
                                  decode_deposit_info_result,
                                  decode_indexed_address,
                                  decode_uint256_result)
from core_aa.utils.encode import PAYMASTER_EVENT_TOPICS
from core_aa.utils.eth_client_utils import (JsonRpcTransport, eth_call,
                                            send_transaction)
from .paymaster_and_data import attach_paymaster

# second (non indexed) argument of each paymaster event
PAYMASTER_EVENT_DATA_TYPES = {
    "AccountWhitelisted": "bool",
    "AccountGasLimitSet": "uint256",
    "PaymasterDeposited": "uint256",
    "PaymasterWithdrawn": "uint256",
    "GasPaymentMade": "uint256",
}

DEFAULT_EVENT_POLL_INTERVAL = 5

LOG_DECODE_FAILURES = (
    DecodingError,
    ValueError,
    KeyError,
    IndexError,
    TypeError,
    AttributeError,
)


@dataclass
class AccountGasDetails:
    is_whitelisted: bool
    gas_limit: int
    gas_used: int


@dataclass
class PaymasterEvent:
    name: str
    account: Address
    value: int | bool
    block_number: int
    transaction_hash: str
    log_index: int


def decode_paymaster_event(event_name: str, log: dict) -> PaymasterEvent:
    value = decode(
        [PAYMASTER_EVENT_DATA_TYPES[event_name]],
        bytes.fromhex(log["data"][2:]),
    )[0]
    return PaymasterEvent(
        name=event_name,
        account=decode_indexed_address(log["topics"][1]),
        value=value,
        block_number=int(log["blockNumber"], 16),
        transaction_hash=log["transactionHash"],
        log_index=int(log["logIndex"], 16),
    )


class EventSubscription:
    """Handle for one paymaster event stream.

    Logs are polled with eth_getLogs in a background task and delivered
    through a queue. Iterate with `async for`; `cancel()` ends the stream.
    Only events mined after the subscription starts are delivered unless
    `from_block` is given.
    """

    def __init__(
        self,
        eth_client: JsonRpcTransport,
        paymaster_address: Address,
        event_name: str,
        poll_interval: float = DEFAULT_EVENT_POLL_INTERVAL,
        from_block: int | None = None,
    ):
        self.eth_client = eth_client
        self.paymaster_address = paymaster_address
        self.event_name = event_name
        self.poll_interval = poll_interval
        self.next_block = from_block
        self._queue: asyncio.Queue[PaymasterEvent | None] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._closed = False

    def start(self) -> "EventSubscription":
        if self._task is None:
            self._task = asyncio.create_task(self._poll_logs())
        return self

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._close()

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def _close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def _poll_logs(self) -> None:
        topic = PAYMASTER_EVENT_TOPICS[self.event_name]
        try:
            while True:
                try:
                    await self._fetch_new_logs(topic)
                except (NetworkQueryFailedException, JsonRpcException) as excp:
                    logging.error(
                        f"Polling {self.event_name} logs failed. "
                        f"error: {str(excp)}"
                    )
                except LOG_DECODE_FAILURES as excp:
                    logging.error(
                        f"Invalid response while polling {self.event_name} "
                        f"logs. error: {excp!r}"
                    )
                await asyncio.sleep(self.poll_interval)
        finally:
            self._close()

    async def _fetch_new_logs(self, topic: str) -> None:
        latest_block = int(
            await self.eth_client.request("eth_blockNumber", []), 16)
        if self.next_block is None:
            self.next_block = latest_block + 1
            return
        if latest_block < self.next_block:
            return
        logs = await self.eth_client.request(
            "eth_getLogs",
            [{
                "address": self.paymaster_address,
                "topics": [topic],
                "fromBlock": hex(self.next_block),
                "toBlock": hex(latest_block),
            }],
        )
        # nothing is queued and next_block stays put until the batch is done
        events = []
        for log in logs:
            if log.get("removed", False):
                continue
            try:
                events.append(decode_paymaster_event(self.event_name, log))
            except LOG_DECODE_FAILURES as excp:
                logging.error(
                    f"Skipping undecodable {self.event_name} log "
                    f"{log.get('transactionHash')}. error: {excp!r}"
                )
        for event in events:
            self._queue.put_nowait(event)
        self.next_block = latest_block + 1

    async def get(self) -> PaymasterEvent | None:
        """Next event, or None once the subscription is closed."""
        event = await self._queue.get()
        if event is None:
            # keep the sentinel for other consumers
            self._queue.put_nowait(None)
        return event

    def __aiter__(self):
        return self

    async def __anext__(self) -> PaymasterEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "EventSubscription":
        return self.start()

    async def aclose(self) -> None:
        """Cancels polling and waits for the polling task to finish."""
        self.cancel()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class PaymasterClient:
    def __init__(
        self,
        eth_client: JsonRpcTransport,
        paymaster_address: Address = DEFAULT_PAYMASTER_ADDRESS,
        entrypoint_address: Address = DEFAULT_ENTRYPOINT_ADDRESS,
        chain_id: int = CORE_TESTNET_CHAIN_ID,
        signer=None,
    ):
        self.eth_client = eth_client
        self.paymaster_address = paymaster_address
        self.entrypoint_address = entrypoint_address
        self.chain_id = chain_id
        self.signer = signer

    def set_signer(self, signer) -> None:
        self.signer = signer

    async def _call_paymaster(self, call_data: bytes) -> bytes:
        return await eth_call(self.eth_client, self.paymaster_address, call_data)

    async def _send_to(
        self, to: Address, call_data: bytes, value: int = 0
    ) -> TransactionHash:
        if self.signer is None:
            raise SignerUnavailableException(
                "Signer is required for this operation")
        return await send_transaction(
            self.eth_client, self.signer, self.chain_id, to, call_data, value)

    async def get_entry_point(self) -> Address:
        return decode_address_result(
            await self._call_paymaster(
                paymaster_encode.encode_entry_point_calldata())
        )

    async def is_enabled(self) -> bool:
        return decode_bool_result(
            await self._call_paymaster(
                paymaster_encode.encode_is_enabled_calldata())
        )

    async def get_balance(self) -> int:
        return decode_uint256_result(
            await self._call_paymaster(
                paymaster_encode.encode_get_balance_calldata())
        )

    async def is_account_whitelisted(self, account: Address) -> bool:
        return decode_bool_result(
            await self._call_paymaster(
                paymaster_encode.encode_whitelisted_accounts_calldata(account))
        )

    async def get_account_gas_limit(self, account: Address) -> int:
        return decode_uint256_result(
            await self._call_paymaster(
                paymaster_encode.encode_account_gas_limits_calldata(account))
        )

    async def get_account_gas_used(self, account: Address) -> int:
        return decode_uint256_result(
            await self._call_paymaster(
                paymaster_encode.encode_account_gas_used_calldata(account))
        )

    async def get_account_gas_details(
        self, account: Address
    ) -> AccountGasDetails:
        is_whitelisted, gas_limit, gas_used = await asyncio.gather(
            self.is_account_whitelisted(account),
            self.get_account_gas_limit(account),
            self.get_account_gas_used(account),
        )
        return AccountGasDetails(is_whitelisted, gas_limit, gas_used)

    async def get_deposit_info(self, account: Address) -> DepositInfo:
        raw_result = await eth_call(
            self.eth_client,
            self.entrypoint_address,
            paymaster_encode.encode_get_deposit_info_calldata(account),
        )
        return decode_deposit_info_result(raw_result)

    async def can_sponsor(self, user_operation: UserOperation) -> bool:
        """Whether the paymaster deposit covers the operation's prefund."""
        deposit_info = await self.get_deposit_info(self.paymaster_address)
        return deposit_info.deposit >= user_operation.get_required_prefund()

    async def deposit(self, amount: int) -> TransactionHash:
        return await self._send_to(
            self.paymaster_address,
            paymaster_encode.encode_deposit_calldata(),
            amount,
        )

    async def withdraw(self, amount: int) -> TransactionHash:
        return await self._send_to(
            self.paymaster_address,
            paymaster_encode.encode_withdraw_calldata(amount),
        )

    async def set_enabled(self, enabled: bool) -> TransactionHash:
        return await self._send_to(
            self.paymaster_address,
            paymaster_encode.encode_set_enabled_calldata(enabled),
        )

    async def set_whitelisted_account(
        self, account: Address, whitelisted: bool
    ) -> TransactionHash:
        return await self._send_to(
            self.paymaster_address,
            paymaster_encode.encode_set_whitelisted_account_calldata(
                account, whitelisted),
        )

    async def set_account_gas_limit(
        self, account: Address, gas_limit: int
    ) -> TransactionHash:
        return await self._send_to(
            self.paymaster_address,
            paymaster_encode.encode_set_account_gas_limit_calldata(
                account, gas_limit),
        )

    async def batch_set_whitelisted_accounts(
        self, accounts: list[Address], whitelisted: bool
    ) -> TransactionHash:
        return await self._send_to(
            self.paymaster_address,
            paymaster_encode.encode_batch_set_whitelisted_accounts_calldata(
                accounts, whitelisted),
        )

    async def reset_account_gas_used(
        self, account: Address
    ) -> TransactionHash:
        return await self._send_to(
            self.paymaster_address,
            paymaster_encode.encode_reset_account_gas_used_calldata(account),
        )

    def attach_to_user_operation(
        self, user_operation: UserOperation, extra_data: bytes | str = b""
    ) -> UserOperation:
        return attach_paymaster(
            user_operation, self.paymaster_address, extra_data)

    def subscribe(
        self,
        event_name: str,
        poll_interval: float = DEFAULT_EVENT_POLL_INTERVAL,
        from_block: int | None = None,
    ) -> EventSubscription:
        if event_name not in PAYMASTER_EVENT_TOPICS:
            raise ValueError(f"Unknown paymaster event {event_name}")
        return EventSubscription(
            self.eth_client,
            self.paymaster_address,
            event_name,
            poll_interval,
            from_block,
        ).start()
