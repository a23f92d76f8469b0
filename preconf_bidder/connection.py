import asyncio
import dataclasses
import logging

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple

import aiohttp
import async_timeout

from eth_utils import to_hex
from web3 import AsyncHTTPProvider, AsyncWeb3, WebSocketProvider
from web3.providers.persistent import PersistentConnectionProvider

from .backoff import (
    QUERY_CONNECT_POLICY,
    RESUBSCRIBE_POLICY,
    SUBSCRIBABLE_CONNECT_POLICY,
    Sleep,
)
from .configuration import Configuration
from .exceptions import RetryExhaustedError, SubscriptionError
from .logger import mask_endpoint

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


@dataclass(frozen=True)
class Block_Header:
    """The header fields the bidder reads from ``eth_getBlockByNumber`` and ``newHeads``."""
    number: int
    timestamp: int
    hash: str
    base_fee: Optional[int] = None
    excess_blob_gas: Optional[int] = None
    blob_gas_used: Optional[int] = None

    @classmethod
    def from_block_data(cls, block: Mapping[str, Any]) -> "Block_Header":
        block_hash = block.get("hash")
        if block_hash is not None and not isinstance(block_hash, str):
            block_hash = to_hex(block_hash)
        return cls(
            number=_to_int(block["number"]),
            timestamp=_to_int(block.get("timestamp")) or 0,
            hash=block_hash or "",
            base_fee=_to_int(block.get("baseFeePerGas")),
            excess_blob_gas=_to_int(block.get("excessBlobGas")),
            blob_gas_used=_to_int(block.get("blobGasUsed")),
        )


def offer_header(sink: "asyncio.Queue[Block_Header]", header: Block_Header) -> None:
    """Put ``header`` on ``sink``, dropping the oldest queued header when full."""
    while True:
        try:
            sink.put_nowait(header)
            return
        except asyncio.QueueFull:
            dropped = sink.get_nowait()
            logger.debug(f"Header queue full, dropped block {dropped.number}")


class Header_Subscription:
    """
    A live ``newHeads`` subscription on one chain handle.

    A pump task copies headers into the sink queue. When the stream fails or
    ends, ``errors`` resolves with a :class:`SubscriptionError`.
    """

    def __init__(self, handle: "Chain_Handle", subscription_id: str, sink: "asyncio.Queue[Block_Header]"):
        self.handle = handle
        self.subscription_id = subscription_id
        self.sink = sink
        self.errors: "asyncio.Future[SubscriptionError]" = asyncio.get_running_loop().create_future()
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self._task = asyncio.create_task(self._pump(), name=f"newHeads-{self.subscription_id}")

    def _fail(self, error: SubscriptionError) -> None:
        if not self.errors.done():
            self.errors.set_result(error)

    async def _pump(self) -> None:
        try:
            async for message in self.handle.web3.socket.process_subscriptions():
                if message.get("subscription") != self.subscription_id:
                    continue
                offer_header(self.sink, Block_Header.from_block_data(message["result"]))
            self._fail(SubscriptionError("Header subscription stream closed"))
        except Exception as e:
            self._fail(SubscriptionError(f"Header subscription failed: {e}"))

    async def unsubscribe(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        try:
            await self.handle.web3.eth.unsubscribe(self.subscription_id)
        except Exception as e:
            logger.debug(f"Unsubscribe of {self.subscription_id} failed: {e}")
        self.handle._subscription = None


class Chain_Handle:
    """An open connection to a chain node. Replaced, never repaired, on reconnect."""

    def __init__(self, web3: AsyncWeb3, endpoint: str, timeout: float):
        self.web3 = web3
        self.endpoint = endpoint
        self.timeout = timeout
        self._subscription: Optional[Header_Subscription] = None

    def __repr__(self) -> str:
        return f"Chain_Handle({mask_endpoint(self.endpoint)})"

    @property
    def subscribable(self) -> bool:
        return isinstance(self.web3.provider, PersistentConnectionProvider)

    async def pending_nonce(self, address: str) -> int:
        return await self.web3.eth.get_transaction_count(address, "pending")

    async def latest_header(self) -> Block_Header:
        block = await self.web3.eth.get_block("latest")
        return Block_Header.from_block_data(block)

    async def chain_id(self) -> int:
        return await self.web3.eth.chain_id

    async def subscribe_new_heads(self, sink: "asyncio.Queue[Block_Header]") -> Header_Subscription:
        """
        Subscribe to new block headers, delivering them into ``sink``.

        :raises SubscriptionError: If a subscription is already active or the node refuses.
        """
        if self._subscription is not None and self._subscription.active:
            raise SubscriptionError("Chain handle already has an active subscription")
        if not self.subscribable:
            raise SubscriptionError(f"{mask_endpoint(self.endpoint)} does not support subscriptions")
        try:
            async with async_timeout.timeout(self.timeout):
                subscription_id = await self.web3.eth.subscribe("newHeads")
        except Exception as e:
            raise SubscriptionError(f"newHeads subscribe failed: {e}") from e
        subscription = Header_Subscription(self, subscription_id, sink)
        subscription.start()
        self._subscription = subscription
        logger.debug(f"Subscribed to newHeads ({subscription_id}) on {mask_endpoint(self.endpoint)}")
        return subscription

    async def close(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
        try:
            await self.web3.provider.disconnect()
        except Exception as e:
            logger.debug(f"Error disconnecting from {mask_endpoint(self.endpoint)}: {e}")


Dialer = Callable[[str, float], Awaitable[Chain_Handle]]


async def dial_http(endpoint: str, timeout: float) -> Chain_Handle:
    """Open a direct query connection and check that it answers."""
    web3 = AsyncWeb3(
        AsyncHTTPProvider(endpoint, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)})
    )
    async with async_timeout.timeout(timeout):
        connected = await web3.is_connected()
    if not connected:
        raise ConnectionError(f"{mask_endpoint(endpoint)} is not reachable")
    return Chain_Handle(web3, endpoint, timeout)


async def dial_websocket(endpoint: str, timeout: float) -> Chain_Handle:
    """Open a subscription-capable connection with a single connect attempt."""
    # Retries are owned by the backoff policies, not the provider
    provider = WebSocketProvider(endpoint, request_timeout=timeout, max_connection_retries=1)
    web3 = AsyncWeb3(provider)
    try:
        async with async_timeout.timeout(timeout):
            await provider.connect()
    except (Exception, asyncio.CancelledError):
        try:
            await provider.disconnect()
        except Exception as e:
            logger.debug(f"Cleanup after failed connect raised: {e}")
        raise
    return Chain_Handle(web3, endpoint, timeout)


class Connection_Manager:
    """
    Establishes and restores chain connections.

    :param configuration: Runtime settings, supplies the per-attempt timeout.
    :param dial_rpc: Opens a direct query connection.
    :param dial_ws: Opens a subscription-capable connection.
    :param sleep: Awaitable sleep used by every backoff policy.
    """

    def __init__(
        self,
        configuration: Configuration,
        dial_rpc: Dialer = dial_http,
        dial_ws: Dialer = dial_websocket,
        sleep: Sleep = asyncio.sleep,
    ):
        self.configuration = configuration
        self.dial_rpc = dial_rpc
        self.dial_ws = dial_ws
        self.query_policy = QUERY_CONNECT_POLICY.with_sleep(sleep)
        self.subscribable_policy = SUBSCRIBABLE_CONNECT_POLICY.with_sleep(sleep)
        self.resubscribe_policy = RESUBSCRIBE_POLICY.with_sleep(sleep)

    async def connect_with_retries(
        self,
        endpoint: str,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> Optional[Chain_Handle]:
        """
        Open a direct connection with exponential backoff.

        :return: The handle, or ``None`` once every attempt has failed.
        :raises StopRequestedError: When ``stop_event`` is set while connecting.
        """
        policy = self.query_policy
        if max_attempts is not None:
            policy = dataclasses.replace(policy, max_attempts=max_attempts)
        timeout = timeout or self.configuration.DEFAULT_TIMEOUT
        masked = mask_endpoint(endpoint)
        try:
            handle = await policy.run(
                lambda: self.dial_rpc(endpoint, timeout), f"RPC connection to {masked}", stop_event
            )
        except RetryExhaustedError as e:
            logger.error(f"Failed to connect to {masked} after {e.attempts} attempts: {e.last_error} ❌")
            return None
        logger.info(f"Connected to RPC endpoint {masked} ✅")
        return handle

    async def connect_subscribable(
        self,
        endpoint: str,
        stop_event: Optional[asyncio.Event] = None,
    ) -> Chain_Handle:
        """
        Open a subscription-capable connection, retrying until it succeeds.

        :raises StopRequestedError: When ``stop_event`` is set before a connection is made.
        """
        masked = mask_endpoint(endpoint)
        timeout = self.configuration.DEFAULT_TIMEOUT
        handle = await self.subscribable_policy.run(
            lambda: self.dial_ws(endpoint, timeout), f"WebSocket connection to {masked}", stop_event
        )
        logger.info(f"Connected to WebSocket endpoint {masked} ✅")
        return handle

    async def resubscribe(
        self,
        endpoint: str,
        header_sink: "asyncio.Queue[Block_Header]",
        stop_event: Optional[asyncio.Event] = None,
    ) -> Optional[Tuple[Chain_Handle, Header_Subscription]]:
        """
        Reconnect and re-issue the header subscription after a subscription error.

        :return: The new handle and subscription, or ``None`` once attempts are exhausted.
        :raises StopRequestedError: When ``stop_event`` is set before resubscribing succeeds.
        """
        masked = mask_endpoint(endpoint)

        async def attempt() -> Tuple[Chain_Handle, Header_Subscription]:
            handle = await self.connect_subscribable(endpoint, stop_event)
            try:
                subscription = await handle.subscribe_new_heads(header_sink)
            except (Exception, asyncio.CancelledError):
                await handle.close()
                raise
            return handle, subscription

        try:
            result = await self.resubscribe_policy.run(attempt, f"Resubscribe to {masked}", stop_event)
        except RetryExhaustedError as e:
            logger.critical(f"Resubscribe to {masked} exhausted after {e.attempts} attempts: {e.last_error} ❌")
            return None
        logger.info(f"Resubscribed to new headers on {masked} ✅")
        return result
