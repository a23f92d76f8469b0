import asyncio
import logging
import time

from typing import Callable, Optional, Union

import numpy as np

from .bid import Bid, Bid_Computer, Bid_Outcome, By_Hash, By_Raw_Transaction
from .configuration import Configuration
from .connection import Block_Header, Chain_Handle, Connection_Manager, Header_Subscription
from .constants import (
    ERROR_AUTHENTICATION,
    ERROR_BID_SUBMISSION,
    ERROR_BIDDER_CLIENT_INIT,
    ERROR_RELAY,
    ERROR_RESUBSCRIBE_EXHAUSTED,
    ERROR_SUBSCRIPTION,
    ERROR_TRANSACTION_BUILD,
    ERROR_WEB3_INIT,
    HEADER_QUEUE_SIZE,
    get_error_message,
)
from .exceptions import RelayError, StopRequestedError, SubscriptionError, UnsupportedBidInputError
from .identity import authenticate_address
from .relay import Relay_Client
from .transactions import Transaction_Core
from .transport import Bidder_Client

logger = logging.getLogger(__name__)


class Main_Core:
    """
    Per-block control loop.

    Waits for a header, builds and signs a transaction, computes the bid and
    submits it, one header at a time. Subscription errors are routed to the
    connection manager; the loop ends when resubscribing is exhausted, when
    the run duration elapses or when :meth:`stop` is called.
    """

    def __init__(
        self,
        configuration: Configuration,
        connection_manager: Optional[Connection_Manager] = None,
        bidder_client: Optional[Bidder_Client] = None,
        relay_client: Optional[Relay_Client] = None,
        bid_computer: Optional[Bid_Computer] = None,
        transaction_core: Optional[Transaction_Core] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.configuration = configuration
        self.rng = rng if rng is not None else np.random.default_rng()
        self.connection_manager = connection_manager or Connection_Manager(configuration)
        self.bidder_client = bidder_client
        self.relay_client = relay_client or Relay_Client(configuration.RPC_ENDPOINT, configuration.DEFAULT_TIMEOUT)
        self.bid_computer = bid_computer or Bid_Computer(configuration.DECAY_DURATION_MS, self.rng)
        self.transaction_core = transaction_core
        self.clock = clock

        self.headers: "asyncio.Queue[Block_Header]" = asyncio.Queue(maxsize=HEADER_QUEUE_SIZE)
        self.handle: Optional[Chain_Handle] = None
        self.subscription: Optional[Header_Subscription] = None
        self.rpc_handle: Optional[Chain_Handle] = None
        self.running: bool = False
        self._stop_event = asyncio.Event()

    async def initialize(self) -> None:
        """
        Open every connection and authenticate the signing key.

        :raises StopRequestedError: When a stop is requested while connecting.
        """
        cfg = self.configuration
        try:
            logger.info(f"Initializing {cfg.APP_NAME} {cfg.VERSION}... ⏳")
            logger.info(f"Configuration: {cfg.summary()}")
            if cfg.run_duration_seconds is None:
                logger.info("No run duration set, bidding until stopped")
            else:
                logger.info(f"Bidding for {cfg.RUN_DURATION_MINUTES} minutes")

            if self.bidder_client is None:
                try:
                    self.bidder_client = Bidder_Client.connect(cfg.SERVER_ADDRESS)
                except Exception as e:
                    logger.error(f"{get_error_message(ERROR_BIDDER_CLIENT_INIT)} {e}")
                    raise

            if not cfg.USE_PAYLOAD:
                self.rpc_handle = await self.connection_manager.connect_with_retries(
                    cfg.RPC_ENDPOINT, stop_event=self._stop_event
                )
                if self.rpc_handle is None:
                    logger.warning("RPC endpoint unreachable, bundles may fail to send ⚠️")

            try:
                self.handle = await self.connection_manager.connect_subscribable(
                    cfg.WS_ENDPOINT, stop_event=self._stop_event
                )
            except StopRequestedError:
                raise
            except Exception as e:
                logger.error(f"{get_error_message(ERROR_WEB3_INIT)} {e}")
                raise
            try:
                self.subscription = await self.handle.subscribe_new_heads(self.headers)
            except SubscriptionError as e:
                raise SubscriptionError(f"{get_error_message(ERROR_SUBSCRIPTION)} {e}") from e

            if self.transaction_core is None:
                try:
                    identity = await authenticate_address(cfg.PRIVATE_KEY, self.handle)
                except Exception as e:
                    logger.error(f"{get_error_message(ERROR_AUTHENTICATION)} {e}")
                    raise
                self.transaction_core = Transaction_Core(identity, cfg, self.rng)
            logger.info("Main Core initialized ✅")
        except StopRequestedError:
            logger.info("Initialization interrupted by stop request")
            raise
        except Exception as e:
            logger.critical(f"Main Core initialization failed: {e}")
            raise

    async def _next_header(self, deadline: Optional[float]) -> Union[Block_Header, SubscriptionError, None]:
        """Next queued header, the subscription error, or ``None`` on stop or deadline."""
        if not self.headers.empty():
            return self.headers.get_nowait()
        if self.subscription.errors.done():
            return self.subscription.errors.result()

        get_task = asyncio.ensure_future(self.headers.get())
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        timeout = None if deadline is None else max(0.0, deadline - self.clock())
        try:
            done, _ = await asyncio.wait(
                {get_task, stop_task, self.subscription.errors},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (get_task, stop_task):
                if not task.done():
                    task.cancel()
        if get_task in done:
            return get_task.result()
        if self.subscription.errors in done:
            return self.subscription.errors.result()
        return None

    async def _resubscribe(self) -> bool:
        """
        Replace the failed subscription.

        :return: ``False`` once resubscribing is exhausted.
        :raises StopRequestedError: When a stop is requested while reconnecting.
        """
        if self.handle is not None:
            await self.handle.close()
        self.handle = None
        self.subscription = None
        result = await self.connection_manager.resubscribe(
            self.configuration.WS_ENDPOINT, self.headers, stop_event=self._stop_event
        )
        if result is None:
            return False
        self.handle, self.subscription = result
        return True

    async def run(self) -> None:
        """
        Process headers until stopped.

        :raises SubscriptionError: When resubscribing is exhausted.
        """
        run_duration = self.configuration.run_duration_seconds
        deadline = None if run_duration is None else self.clock() + run_duration
        self.running = True
        logger.info("Waiting for new block headers... 📡")
        try:
            while not self._stop_event.is_set():
                if deadline is not None and self.clock() >= deadline:
                    logger.info(f"Run duration of {self.configuration.RUN_DURATION_MINUTES} minutes elapsed, stopping")
                    break
                event = await self._next_header(deadline)
                if event is None:
                    continue
                if isinstance(event, SubscriptionError):
                    logger.error(f"Subscription error: {event} ❌")
                    if self._stop_event.is_set():
                        break
                    try:
                        resubscribed = await self._resubscribe()
                    except StopRequestedError:
                        logger.info("Resubscribe interrupted by stop request")
                        break
                    if not resubscribed:
                        raise SubscriptionError(get_error_message(ERROR_RESUBSCRIBE_EXHAUSTED))
                    continue
                await self.process_header(event)
        finally:
            self.running = False

    async def process_header(self, header: Block_Header) -> Optional[Bid_Outcome]:
        """
        Build, sign and bid for one header.

        Build and sampling failures skip the header. Relay failures are logged
        and the hash bid is still sent.

        :return: The bid outcome, or ``None`` if no bid was sent.
        """
        cfg = self.configuration
        logger.info(f"New block {header.number} received ({header.hash}) 📦")
        try:
            if cfg.NUM_BLOB > 0:
                signed_tx, target_block = await self.transaction_core.build_blob_transaction(
                    self.handle, cfg.NUM_BLOB, cfg.OFFSET, cfg.PRIORITY_FEE
                )
            else:
                signed_tx, target_block = await self.transaction_core.build_self_transfer(
                    self.handle, cfg.TRANSFER_VALUE_WEI, cfg.OFFSET, cfg.PRIORITY_FEE
                )
        except Exception as e:
            logger.error(f"{get_error_message(ERROR_TRANSACTION_BUILD)} Block {header.number}: {e} ❌")
            return None

        try:
            amount_wei = self.bid_computer.sample_bid_amount_wei(cfg.BID_AMOUNT, cfg.BID_AMOUNT_STD_DEV_PERCENTAGE)
        except (ValueError, OverflowError) as e:
            logger.error(f"Failed to compute bid amount for block {target_block}: {e} ❌")
            return None
        decay_start, decay_end = self.bid_computer.compute_decay_window()

        if cfg.USE_PAYLOAD:
            payload = By_Raw_Transaction((signed_tx,))
        else:
            try:
                result = await self.relay_client.send_bundle(signed_tx, target_block)
                logger.debug(f"Relay result: {result}")
            except RelayError as e:
                logger.error(f"{get_error_message(ERROR_RELAY)} Block {target_block}: {e} ❌")
            payload = By_Hash((signed_tx.hash,))

        bid = Bid(amount_wei, target_block, decay_start, decay_end, payload)
        try:
            outcome = await self.bidder_client.submit(bid)
        except UnsupportedBidInputError as e:
            logger.warning(f"Bid for block {target_block} not sent: {e} ⚠️")
            return None
        except Exception as e:
            logger.error(f"{get_error_message(ERROR_BID_SUBMISSION)} Block {target_block}: {e} ❌")
            return None
        if not outcome.ok:
            logger.error(
                f"Bid of {amount_wei} wei for block {target_block} failed after "
                f"{len(outcome.commitments)} commitments: {outcome.error} ❌"
            )
            return outcome
        logger.info(
            f"Bid of {amount_wei} wei for block {target_block} finished with "
            f"{len(outcome.commitments)} commitments"
        )
        return outcome

    def request_stop(self) -> None:
        """Ask the loop to exit after the current iteration."""
        self.running = False
        self._stop_event.set()

    async def stop(self) -> None:
        """Stop the loop and close every connection."""
        logger.info("Stopping Main Core... ⏳")
        self.request_stop()
        for name, handle in (("WebSocket", self.handle), ("RPC", self.rpc_handle)):
            if handle is None:
                continue
            try:
                await handle.close()
            except Exception as e:
                logger.error(f"Error closing {name} connection: {e}")
        self.handle = None
        self.subscription = None
        self.rpc_handle = None
        if self.bidder_client is not None:
            try:
                await self.bidder_client.close()
            except Exception as e:
                logger.error(f"Error closing bidder client: {e}")
        logger.info("Main Core stopped ✅")
