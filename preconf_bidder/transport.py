import logging

from typing import Any, Iterable, List, Optional

import grpc

from . import bidderapi
from .bid import Bid, Bid_Outcome, Bid_Payload, By_Hash, By_Raw_Transaction, classify_payload
from .exceptions import BidTransportError
from .logger import mask_endpoint
from .transactions import Signed_Tx

logger = logging.getLogger(__name__)


def encode_tx_hashes(tx_hashes: Iterable[str]) -> List[str]:
    """Strip any ``0x`` prefix from each hash."""
    return [h[2:] if h[:2].lower() == "0x" else h for h in tx_hashes]


def encode_raw_transactions(transactions: Iterable[Signed_Tx]) -> List[str]:
    """Hex encode each signed transaction's network encoding, without prefix."""
    return [bytes(tx.raw_transaction).hex() for tx in transactions]


class Bidder_Client:
    """
    Sends bids to the bidder service and drains the commitment stream.

    :param stub: ``Bidder_Stub`` or anything exposing a ``SendBid`` stream call.
    :param channel: Channel owned by this client, closed by :meth:`close`.
    :param timeout: Deadline for one bid stream in seconds, ``None`` for no deadline.
    """

    def __init__(self, stub, channel: Optional[grpc.aio.Channel] = None, timeout: Optional[float] = None):
        self.stub = stub
        self.channel = channel
        self.timeout = timeout

    @classmethod
    def connect(cls, server_address: str, timeout: Optional[float] = None) -> "Bidder_Client":
        try:
            channel = grpc.aio.insecure_channel(server_address)
        except Exception as e:
            logger.error(f"Failed to create bidder client for {mask_endpoint(server_address)}: {e}")
            raise BidTransportError(f"Failed to create bidder client: {e}") from e
        logger.info(f"Bidder client ready for {mask_endpoint(server_address)} ✅")
        return cls(bidderapi.Bidder_Stub(channel), channel=channel, timeout=timeout)

    @staticmethod
    def build_bid_request(
        payload: Bid_Payload,
        amount_wei: int,
        block_number: int,
        decay_start: int,
        decay_end: int,
    ):
        request = bidderapi.Bid(
            amount=str(amount_wei),
            block_number=block_number,
            decay_start_timestamp=decay_start,
            decay_end_timestamp=decay_end,
        )
        if isinstance(payload, By_Hash):
            request.tx_hashes.extend(encode_tx_hashes(payload.tx_hashes))
        elif isinstance(payload, By_Raw_Transaction):
            request.raw_transactions.extend(encode_raw_transactions(payload.transactions))
        return request

    async def submit_bid(
        self,
        payload: Any,
        amount_wei: int,
        block_number: int,
        decay_start: int,
        decay_end: int,
    ) -> Bid_Outcome:
        """
        Send one bid and collect the commitments streamed back.

        A failure while reading the stream is logged and stored on the outcome.

        :param payload: Payload variant, list of hash strings or list of :class:`Signed_Tx`.
        :return: Commitments received before the stream ended.
        :raises UnsupportedBidInputError: Before any network call, for any other payload.
        :raises BidTransportError: If the request cannot be built or the call cannot be opened.
        """
        payload = classify_payload(payload)
        try:
            request = self.build_bid_request(payload, amount_wei, block_number, decay_start, decay_end)
            call = self.stub.SendBid(request, timeout=self.timeout)
        except Exception as e:
            raise BidTransportError(f"Failed to send bid for block {block_number}: {e}") from e

        outcome = Bid_Outcome()
        try:
            async for commitment in call:
                outcome.commitments.append(commitment)
                logger.info(
                    f"Commitment received for block {commitment.block_number} "
                    f"from {commitment.provider_address or 'unknown provider'} ✅"
                )
        except grpc.RpcError as e:
            logger.error(f"Bid stream for block {block_number} failed: {e} ❌")
            outcome.error = e
        logger.debug(f"Bid stream for block {block_number} ended with {len(outcome.commitments)} commitments")
        return outcome

    async def submit(self, bid: Bid) -> Bid_Outcome:
        return await self.submit_bid(
            bid.payload, bid.amount_wei, bid.block_number, bid.decay_start_ms, bid.decay_end_ms
        )

    async def close(self) -> None:
        if self.channel is not None:
            await self.channel.close()
            self.channel = None
