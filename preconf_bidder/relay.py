import json
import logging

import aiohttp

from .exceptions import RelayError
from .logger import mask_endpoint
from .transactions import Signed_Tx

logger = logging.getLogger(__name__)


class Relay_Client:
    """
    Sends signed transactions to a private relay as ``eth_sendBundle`` bundles.

    :param endpoint: Relay JSON-RPC URL.
    :param timeout: Total timeout per request in seconds.
    """

    def __init__(self, endpoint: str, timeout: float = 15.0):
        self.endpoint = endpoint
        self.timeout = timeout

    @staticmethod
    def bundle_payload(signed_tx: Signed_Tx, block_number: int) -> dict:
        return {
            "jsonrpc": "2.0",
            "method": "eth_sendBundle",
            "params": [
                {
                    "txs": ["0x" + bytes(signed_tx.raw_transaction).hex()],
                    "blockNumber": hex(block_number),
                }
            ],
            "id": 1,
        }

    async def send_bundle(self, signed_tx: Signed_Tx, block_number: int) -> str:
        """
        Submit ``signed_tx`` as a single-transaction bundle for ``block_number``.

        :return: The relay's ``result``, JSON encoded.
        :raises RelayError: On transport failure or a JSON-RPC error reply.
        """
        masked = mask_endpoint(self.endpoint)
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(
                    self.endpoint,
                    json=self.bundle_payload(signed_tx, block_number),
                    headers={"Content-Type": "application/json"},
                ) as response:
                    response_data = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise RelayError(f"Bundle request to {masked} failed: {e}") from e

        if not isinstance(response_data, dict):
            raise RelayError(f"Unexpected relay response from {masked}: {response_data!r}")
        error = response_data.get("error")
        if isinstance(error, dict):
            raise RelayError(f"RPC Error {error.get('code')}: {error.get('message')}")
        if error:
            raise RelayError(f"RPC Error: {error}")
        logger.info(f"Bundle {signed_tx.hash} sent to {masked} for block {block_number} ✅")
        return json.dumps(response_data.get("result"))
