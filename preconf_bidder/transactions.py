import asyncio
import logging

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

import async_timeout
import numpy as np

from eth_utils import to_hex
from hexbytes import HexBytes

from .blobs import Blob_Sidecar, blob_fee_cap, make_sidecar, random_blobs
from .configuration import Configuration
from .connection import Block_Header, Chain_Handle
from .constants import DEFAULT_PRIORITY_FEE_WEI, ERROR_CHAIN_READ, get_error_message
from .exceptions import ChainReadError, TransactionBuildError
from .identity import Signing_Identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Self_Transfer:
    """EIP-1559 transfer back to the sender."""
    chain_id: int
    nonce: int
    to: str
    value: int
    gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": 2,
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "to": self.to,
            "value": self.value,
            "gas": self.gas,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }


@dataclass(frozen=True)
class Blob_Transaction:
    """EIP-4844 transaction carrying a blob sidecar."""
    chain_id: int
    nonce: int
    to: str
    gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    max_fee_per_blob_gas: int
    blob_versioned_hashes: Tuple[bytes, ...]
    sidecar: Blob_Sidecar

    def __post_init__(self) -> None:
        if self.blob_versioned_hashes != self.sidecar.blob_hashes():
            raise TransactionBuildError("Blob hashes do not match sidecar commitments")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": 3,
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "to": self.to,
            "value": 0,
            "gas": self.gas,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "maxFeePerBlobGas": self.max_fee_per_blob_gas,
            "blobVersionedHashes": [HexBytes(h) for h in self.blob_versioned_hashes],
        }


Candidate_Transaction = Union[Self_Transfer, Blob_Transaction]


@dataclass(frozen=True)
class Signed_Tx:
    """A signed transaction ready to bid on."""
    raw_transaction: bytes
    hash: str
    candidate: Candidate_Transaction

    @property
    def sidecar(self) -> Optional[Blob_Sidecar]:
        return getattr(self.candidate, "sidecar", None)


class Transaction_Core:
    """
    Builds and signs the two transaction shapes the bidder bids with.

    Each build reads the pending nonce, the latest header and the chain ID
    concurrently, then signs with the bound identity. Nothing is returned
    unless signing succeeded.
    """

    def __init__(
        self,
        identity: Signing_Identity,
        configuration: Configuration,
        rng: Optional[np.random.Generator] = None,
    ):
        self.identity = identity
        self.configuration = configuration
        self.rng = rng if rng is not None else np.random.default_rng()

    async def _read_chain_state(self, handle: Chain_Handle) -> Tuple[int, Block_Header, int]:
        try:
            async with async_timeout.timeout(self.configuration.DEFAULT_TIMEOUT):
                nonce, header, chain_id = await asyncio.gather(
                    handle.pending_nonce(self.identity.address),
                    handle.latest_header(),
                    handle.chain_id(),
                )
        except asyncio.TimeoutError as e:
            raise ChainReadError(
                f"Chain reads timed out after {self.configuration.DEFAULT_TIMEOUT}s"
            ) from e
        except Exception as e:
            raise ChainReadError(f"{get_error_message(ERROR_CHAIN_READ)} {e}") from e
        if header.base_fee is None:
            raise ChainReadError(f"Block {header.number} has no base fee")
        return nonce, header, chain_id

    def _sign(self, candidate: Candidate_Transaction, blobs=None) -> Signed_Tx:
        signed = self.identity.sign(candidate.to_dict(), blobs=blobs)
        return Signed_Tx(
            raw_transaction=bytes(signed.raw_transaction),
            hash=to_hex(signed.hash),
            candidate=candidate,
        )

    async def build_self_transfer(
        self,
        handle: Chain_Handle,
        value: Optional[int] = None,
        block_offset: Optional[int] = None,
        priority_fee: Optional[int] = None,
    ) -> Tuple[Signed_Tx, int]:
        """
        Build and sign a transfer of ``value`` wei to the signer's own address.

        :return: The signed transaction and the block it targets.
        """
        value = self.configuration.TRANSFER_VALUE_WEI if value is None else value
        block_offset = self.configuration.OFFSET if block_offset is None else block_offset
        priority_fee = DEFAULT_PRIORITY_FEE_WEI if priority_fee is None else priority_fee

        nonce, header, chain_id = await self._read_chain_state(handle)
        candidate = Self_Transfer(
            chain_id=chain_id,
            nonce=nonce,
            to=self.identity.address,
            value=value,
            gas=self.configuration.GAS_LIMIT,
            max_fee_per_gas=header.base_fee + priority_fee,
            max_priority_fee_per_gas=priority_fee,
        )
        signed = self._sign(candidate)
        target_block = header.number + block_offset
        logger.info(f"Built self transfer {signed.hash} (nonce {nonce}) for block {target_block} ✅")
        return signed, target_block

    async def build_blob_transaction(
        self,
        handle: Chain_Handle,
        blob_count: Optional[int] = None,
        block_offset: Optional[int] = None,
        priority_fee: Optional[int] = None,
    ) -> Tuple[Signed_Tx, int]:
        """
        Build and sign a blob transaction carrying ``blob_count`` random blobs.

        :return: The signed transaction and the block it targets.
        """
        blob_count = self.configuration.NUM_BLOB if blob_count is None else blob_count
        block_offset = self.configuration.OFFSET if block_offset is None else block_offset
        priority_fee = DEFAULT_PRIORITY_FEE_WEI if priority_fee is None else priority_fee

        nonce, header, chain_id = await self._read_chain_state(handle)
        max_fee_per_blob_gas = blob_fee_cap(
            header,
            margin_percent=self.configuration.BLOB_FEE_MARGIN_PERCENT,
            target_blob_gas_per_block=self.configuration.BLOB_TARGET_GAS_PER_BLOCK,
            update_fraction=self.configuration.BLOB_BASE_FEE_UPDATE_FRACTION,
        )
        blobs = random_blobs(blob_count, self.rng)
        sidecar = make_sidecar(blobs)
        candidate = Blob_Transaction(
            chain_id=chain_id,
            nonce=nonce,
            to=self.identity.address,
            gas=self.configuration.GAS_LIMIT,
            max_fee_per_gas=header.base_fee + priority_fee,
            max_priority_fee_per_gas=priority_fee,
            max_fee_per_blob_gas=max_fee_per_blob_gas,
            blob_versioned_hashes=sidecar.blob_hashes(),
            sidecar=sidecar,
        )
        signed = self._sign(candidate, blobs=sidecar.blobs)
        target_block = header.number + block_offset
        logger.info(
            f"Built blob transaction {signed.hash} with {blob_count} blobs "
            f"(nonce {nonce}, blob fee cap {max_fee_per_blob_gas}) for block {target_block} ✅"
        )
        return signed, target_block
