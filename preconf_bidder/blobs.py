import functools
import hashlib
import logging

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import ckzg
import numpy as np

from eth_account.typed_transactions.base import TRUSTED_SETUP

from .connection import Block_Header
from .constants import (
    BLOB_BASE_FEE_UPDATE_FRACTION,
    BLS_MODULUS,
    BYTES_PER_BLOB,
    BYTES_PER_FIELD_ELEMENT,
    FIELD_ELEMENTS_PER_BLOB,
    MAX_BLOBS_PER_TRANSACTION,
    MIN_BASE_FEE_PER_BLOB_GAS,
    TARGET_BLOB_GAS_PER_BLOCK,
    VERSIONED_HASH_VERSION_KZG,
)
from .exceptions import ChainReadError, TransactionBuildError

logger = logging.getLogger(__name__)


def fake_exponential(factor: int, numerator: int, denominator: int) -> int:
    """Integer approximation of ``factor * e ** (numerator / denominator)`` (EIP-4844)."""
    i = 1
    output = 0
    numerator_accum = factor * denominator
    while numerator_accum > 0:
        output += numerator_accum
        numerator_accum = (numerator_accum * numerator) // (denominator * i)
        i += 1
    return output // denominator


def calc_excess_blob_gas(
    parent_excess_blob_gas: int,
    parent_blob_gas_used: int,
    target_blob_gas_per_block: int = TARGET_BLOB_GAS_PER_BLOCK,
) -> int:
    total = parent_excess_blob_gas + parent_blob_gas_used
    if total < target_blob_gas_per_block:
        return 0
    return total - target_blob_gas_per_block


def calc_blob_fee(excess_blob_gas: int, update_fraction: int = BLOB_BASE_FEE_UPDATE_FRACTION) -> int:
    """Blob base fee per blob gas, in wei."""
    return fake_exponential(MIN_BASE_FEE_PER_BLOB_GAS, excess_blob_gas, update_fraction)


def blob_fee_cap(
    parent: Block_Header,
    margin_percent: int = 10,
    target_blob_gas_per_block: int = TARGET_BLOB_GAS_PER_BLOCK,
    update_fraction: int = BLOB_BASE_FEE_UPDATE_FRACTION,
) -> int:
    """
    Blob fee cap for a transaction built on top of ``parent``.

    The next block's blob base fee plus one wei, raised by ``margin_percent`` so a
    same-nonce replacement outbids the previous attempt.

    :raises ChainReadError: If the header carries no blob gas accounting.
    """
    if parent.excess_blob_gas is None or parent.blob_gas_used is None:
        raise ChainReadError(f"Block {parent.number} has no blob gas fields")
    excess = calc_excess_blob_gas(parent.excess_blob_gas, parent.blob_gas_used, target_blob_gas_per_block)
    fee = calc_blob_fee(excess, update_fraction) + 1
    return fee * (100 + margin_percent) // 100


def random_field_element(rng: np.random.Generator) -> bytes:
    """32 random big-endian bytes below the BLS12-381 scalar modulus."""
    while True:
        candidate = rng.bytes(BYTES_PER_FIELD_ELEMENT)
        if int.from_bytes(candidate, "big") < BLS_MODULUS:
            return candidate


def random_blob(rng: np.random.Generator) -> bytes:
    return b"".join(random_field_element(rng) for _ in range(FIELD_ELEMENTS_PER_BLOB))


def random_blobs(count: int, rng: np.random.Generator) -> List[bytes]:
    if not 1 <= count <= MAX_BLOBS_PER_TRANSACTION:
        raise TransactionBuildError(
            f"Blob count must be between 1 and {MAX_BLOBS_PER_TRANSACTION}, got {count}"
        )
    return [random_blob(rng) for _ in range(count)]


@functools.lru_cache(maxsize=1)
def load_trusted_setup():
    """KZG trusted setup, the same one eth-account signs with."""
    return ckzg.load_trusted_setup(TRUSTED_SETUP, 0)


def kzg_to_versioned_hash(commitment: bytes) -> bytes:
    return VERSIONED_HASH_VERSION_KZG + hashlib.sha256(commitment).digest()[1:]


@dataclass(frozen=True)
class Blob_Sidecar:
    """Blobs with their commitments and proofs, index aligned."""
    blobs: Tuple[bytes, ...]
    commitments: Tuple[bytes, ...]
    proofs: Tuple[bytes, ...]

    def __post_init__(self) -> None:
        if not len(self.blobs) == len(self.commitments) == len(self.proofs):
            raise TransactionBuildError(
                f"Sidecar length mismatch: {len(self.blobs)} blobs, "
                f"{len(self.commitments)} commitments, {len(self.proofs)} proofs"
            )
        for blob in self.blobs:
            if len(blob) != BYTES_PER_BLOB:
                raise TransactionBuildError(f"Blob must be {BYTES_PER_BLOB} bytes, got {len(blob)}")

    def __len__(self) -> int:
        return len(self.blobs)

    def blob_hashes(self) -> Tuple[bytes, ...]:
        return tuple(kzg_to_versioned_hash(commitment) for commitment in self.commitments)

    def verify(self) -> bool:
        setup = load_trusted_setup()
        return all(
            ckzg.verify_blob_kzg_proof(blob, commitment, proof, setup)
            for blob, commitment, proof in zip(self.blobs, self.commitments, self.proofs)
        )


def make_sidecar(blobs: Sequence[bytes]) -> Blob_Sidecar:
    """Compute a commitment and a proof for every blob."""
    setup = load_trusted_setup()
    commitments = []
    proofs = []
    try:
        for blob in blobs:
            commitment = ckzg.blob_to_kzg_commitment(blob, setup)
            commitments.append(commitment)
            proofs.append(ckzg.compute_blob_kzg_proof(blob, commitment, setup))
    except Exception as e:
        raise TransactionBuildError(f"KZG commitment failed: {e}") from e
    logger.debug(f"Computed KZG commitments for {len(commitments)} blobs")
    return Blob_Sidecar(tuple(blobs), tuple(commitments), tuple(proofs))
