import logging
import time

from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal, localcontext
from typing import Any, Callable, List, Optional, Tuple, Union

import numpy as np

from .constants import WEI_PER_ETH
from .exceptions import UnsupportedBidInputError
from .transactions import Signed_Tx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class By_Hash:
    """Bid on transactions already sent elsewhere, referenced by hash."""
    tx_hashes: Tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.tx_hashes:
            raise UnsupportedBidInputError(self.tx_hashes, "Bid needs at least one transaction hash")


@dataclass(frozen=True)
class By_Raw_Transaction:
    """Bid carrying the signed transactions themselves."""
    transactions: Tuple[Signed_Tx, ...]

    def __post_init__(self) -> None:
        if not self.transactions:
            raise UnsupportedBidInputError(self.transactions, "Bid needs at least one transaction")


Bid_Payload = Union[By_Hash, By_Raw_Transaction]


def classify_payload(value: Any) -> Bid_Payload:
    """
    Turn a loosely typed bid input into a payload variant.

    Accepts a payload variant, a non-empty list of hash strings or a non-empty
    list of :class:`Signed_Tx`.

    :raises UnsupportedBidInputError: For anything else.
    """
    if isinstance(value, (By_Hash, By_Raw_Transaction)):
        return value
    if isinstance(value, (list, tuple)) and value:
        if all(isinstance(item, str) for item in value):
            return By_Hash(tuple(value))
        if all(isinstance(item, Signed_Tx) for item in value):
            return By_Raw_Transaction(tuple(value))
    raise UnsupportedBidInputError(value)


@dataclass(frozen=True)
class Bid:
    amount_wei: int
    block_number: int
    decay_start_ms: int
    decay_end_ms: int
    payload: Bid_Payload

    def __post_init__(self) -> None:
        if self.amount_wei <= 0:
            raise ValueError(f"Bid amount must be positive, got {self.amount_wei}")
        if self.decay_end_ms <= self.decay_start_ms:
            raise ValueError("Decay end must be after decay start")
        if not isinstance(self.payload, (By_Hash, By_Raw_Transaction)):
            raise UnsupportedBidInputError(self.payload)


@dataclass
class Bid_Outcome:
    """Commitments streamed back for one bid, and the error that ended the stream if any."""
    commitments: List[Any] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Bid_Computer:
    """
    Computes bid amounts and decay windows.

    :param decay_duration_ms: Length of every decay window.
    :param rng: Random source for amount sampling.
    :param clock: Returns the current time in seconds.
    """

    def __init__(
        self,
        decay_duration_ms: int = 36_000,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = time.time,
    ):
        if decay_duration_ms <= 0:
            raise ValueError("decay_duration_ms must be positive")
        self.decay_duration_ms = decay_duration_ms
        self.rng = rng if rng is not None else np.random.default_rng()
        self.clock = clock

    def compute_decay_window(self, now_ms: Optional[int] = None) -> Tuple[int, int]:
        start = int(self.clock() * 1000) if now_ms is None else now_ms
        return start, start + self.decay_duration_ms

    def sample_bid_amount_wei(self, target_eth: float, std_dev_percent: float) -> int:
        """
        Sample a bid amount in wei, never below ``target_eth``.

        :param target_eth: Mean of the distribution and the floor of the result.
        :param std_dev_percent: Standard deviation as a percentage of ``target_eth``.
        :return: Amount in wei, truncated.
        """
        if target_eth <= 0:
            raise ValueError(f"Target bid must be positive, got {target_eth}")
        if std_dev_percent < 0:
            raise ValueError(f"Standard deviation percentage cannot be negative, got {std_dev_percent}")
        std_dev_eth = target_eth * std_dev_percent / 100
        sample = max(float(self.rng.normal(target_eth, std_dev_eth)), target_eth)
        with localcontext() as ctx:
            ctx.prec = 80
            ctx.rounding = ROUND_DOWN
            amount_wei = int(Decimal(sample) * WEI_PER_ETH)
        if amount_wei <= 0:
            raise ValueError(f"Bid amount {sample} ETH is below one wei")
        logger.debug(f"Sampled bid {sample:.18f} ETH ({amount_wei} wei)")
        return amount_wei
