from decimal import Decimal

import numpy as np
import pytest

from hypothesis import given, settings
from hypothesis import strategies as st

from preconf_bidder.bid import (
    Bid,
    Bid_Computer,
    By_Hash,
    By_Raw_Transaction,
    classify_payload,
)
from preconf_bidder.exceptions import UnsupportedBidInputError
from preconf_bidder.transactions import Self_Transfer, Signed_Tx


def _signed_tx():
    candidate = Self_Transfer(17000, 0, "0x" + "11" * 20, 1, 21000, 2, 1)
    return Signed_Tx(raw_transaction=b"\x02\xf8", hash="0x" + "22" * 32, candidate=candidate)


@settings(max_examples=200, deadline=None)
@given(
    target_eth=st.floats(min_value=1e-9, max_value=1000, allow_nan=False, allow_infinity=False),
    std_dev_percent=st.floats(min_value=0, max_value=1000, allow_nan=False, allow_infinity=False),
    seed=st.integers(min_value=0, max_value=2**32 - 1),
)
def test_sampled_amount_never_below_target(target_eth, std_dev_percent, seed):
    computer = Bid_Computer(rng=np.random.default_rng(seed))

    amount = computer.sample_bid_amount_wei(target_eth, std_dev_percent)

    assert isinstance(amount, int)
    assert amount > 0
    assert amount >= int(Decimal(target_eth) * 10**18)


def test_zero_deviation_returns_target():
    computer = Bid_Computer(rng=np.random.default_rng(0))

    assert computer.sample_bid_amount_wei(0.001, 0) == 10**15


def test_sampled_amount_has_upside():
    computer = Bid_Computer(rng=np.random.default_rng(0))
    amounts = {computer.sample_bid_amount_wei(0.001, 100) for _ in range(50)}

    assert min(amounts) >= 10**15
    assert max(amounts) > 10**15


@pytest.mark.parametrize("target, std_dev", [(0, 10), (-1, 10), (0.001, -1)])
def test_invalid_sampling_inputs(target, std_dev):
    with pytest.raises(ValueError):
        Bid_Computer().sample_bid_amount_wei(target, std_dev)


@given(now_ms=st.integers(min_value=0, max_value=2**62))
def test_decay_window_length_is_constant(now_ms):
    start, end = Bid_Computer(decay_duration_ms=36_000).compute_decay_window(now_ms)

    assert start == now_ms
    assert end - start == 36_000


def test_decay_window_uses_clock():
    computer = Bid_Computer(decay_duration_ms=12_000, clock=lambda: 1_700_000_000.5)

    assert computer.compute_decay_window() == (1_700_000_000_500, 1_700_000_012_500)


def test_classify_hash_list():
    assert classify_payload(["0xabc123", "def"]) == By_Hash(("0xabc123", "def"))


def test_classify_transaction_list():
    signed = _signed_tx()

    assert classify_payload([signed]) == By_Raw_Transaction((signed,))


def test_classify_passes_variants_through():
    payload = By_Hash(("0x01",))

    assert classify_payload(payload) is payload


@pytest.mark.parametrize("value", [42, "0xabc123", [], [1, 2], ["0x01", 2], None, {"0x01"}])
def test_classify_rejects_other_shapes(value):
    with pytest.raises(UnsupportedBidInputError):
        classify_payload(value)


def test_mixed_list_is_rejected():
    with pytest.raises(UnsupportedBidInputError):
        classify_payload(["0x01", _signed_tx()])


def test_bid_invariants():
    payload = By_Hash(("0x01",))
    Bid(1, 101, 1000, 2000, payload)

    with pytest.raises(ValueError):
        Bid(0, 101, 1000, 2000, payload)
    with pytest.raises(ValueError):
        Bid(1, 101, 2000, 2000, payload)
    with pytest.raises(UnsupportedBidInputError):
        Bid(1, 101, 1000, 2000, ["0x01"])
    with pytest.raises(UnsupportedBidInputError):
        By_Hash(())
