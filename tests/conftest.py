import asyncio
import os

import numpy as np
import pytest

from preconf_bidder.configuration import Configuration
from preconf_bidder.connection import Block_Header
from preconf_bidder.identity import Signing_Identity

TEST_PRIVATE_KEY = "4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_CHAIN_ID = 17000
BASE_FEE = 1_000_000_000

CONFIG_ENV_KEYS = (
    "ENV_FILE",
    "PRIVATE_KEY",
    "WS_ENDPOINT",
    "RPC_ENDPOINT",
    "SERVER_ADDRESS",
    "USE_PAYLOAD",
    "OFFSET",
    "BID_AMOUNT",
    "BID_AMOUNT_STD_DEV_PERCENTAGE",
    "PRIORITY_FEE",
    "NUM_BLOB",
    "DEFAULT_TIMEOUT",
    "RUN_DURATION_MINUTES",
    "DECAY_DURATION_MS",
    "TRANSFER_VALUE_WEI",
    "GAS_LIMIT",
    "BLOB_FEE_MARGIN_PERCENT",
    "BLOB_TARGET_GAS_PER_BLOCK",
    "BLOB_BASE_FEE_UPDATE_FRACTION",
    "APP_NAME",
    "VERSION",
    "LOG_LEVEL",
)


def make_header(number: int = 100, **overrides) -> Block_Header:
    values = dict(
        number=number,
        timestamp=1_700_000_000 + number * 12,
        hash="0x" + f"{number:064x}",
        base_fee=BASE_FEE,
        excess_blob_gas=0,
        blob_gas_used=0,
    )
    values.update(overrides)
    return Block_Header(**values)


class Fake_Subscription:
    def __init__(self):
        self.errors = asyncio.get_running_loop().create_future()
        self.unsubscribed = False

    async def unsubscribe(self):
        self.unsubscribed = True


class Fake_Chain_Handle:
    """In-memory stand-in for :class:`Chain_Handle`."""

    def __init__(self, nonce=7, header=None, chain_id=TEST_CHAIN_ID, timeout=1.0, fail_on=()):
        self.nonce = nonce
        self.header = header or make_header()
        self._chain_id = chain_id
        self.timeout = timeout
        self.fail_on = set(fail_on)
        self.subscriptions = []
        self.closed = False
        self.endpoint = "ws://fake-node:8546"

    def _maybe_fail(self, name):
        if name in self.fail_on:
            raise ConnectionError(f"{name} unavailable")

    async def pending_nonce(self, address):
        self._maybe_fail("nonce")
        return self.nonce

    async def latest_header(self):
        self._maybe_fail("header")
        return self.header

    async def chain_id(self):
        self._maybe_fail("chain_id")
        return self._chain_id

    async def subscribe_new_heads(self, sink):
        self._maybe_fail("subscribe")
        subscription = Fake_Subscription()
        self.subscriptions.append((subscription, sink))
        return subscription

    async def close(self):
        self.closed = True


class Recording_Sleep:
    """Awaitable sleep that records requested delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def clean_env(monkeypatch):
    environ = {key: value for key, value in os.environ.items() if key not in CONFIG_ENV_KEYS}
    monkeypatch.setattr(os, "environ", environ)
    return environ


@pytest.fixture
def configuration():
    return Configuration(
        PRIVATE_KEY=TEST_PRIVATE_KEY,
        WS_ENDPOINT="ws://localhost:8546",
        RPC_ENDPOINT="http://localhost:8545",
        DEFAULT_TIMEOUT=1.0,
    )


@pytest.fixture
def identity():
    return Signing_Identity.from_private_key(TEST_PRIVATE_KEY, TEST_CHAIN_ID)


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def chain_handle():
    return Fake_Chain_Handle()


@pytest.fixture
def recording_sleep():
    return Recording_Sleep()
