import asyncio

import pytest

from hexbytes import HexBytes

from preconf_bidder.connection import (
    Block_Header,
    Chain_Handle,
    Connection_Manager,
    offer_header,
)
from preconf_bidder.exceptions import StopRequestedError, SubscriptionError

from tests.conftest import Fake_Chain_Handle, make_header


def test_header_from_formatted_block_data():
    header = Block_Header.from_block_data(
        {
            "number": 101,
            "timestamp": 1_700_000_012,
            "hash": HexBytes("0x" + "ab" * 32),
            "baseFeePerGas": 7,
            "excessBlobGas": 131072,
            "blobGasUsed": 262144,
        }
    )

    assert header == Block_Header(101, 1_700_000_012, "0x" + "ab" * 32, 7, 131072, 262144)


def test_header_from_raw_hex_fields():
    header = Block_Header.from_block_data({"number": "0x65", "hash": "0x01", "baseFeePerGas": "0x10"})

    assert header.number == 101
    assert header.base_fee == 16
    assert header.excess_blob_gas is None


async def test_offer_header_drops_oldest_when_full():
    sink = asyncio.Queue(maxsize=2)
    for number in (1, 2, 3):
        offer_header(sink, make_header(number))

    assert [sink.get_nowait().number for _ in range(2)] == [2, 3]


class Failing_Dialer:
    def __init__(self, failures, handle_factory=Fake_Chain_Handle):
        self.failures = failures
        self.handle_factory = handle_factory
        self.calls = []

    async def __call__(self, endpoint, timeout):
        self.calls.append((endpoint, timeout))
        if len(self.calls) <= self.failures:
            raise ConnectionError("refused")
        return self.handle_factory()


async def test_connect_with_retries_returns_none_when_exhausted(configuration, recording_sleep):
    dialer = Failing_Dialer(failures=100)
    manager = Connection_Manager(configuration, dial_rpc=dialer, sleep=recording_sleep)

    assert await manager.connect_with_retries("http://localhost:8545") is None
    assert len(dialer.calls) == 5
    assert recording_sleep.delays == [10.0, 20.0, 40.0, 80.0]


async def test_connect_with_retries_honours_attempts_and_timeout(configuration, recording_sleep):
    dialer = Failing_Dialer(failures=1)
    manager = Connection_Manager(configuration, dial_rpc=dialer, sleep=recording_sleep)

    handle = await manager.connect_with_retries("http://localhost:8545", max_attempts=2, timeout=3.0)

    assert isinstance(handle, Fake_Chain_Handle)
    assert dialer.calls == [("http://localhost:8545", 3.0)] * 2


async def test_connect_subscribable_never_gives_up(configuration, recording_sleep):
    dialer = Failing_Dialer(failures=12)
    manager = Connection_Manager(configuration, dial_ws=dialer, sleep=recording_sleep)

    handle = await manager.connect_subscribable("ws://localhost:8546")

    assert isinstance(handle, Fake_Chain_Handle)
    assert len(dialer.calls) == 13
    assert recording_sleep.delays == [10.0] * 12


class Subscribe_Failures:
    """Hands out chain handles whose subscribe call fails for the first ``failures`` handles."""

    def __init__(self, failures):
        self.failures = failures
        self.handles = []

    async def __call__(self, endpoint, timeout):
        fail_on = ("subscribe",) if len(self.handles) < self.failures else ()
        handle = Fake_Chain_Handle(fail_on=fail_on)
        self.handles.append(handle)
        return handle


@pytest.mark.parametrize("failures", [0, 3, 9])
async def test_resubscribe_succeeds_on_next_attempt(configuration, recording_sleep, failures):
    dialer = Subscribe_Failures(failures)
    manager = Connection_Manager(configuration, dial_ws=dialer, sleep=recording_sleep)
    sink = asyncio.Queue()

    result = await manager.resubscribe("ws://localhost:8546", sink)

    assert result is not None
    handle, subscription = result
    assert handle is dialer.handles[-1]
    assert len(dialer.handles) == failures + 1
    assert handle.subscriptions[0] == (subscription, sink)
    assert all(h.closed for h in dialer.handles[:-1])
    assert recording_sleep.delays == [5.0] * failures


@pytest.mark.parametrize("failures", [10, 15])
async def test_resubscribe_exhausts_after_ten_attempts(configuration, recording_sleep, caplog, failures):
    dialer = Subscribe_Failures(failures)
    manager = Connection_Manager(configuration, dial_ws=dialer, sleep=recording_sleep)

    assert await manager.resubscribe("ws://localhost:8546", asyncio.Queue()) is None
    assert len(dialer.handles) == 10
    assert recording_sleep.delays == [5.0] * 9
    assert "exhausted" in caplog.text


async def _short_sleep(delay):
    await asyncio.sleep(0.001)


async def test_connect_subscribable_stops_on_request(configuration):
    dialer = Failing_Dialer(failures=10**9)
    manager = Connection_Manager(configuration, dial_ws=dialer, sleep=_short_sleep)
    stop_event = asyncio.Event()

    connecting = asyncio.create_task(manager.connect_subscribable("ws://localhost:8546", stop_event))
    await asyncio.sleep(0.02)
    stop_event.set()

    with pytest.raises(StopRequestedError):
        await asyncio.wait_for(connecting, timeout=1.0)
    attempts = len(dialer.calls)
    await asyncio.sleep(0.02)
    assert len(dialer.calls) == attempts


async def test_resubscribe_stops_on_request(configuration):
    dialer = Failing_Dialer(failures=10**9)
    manager = Connection_Manager(configuration, dial_ws=dialer, sleep=_short_sleep)
    stop_event = asyncio.Event()
    stop_event.set()

    with pytest.raises(StopRequestedError):
        await asyncio.wait_for(
            manager.resubscribe("ws://localhost:8546", asyncio.Queue(), stop_event), timeout=1.0
        )
    assert dialer.calls == []


class Fake_Socket:
    def __init__(self, messages, error=None):
        self.messages = messages
        self.error = error

    async def _stream(self):
        for message in self.messages:
            yield message
        if self.error is not None:
            raise self.error
        await asyncio.Event().wait()

    def process_subscriptions(self):
        return self._stream()


class Fake_Eth:
    def __init__(self):
        self.unsubscribed = []

    async def subscribe(self, kind):
        assert kind == "newHeads"
        return "0xsub"

    async def unsubscribe(self, subscription_id):
        self.unsubscribed.append(subscription_id)
        return True


class Fake_Web3:
    def __init__(self, socket):
        self.socket = socket
        self.eth = Fake_Eth()
        self.provider = None


@pytest.fixture
def subscribable(monkeypatch):
    monkeypatch.setattr(Chain_Handle, "subscribable", property(lambda self: True))


def _head(number, subscription="0xsub"):
    return {"subscription": subscription, "result": {"number": number, "hash": "0x01", "baseFeePerGas": 1}}


async def test_subscription_delivers_headers_and_reports_errors(subscribable):
    socket = Fake_Socket([_head(1), _head(2, subscription="0xother"), _head(3)], error=ConnectionError("closed"))
    handle = Chain_Handle(Fake_Web3(socket), "ws://localhost:8546", timeout=1.0)
    sink = asyncio.Queue()

    subscription = await handle.subscribe_new_heads(sink)
    error = await asyncio.wait_for(subscription.errors, timeout=1.0)

    assert isinstance(error, SubscriptionError)
    assert [sink.get_nowait().number for _ in range(sink.qsize())] == [1, 3]


async def test_only_one_active_subscription_per_handle(subscribable):
    handle = Chain_Handle(Fake_Web3(Fake_Socket([])), "ws://localhost:8546", timeout=1.0)
    subscription = await handle.subscribe_new_heads(asyncio.Queue())

    with pytest.raises(SubscriptionError, match="already"):
        await handle.subscribe_new_heads(asyncio.Queue())

    await subscription.unsubscribe()
    assert handle.web3.eth.unsubscribed == ["0xsub"]
    assert not subscription.active
    second = await handle.subscribe_new_heads(asyncio.Queue())
    await second.unsubscribe()


async def test_http_handle_cannot_subscribe():
    handle = Chain_Handle(Fake_Web3(Fake_Socket([])), "http://localhost:8545", timeout=1.0)

    with pytest.raises(SubscriptionError, match="does not support"):
        await handle.subscribe_new_heads(asyncio.Queue())
