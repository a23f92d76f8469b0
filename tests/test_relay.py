import pytest

from aiohttp import web
from aiohttp.test_utils import TestServer

from preconf_bidder.exceptions import RelayError
from preconf_bidder.relay import Relay_Client
from preconf_bidder.transactions import Self_Transfer, Signed_Tx


def _signed_tx():
    candidate = Self_Transfer(17000, 0, "0x" + "11" * 20, 1, 21000, 2, 1)
    return Signed_Tx(raw_transaction=b"\x02\xab", hash="0x" + "22" * 32, candidate=candidate)


@pytest.fixture
async def relay_server():
    received = []
    replies = []

    async def handle(request):
        received.append(await request.json())
        return web.json_response(replies.pop(0))

    app = web.Application()
    app.router.add_post("/", handle)
    server = TestServer(app)
    await server.start_server()
    yield str(server.make_url("/")), received, replies
    await server.close()


async def test_bundle_request_shape(relay_server):
    url, received, replies = relay_server
    replies.append({"jsonrpc": "2.0", "id": 1, "result": {"bundleHash": "0xbundle"}})

    result = await Relay_Client(url, timeout=5.0).send_bundle(_signed_tx(), 101)

    assert received == [
        {
            "jsonrpc": "2.0",
            "method": "eth_sendBundle",
            "params": [{"txs": ["0x02ab"], "blockNumber": "0x65"}],
            "id": 1,
        }
    ]
    assert result == '{"bundleHash": "0xbundle"}'


async def test_rpc_error_reply(relay_server):
    url, _, replies = relay_server
    replies.append({"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "bundle rejected"}})

    with pytest.raises(RelayError, match="RPC Error -32000: bundle rejected"):
        await Relay_Client(url).send_bundle(_signed_tx(), 101)


async def test_unreachable_relay():
    with pytest.raises(RelayError, match="failed"):
        await Relay_Client("http://127.0.0.1:1/", timeout=2.0).send_bundle(_signed_tx(), 101)
