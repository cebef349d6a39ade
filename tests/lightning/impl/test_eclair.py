import asyncio
import time

import aiohttp
import pytest
from aiohttp import web

from lnbridge.lightning.exceptions import BackendApiError, NotSupportedError
from lnbridge.lightning.impl.eclair import EclairLightningClient, EclairRestClient
from lnbridge.lightning.impl.retry import RetryPolicy
from lnbridge.lightning.models import (
    InvoiceStatus,
    NodeInfo,
    OpenChannelRequest,
    OpenChannelResult,
    OutPoint,
    PayResult,
)

PAYMENT_HASH = "cd" * 32


def _client(url, **kwargs):
    return EclairLightningClient(
        url,
        "secret",
        retry_policy=RetryPolicy(max_attempts=1),
        poll_interval=0,
        poll_empty_interval=0,
        **kwargs,
    )


def _invoice_json(amount=10000, timestamp=None, expiry=3600):
    return {
        "prefix": "lnbcrt",
        "timestamp": timestamp or int(time.time()),
        "nodeId": "02" + "ab" * 32,
        "serialized": "lnbcrt100n1pjexample",
        "description": "coffee",
        "paymentHash": PAYMENT_HASH,
        "expiry": expiry,
        "amount": amount,
    }


def _error(message, status=400):
    return web.json_response({"error": message}, status=status)


@pytest.mark.asyncio
async def test_get_info(fake_node, pubkey):
    async def getinfo(request):
        return web.json_response(
            {
                "nodeId": pubkey,
                "alias": "eclair",
                "blockHeight": 123,
                "publicAddresses": ["1.2.3.4:9735"],
            }
        )

    async with fake_node({"getinfo": getinfo}) as url:
        info = await _client(url).get_info()

    assert info.block_height == 123
    assert info.node_info_list == [NodeInfo(node_id=pubkey, host="1.2.3.4", port=9735)]


@pytest.mark.asyncio
async def test_create_invoice(fake_node):
    seen = {}

    async def createinvoice(request):
        seen.update(await request.post())
        return web.json_response(_invoice_json())

    async with fake_node({"createinvoice": createinvoice}) as url:
        invoice = await _client(url).create_invoice(10000, "coffee", 600)

    assert seen == {"description": "coffee", "amountMsat": "10000", "expireIn": "600"}
    assert invoice.id == PAYMENT_HASH
    assert invoice.amount_msat == 10000
    assert invoice.bolt11 == "lnbcrt100n1pjexample"
    assert invoice.status == InvoiceStatus.UNPAID


@pytest.mark.asyncio
async def test_create_invoice_without_amount_is_unpaid(fake_node):
    async def createinvoice(request):
        return web.json_response(_invoice_json(amount=None))

    async with fake_node({"createinvoice": createinvoice}) as url:
        invoice = await _client(url).create_invoice(0, "tip")

    assert invoice.amount_msat == 0
    assert invoice.status == InvoiceStatus.UNPAID


@pytest.mark.asyncio
async def test_create_invoice_negative_amount():
    with pytest.raises(ValueError):
        await _client("http://localhost:1").create_invoice(-1)


@pytest.mark.asyncio
async def test_get_invoice_paid(fake_node):
    async def getinvoice(request):
        return web.json_response(_invoice_json())

    async def getreceivedinfo(request):
        return web.json_response(
            {
                "paymentHash": PAYMENT_HASH,
                "amountMsat": 10000,
                "receivedAt": int(time.time() * 1000),
            }
        )

    handlers = {"getinvoice": getinvoice, "getreceivedinfo": getreceivedinfo}
    async with fake_node(handlers) as url:
        invoice = await _client(url).get_invoice(PAYMENT_HASH)

    assert invoice.status == InvoiceStatus.PAID
    assert invoice.amount_received_msat == 10000
    assert invoice.paid_at is not None


@pytest.mark.asyncio
async def test_get_invoice_received_lookup_fails(fake_node):
    async def getinvoice(request):
        return web.json_response(_invoice_json(timestamp=int(time.time()) - 7200))

    async def getreceivedinfo(request):
        return _error("Not found", status=404)

    handlers = {"getinvoice": getinvoice, "getreceivedinfo": getreceivedinfo}
    async with fake_node(handlers) as url:
        invoice = await _client(url).get_invoice(PAYMENT_HASH)

    assert invoice.status == InvoiceStatus.EXPIRED
    assert invoice.amount_received_msat == 0
    assert invoice.paid_at is None


@pytest.mark.asyncio
async def test_get_invoice_unknown(fake_node):
    async def getinvoice(request):
        return _error("invoice not found", status=404)

    async with fake_node({"getinvoice": getinvoice}) as url:
        with pytest.raises(BackendApiError):
            await _client(url).get_invoice(PAYMENT_HASH)


def _pay_handlers(statuses):
    remaining = list(statuses)

    async def payinvoice(request):
        form = await request.post()
        assert form["invoice"] == "lnbcrt1..."
        return web.json_response("e4227601-38b3-404e-9aa0-75a829e9bec0")

    async def getsentinfo(request):
        form = await request.post()
        assert form["id"] == "e4227601-38b3-404e-9aa0-75a829e9bec0"
        status = remaining.pop(0)
        if status is None:
            return web.json_response([])
        return web.json_response([{"id": form["id"], "status": status}])

    return {"payinvoice": payinvoice, "getsentinfo": getsentinfo}


@pytest.mark.asyncio
async def test_pay_succeeds(fake_node):
    async with fake_node(_pay_handlers([None, "PENDING", "PENDING", "SUCCEEDED"])) as url:
        res = await _client(url).pay("lnbcrt1...")

    assert res.result == PayResult.OK


@pytest.mark.asyncio
async def test_pay_fails(fake_node):
    async with fake_node(_pay_handlers(["PENDING", {"type": "failed"}])) as url:
        res = await _client(url).pay("lnbcrt1...")

    assert res.result == PayResult.COULD_NOT_FIND_ROUTE


@pytest.mark.asyncio
async def test_pay_new_status_format(fake_node):
    async with fake_node(_pay_handlers([{"type": "pending"}, {"type": "sent"}])) as url:
        res = await _client(url).pay("lnbcrt1...")

    assert res.result == PayResult.OK


@pytest.mark.asyncio
async def test_pay_submission_rejected(fake_node):
    async def payinvoice(request):
        return _error("invalid payment request")

    async with fake_node({"payinvoice": payinvoice}) as url:
        res = await _client(url).pay("lnbcrt1...")

    assert res.result == PayResult.COULD_NOT_FIND_ROUTE


@pytest.mark.asyncio
async def test_pay_broken_status_response(monkeypatch):
    async def _post(self, endpoint, body, headers):
        if endpoint.endswith("/payinvoice"):
            return 200, '"e4227601-38b3-404e-9aa0-75a829e9bec0"'
        calls.append(endpoint)
        if len(calls) == 1:
            return 200, '[{"id": "x", "status": "PENDING"}]'
        raise aiohttp.ClientPayloadError("Response payload is not completed")

    calls = []
    monkeypatch.setattr(EclairRestClient, "_post", _post)

    res = await _client("http://localhost:1").pay("lnbcrt1...")

    assert res.result == PayResult.COULD_NOT_FIND_ROUTE
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_pay_cancelled(fake_node):
    cancel = asyncio.Event()
    cancel.set()

    async with fake_node(_pay_handlers([])) as url:
        res = await _client(url).pay("lnbcrt1...", cancel)

    assert res is None


def _open_request(pubkey):
    return OpenChannelRequest(
        node_info=NodeInfo(node_id=pubkey, host="1.2.3.4", port=9735),
        channel_amount_sat=100000,
        fee_rate_sat_per_vbyte=2,
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "state, expected",
    [
        ("WAIT_FOR_FUNDING_CONFIRMED", OpenChannelResult.NEED_MORE_CONFIRMATIONS),
        ("NORMAL", OpenChannelResult.OK),
    ],
)
async def test_open_channel_created(fake_node, pubkey, state, expected):
    seen = {}

    async def open_(request):
        seen.update(await request.post())
        return web.json_response("created channel abc123")

    async def channel(request):
        form = await request.post()
        seen["looked_up"] = form["channelId"]
        return web.json_response(
            {"nodeId": pubkey, "channelId": form["channelId"], "state": state}
        )

    async with fake_node({"open": open_, "channel": channel}) as url:
        res = await _client(url).open_channel(_open_request(pubkey))

    assert res.result == expected
    assert seen["looked_up"] == "abc123"
    assert seen["nodeId"] == pubkey
    assert seen["fundingSatoshis"] == "100000"
    assert seen["fundingFeerateSatByte"] == "2"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, expected",
    [
        ("no connection to peer", OpenChannelResult.PEER_NOT_CONNECTED),
        ("insufficient funds", OpenChannelResult.CANNOT_AFFORD_FUNDING),
        ("totally unknown error", OpenChannelResult.ALREADY_EXISTS),
    ],
)
async def test_open_channel_errors(fake_node, pubkey, error, expected):
    async def open_(request):
        return _error(error)

    async with fake_node({"open": open_}) as url:
        res = await _client(url).open_channel(_open_request(pubkey))

    assert res.result == expected


@pytest.mark.asyncio
async def test_open_channel_could_not_publish(fake_node, pubkey):
    async def open_(request):
        return web.json_response("couldn't publish funding tx")

    async with fake_node({"open": open_}) as url:
        res = await _client(url).open_channel(_open_request(pubkey))

    assert res.result == OpenChannelResult.CANNOT_AFFORD_FUNDING


@pytest.mark.asyncio
async def test_connect_to(fake_node, pubkey):
    seen = {}

    async def connect(request):
        seen.update(await request.post())
        return web.json_response("connected")

    async with fake_node({"connect": connect}) as url:
        await _client(url).connect_to(NodeInfo(node_id=pubkey, host="1.2.3.4", port=9735))

    assert seen == {"nodeId": pubkey, "host": "1.2.3.4", "port": "9735"}


@pytest.mark.asyncio
async def test_list_channels(fake_node, pubkey):
    async def channels(request):
        return web.json_response(
            [
                {
                    "nodeId": pubkey,
                    "channelId": "c1",
                    "state": "NORMAL",
                    "data": {
                        "commitments": {
                            "channelFlags": 1,
                            "localCommit": {"spec": {"toLocalMsat": 5000}},
                            "commitInput": {
                                "outPoint": "abcd1234:0",
                                "amountSatoshis": 20,
                            },
                        }
                    },
                },
                {"nodeId": pubkey, "channelId": "c2", "state": "WAIT_FOR_ACCEPT_CHANNEL"},
            ]
        )

    async with fake_node({"channels": channels}) as url:
        res = await _client(url).list_channels()

    assert len(res) == 1
    assert res[0].channel_point == OutPoint(txid="abcd1234", index=0)
    assert res[0].capacity_msat == 20000
    assert res[0].is_active and res[0].is_public


@pytest.mark.asyncio
async def test_listen(fake_node):
    async def ws(request):
        socket = web.WebSocketResponse()
        await socket.prepare(request)
        await socket.send_str("not json")
        await socket.send_json({"type": "payment-sent", "paymentHash": "ff" * 32})
        await socket.send_json({"type": "payment-received", "paymentHash": PAYMENT_HASH})
        await socket.close()
        return socket

    async def getinvoice(request):
        return web.json_response(_invoice_json())

    async def getreceivedinfo(request):
        return web.json_response({"paymentHash": PAYMENT_HASH, "amountMsat": 10000})

    handlers = {"ws": ws, "getinvoice": getinvoice, "getreceivedinfo": getreceivedinfo}
    async with fake_node(handlers) as url:
        invoices = [i async for i in _client(url).listen()]

    assert [i.id for i in invoices] == [PAYMENT_HASH]
    assert invoices[0].status == InvoiceStatus.PAID


@pytest.mark.asyncio
async def test_deposit_address_not_supported():
    with pytest.raises(NotSupportedError):
        await _client("http://localhost:1").get_deposit_address()
