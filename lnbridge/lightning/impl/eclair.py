import asyncio
import json
from typing import AsyncGenerator, List, Optional

import aiohttp
from loguru import logger

from lnbridge.bitcoind.utils import BitcoinRpc
from lnbridge.lightning.exceptions import LightningClientError
from lnbridge.lightning.impl.channel_open import ChannelOpenClassifier
from lnbridge.lightning.impl.dispatcher import NO_REQUEST, FormDispatcher
from lnbridge.lightning.impl.eclair_models import (
    ChannelResponse,
    GetInfoResponse,
    InvoiceResponse,
    ReceivedInfoResponse,
    SentInfoResponse,
)
from lnbridge.lightning.impl.ln_base import LightningClientBase
from lnbridge.lightning.impl.poller import PaymentOutcomePoller, PaymentStatus
from lnbridge.lightning.impl.retry import RetryPolicy
from lnbridge.lightning.models import (
    Channel,
    Invoice,
    LightningNodeInformation,
    NodeInfo,
    OpenChannelRequest,
    OpenChannelResponse,
    PayResponse,
    PayResult,
)

_SENT_STATUS = {
    "PENDING": PaymentStatus.PENDING,
    "SUCCEEDED": PaymentStatus.SUCCEEDED,
    "FAILED": PaymentStatus.FAILED,
    "pending": PaymentStatus.PENDING,
    "sent": PaymentStatus.SUCCEEDED,
    "failed": PaymentStatus.FAILED,
}

_PAYMENT_RECEIVED_EVENT = "payment-received"


class EclairRestClient(FormDispatcher):
    """The Eclair REST API, one method per endpoint."""

    def __init__(self, url: str, password: str, **kwargs) -> None:
        # eclair ignores the user name
        super().__init__(url, auth=aiohttp.BasicAuth("", password), **kwargs)

    async def get_info(self) -> GetInfoResponse:
        return await self._send("getinfo", NO_REQUEST, GetInfoResponse)

    async def create_invoice(
        self, description: str, amount_msat: Optional[int], expire_in: Optional[int]
    ) -> InvoiceResponse:
        return await self._send(
            "createinvoice",
            {
                "description": description,
                "amountMsat": amount_msat,
                "expireIn": expire_in,
            },
            InvoiceResponse,
        )

    async def get_invoice(self, payment_hash: str) -> InvoiceResponse:
        return await self._send(
            "getinvoice", {"paymentHash": payment_hash}, InvoiceResponse
        )

    async def get_received_info(self, payment_hash: str) -> ReceivedInfoResponse:
        return await self._send(
            "getreceivedinfo", {"paymentHash": payment_hash}, ReceivedInfoResponse
        )

    async def pay_invoice(self, invoice: str) -> str:
        return await self._send("payinvoice", {"invoice": invoice}, str)

    async def get_sent_info(self, payment_id: str) -> List[SentInfoResponse]:
        return await self._send("getsentinfo", {"id": payment_id}, List[SentInfoResponse])

    async def open(
        self,
        node_id: str,
        funding_satoshis: int,
        push_msat: Optional[int] = None,
        funding_fee_rate_sat_byte: Optional[int] = None,
        channel_flags: Optional[int] = None,
    ) -> str:
        return await self._send(
            "open",
            {
                "nodeId": node_id,
                "fundingSatoshis": funding_satoshis,
                "pushMsat": push_msat,
                "fundingFeerateSatByte": funding_fee_rate_sat_byte,
                "channelFlags": channel_flags,
            },
            str,
        )

    async def channel(self, channel_id: str) -> ChannelResponse:
        return await self._send("channel", {"channelId": channel_id}, ChannelResponse)

    async def channels(self, to_remote_node_id: Optional[str] = None) -> List[ChannelResponse]:
        return await self._send(
            "channels", {"toRemoteNodeId": to_remote_node_id}, List[ChannelResponse]
        )

    async def connect(self, node_id: str, host: str, port: int) -> str:
        return await self._send(
            "connect", {"nodeId": node_id, "host": host, "port": port}, str
        )


class EclairLightningClient(LightningClientBase):
    def __init__(
        self,
        url: str,
        password: str,
        wallet_rpc: Optional[BitcoinRpc] = None,
        retry_policy: Optional[RetryPolicy] = None,
        request_timeout: float = 60,
        poll_interval: float = 0.2,
        poll_empty_interval: float = 0.05,
        poll_max_duration: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(wallet_rpc)

        self._password = password
        self._rest = EclairRestClient(
            url,
            password,
            retry_policy=retry_policy,
            timeout=request_timeout,
            session=session,
        )
        self._poller = PaymentOutcomePoller(
            self._payment_status,
            interval=poll_interval,
            empty_interval=poll_empty_interval,
            max_duration=poll_max_duration,
        )
        self._classifier = ChannelOpenClassifier(self._channel_state)

    def get_implementation_name(self) -> str:
        return "ECLAIR"

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def get_info(self) -> LightningNodeInformation:
        logger.trace("get_info()")

        info = await self._rest.get_info()
        return LightningNodeInformation.from_eclair(info)

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def create_invoice(
        self, amount_msat: int, description: str = "", expiry: int = 3600
    ) -> Invoice:
        logger.trace(f"create_invoice({amount_msat}, {description}, {expiry})")

        if amount_msat < 0:
            raise ValueError("amount_msat cannot be negative")

        res = await self._rest.create_invoice(description, amount_msat, expiry)
        return Invoice.from_eclair(res).as_new()

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def get_invoice(self, invoice_id: str) -> Invoice:
        logger.trace(f"get_invoice({invoice_id})")

        invoice = await self._rest.get_invoice(invoice_id)

        try:
            received = await self._rest.get_received_info(invoice_id)
        except LightningClientError as e:
            # nothing received yet or the backend can't tell, both mean unpaid
            logger.debug(f"No received info for invoice {invoice_id}: {e}")
            received = None

        return Invoice.from_eclair(invoice, received)

    async def listen(self) -> AsyncGenerator[Invoice, None]:
        logger.trace("listen()")

        ws_url = self._rest.url.replace("http", "ws", 1) + "/ws"
        headers = {"Authorization": aiohttp.BasicAuth("", self._password).encode()}

        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(ws_url, headers=headers) as ws:
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.ERROR:
                        logger.error(f"Eclair websocket failed: {ws.exception()}")
                        break

                    if msg.type != aiohttp.WSMsgType.TEXT:
                        continue

                    try:
                        event = json.loads(msg.data)
                    except ValueError as e:
                        logger.error(f"Got an event but could not parse the data: {e}")
                        continue

                    if not isinstance(event, dict):
                        continue

                    if event.get("type") == _PAYMENT_RECEIVED_EVENT and event.get(
                        "paymentHash"
                    ):
                        yield await self.get_invoice(event["paymentHash"])

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def pay(
        self, bolt11: str, cancel: Optional[asyncio.Event] = None
    ) -> Optional[PayResponse]:
        logger.trace(f"pay({bolt11})")

        try:
            payment_id = await self._rest.pay_invoice(bolt11)
        except LightningClientError as e:
            logger.error(f"Unable to submit payment: {e}")
            return PayResponse(result=PayResult.COULD_NOT_FIND_ROUTE)

        result = await self._poller.poll(payment_id, cancel)
        if result is None:
            return None

        return PayResponse(result=result)

    async def _payment_status(self, payment_id: str) -> Optional[PaymentStatus]:
        sent = await self._rest.get_sent_info(payment_id)
        if not sent:
            return None

        name = sent[0].status_name
        if name not in _SENT_STATUS:
            logger.warning(f"Unknown payment status {name}, treating as pending")

        return _SENT_STATUS.get(name, PaymentStatus.PENDING)

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def connect_to(self, node_info: NodeInfo) -> None:
        logger.trace(f"connect_to({node_info})")

        res = await self._rest.connect(node_info.node_id, node_info.host, node_info.port)
        logger.debug(f"connect_to({node_info.node_id}): {res}")

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def open_channel(self, request: OpenChannelRequest) -> OpenChannelResponse:
        logger.trace(f"open_channel({request})")

        try:
            message = await self._rest.open(
                request.node_info.node_id,
                request.channel_amount_sat,
                funding_fee_rate_sat_byte=request.fee_rate_sat_per_vbyte,
            )
            result = await self._classifier.classify_message(message)
        except LightningClientError as e:
            result = self._classifier.classify_error(e)

        return OpenChannelResponse(result=result)

    async def _channel_state(self, channel_id: str) -> str:
        channel = await self._rest.channel(channel_id)
        return channel.state

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def list_channels(self) -> List[Channel]:
        logger.trace("list_channels()")

        channels = []
        for c in await self._rest.channels():
            if c.data.commitments is None:
                logger.debug(f"Channel {c.channel_id} in state {c.state} has no commitments yet")
                continue

            channels.append(Channel.from_eclair(c))

        return channels
