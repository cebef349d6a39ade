import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List, Optional
from urllib.parse import urlparse

import aiohttp
from loguru import logger

from lnbridge.bitcoind.utils import BitcoinRpc
from lnbridge.lightning.exceptions import InvoiceNotFoundError, LightningClientError
from lnbridge.lightning.impl.channel_open import ChannelOpenClassifier
from lnbridge.lightning.impl.dispatcher import NO_REQUEST, JsonDispatcher
from lnbridge.lightning.impl.ln_base import LightningClientBase
from lnbridge.lightning.impl.poller import PaymentOutcomePoller, PaymentStatus
from lnbridge.lightning.impl.ptarmigan_models import (
    CommandResponse,
    CreateInvoiceResponse,
    GetInfoResponse,
    ListInvoiceResponse,
    ListPaymentResponse,
    SendPaymentResponse,
)
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

_PAYMENT_STATE = {
    "processing": PaymentStatus.PENDING,
    "succeeded": PaymentStatus.SUCCEEDED,
    "failed": PaymentStatus.FAILED,
}

# 1 vbyte is 4 weight units, so sat/vbyte * 1000 / 4 gives sat/kw
_KW_PER_VBYTE = 250


class PtarmiganRestClient(JsonDispatcher):
    """The ptarmigan REST API, one method per endpoint."""

    def __init__(self, url: str, api_token: str, **kwargs) -> None:
        super().__init__(url, headers={"Authorization": f"Bearer {api_token}"}, **kwargs)

    async def get_info(self) -> GetInfoResponse:
        return await self._send("getinfo", NO_REQUEST, GetInfoResponse)

    async def create_invoice(
        self, amount_msat: int, description: str, invoice_expiry: int
    ) -> CreateInvoiceResponse:
        return await self._send(
            "createinvoice",
            {
                "amount_msat": amount_msat,
                "description": description,
                "invoice_expiry": invoice_expiry,
            },
            CreateInvoiceResponse,
        )

    async def send_payment(self, bolt11: str, add_amount_msat: int = 0) -> SendPaymentResponse:
        return await self._send(
            "sendpayment",
            {"bolt11": bolt11, "add_amount_msat": add_amount_msat},
            SendPaymentResponse,
        )

    async def list_payment(self, payment_id: int) -> ListPaymentResponse:
        return await self._send(
            "listpayment", {"list_payment_id": payment_id}, ListPaymentResponse
        )

    async def list_invoices(self, payment_hash: Optional[str] = None) -> ListInvoiceResponse:
        payload = NO_REQUEST if payment_hash is None else {"payment_hash": payment_hash}
        return await self._send("listinvoices", payload, ListInvoiceResponse)

    async def connect(
        self, node_id: str, peer_addr: str, peer_port: Optional[int] = None
    ) -> CommandResponse:
        return await self._send(
            "connect",
            {"peer_node_id": node_id, "peer_addr": peer_addr, "peer_port": peer_port},
            CommandResponse,
        )

    async def open_channel(
        self,
        node_id: str,
        funding_sat: int,
        push_msat: int = 0,
        feerate_per_kw: int = 0,
    ) -> CommandResponse:
        return await self._send(
            "openchannel",
            {
                "peer_node_id": node_id,
                "funding_sat": funding_sat,
                "push_msat": push_msat,
                "feerate_per_kw": feerate_per_kw,
            },
            CommandResponse,
        )


class PtarmiganLightningClient(LightningClientBase):
    def __init__(
        self,
        url: str,
        api_token: str,
        wallet_rpc: Optional[BitcoinRpc] = None,
        retry_policy: Optional[RetryPolicy] = None,
        request_timeout: float = 60,
        poll_interval: float = 0.2,
        poll_empty_interval: float = 0.05,
        poll_max_duration: Optional[float] = None,
        listen_interval: float = 2,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(wallet_rpc)

        self._host = urlparse(url).hostname or "localhost"
        self._listen_interval = listen_interval
        self._rest = PtarmiganRestClient(
            url,
            api_token,
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
        # ptarmigan has no channel lookup by id, open results are
        # classified by their text only
        self._classifier = ChannelOpenClassifier()

    def get_implementation_name(self) -> str:
        return "PTARMIGAN"

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def get_info(self) -> LightningNodeInformation:
        logger.trace("get_info()")

        res = await self._rest.get_info()
        return LightningNodeInformation.from_ptarmigan(res.result, self._host)

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def create_invoice(
        self, amount_msat: int, description: str = "", expiry: int = 3600
    ) -> Invoice:
        logger.trace(f"create_invoice({amount_msat}, {description}, {expiry})")

        if amount_msat < 0:
            raise ValueError("amount_msat cannot be negative")

        res = await self._rest.create_invoice(amount_msat, description, expiry)
        return Invoice.create(
            id=res.result.hash,
            amount_msat=amount_msat,
            bolt11=res.result.bolt11,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expiry),
        ).as_new()

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def get_invoice(self, invoice_id: str) -> Invoice:
        logger.trace(f"get_invoice({invoice_id})")

        res = await self._rest.list_invoices(invoice_id)
        for i in res.result:
            if i.hash == invoice_id:
                return Invoice.from_ptarmigan(i)

        raise InvoiceNotFoundError(invoice_id)

    async def get_latest_invoice(self) -> Optional[Invoice]:
        """Returns the most recently created invoice or None if there is none."""
        res = await self._rest.list_invoices()
        if not res.result:
            return None

        latest = max(res.result, key=lambda i: i.creation_time)
        return Invoice.from_ptarmigan(latest)

    async def listen(self) -> AsyncGenerator[Invoice, None]:
        logger.trace("listen()")

        # ptarmigan has no invoice subscription, poll instead and report
        # every invoice that became paid since the last round
        res = await self._rest.list_invoices()
        paid = {i.hash for i in res.result if i.state == "used"}

        while True:
            await asyncio.sleep(self._listen_interval)

            try:
                res = await self._rest.list_invoices()
            except LightningClientError as e:
                logger.error(f"Unable to poll invoices: {e}")
                continue

            # forget invoices the node no longer lists
            paid &= {i.hash for i in res.result}

            for i in res.result:
                if i.state != "used" or i.hash in paid:
                    continue

                paid.add(i.hash)
                yield Invoice.from_ptarmigan(i)

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def pay(
        self, bolt11: str, cancel: Optional[asyncio.Event] = None
    ) -> Optional[PayResponse]:
        logger.trace(f"pay({bolt11})")

        try:
            res = await self._rest.send_payment(bolt11)
        except LightningClientError as e:
            logger.error(f"Unable to submit payment: {e}")
            return PayResponse(result=PayResult.COULD_NOT_FIND_ROUTE)

        result = await self._poller.poll(str(res.result.payment_id), cancel)
        if result is None:
            return None

        return PayResponse(result=result)

    async def _payment_status(self, payment_id: str) -> Optional[PaymentStatus]:
        res = await self._rest.list_payment(int(payment_id))
        if not res.result:
            return None

        state = res.result[0].state
        if state not in _PAYMENT_STATE:
            logger.warning(f"Unknown payment state {state}, treating as pending")

        return _PAYMENT_STATE.get(state, PaymentStatus.PENDING)

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def connect_to(self, node_info: NodeInfo) -> None:
        logger.trace(f"connect_to({node_info})")

        res = await self._rest.connect(node_info.node_id, node_info.host, node_info.port)
        logger.debug(f"connect_to({node_info.node_id}): {res.message}")

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def open_channel(self, request: OpenChannelRequest) -> OpenChannelResponse:
        logger.trace(f"open_channel({request})")

        try:
            res = await self._rest.open_channel(
                request.node_info.node_id,
                request.channel_amount_sat,
                feerate_per_kw=request.fee_rate_sat_per_vbyte * _KW_PER_VBYTE,
            )
            result = await self._classifier.classify_message(res.message)
        except LightningClientError as e:
            result = self._classifier.classify_error(e)

        return OpenChannelResponse(result=result)

    @logger.catch(exclude=(LightningClientError,), reraise=True)
    async def list_channels(self) -> List[Channel]:
        logger.trace("list_channels()")

        res = await self._rest.get_info()
        return [Channel.from_ptarmigan(p) for p in res.result.peers if p.funding_tx]
