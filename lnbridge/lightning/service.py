import asyncio
from typing import AsyncGenerator, List, Optional

import aiohttp
from decouple import config
from loguru import logger

from lnbridge.bitcoind.utils import BitcoinConfig, BitcoinRpc
from lnbridge.lightning.exceptions import LightningClientError
from lnbridge.lightning.impl.eclair import EclairLightningClient
from lnbridge.lightning.impl.ln_base import LightningClientBase
from lnbridge.lightning.impl.ptarmigan import PtarmiganLightningClient
from lnbridge.lightning.impl.retry import RetryPolicy
from lnbridge.lightning.models import (
    Channel,
    Invoice,
    LightningNodeInformation,
    NodeInfo,
    OpenChannelRequest,
    OpenChannelResponse,
    PayResponse,
)

_client: Optional[LightningClientBase] = None


def build_client() -> LightningClientBase:
    """Creates the lightning client selected by the `ln_node` setting."""
    node_type = config("ln_node", default="").lower()

    retry_policy = RetryPolicy(
        max_attempts=config("ln_retry_max_attempts", default=5, cast=int),
        delay=config("ln_retry_delay", default=60, cast=float),
    )

    wallet_rpc = None
    bitcoin_config = BitcoinConfig.from_env()
    if bitcoin_config is not None:
        wallet_rpc = BitcoinRpc(bitcoin_config)

    poll_timeout = config("ln_pay_poll_timeout", default=600, cast=float)
    common = dict(
        wallet_rpc=wallet_rpc,
        retry_policy=retry_policy,
        request_timeout=config("ln_request_timeout", default=60, cast=float),
        poll_interval=config("ln_pay_poll_interval", default=0.2, cast=float),
        poll_empty_interval=config("ln_pay_poll_empty_interval", default=0.05, cast=float),
        poll_max_duration=poll_timeout if poll_timeout > 0 else None,
    )

    if node_type == "eclair":
        return EclairLightningClient(
            config("eclair_url"), config("eclair_password"), **common
        )

    if node_type == "ptarmigan":
        return PtarmiganLightningClient(
            config("ptarmigan_url"),
            config("ptarmigan_api_token"),
            listen_interval=config("ln_listen_interval", default=2, cast=float),
            **common,
        )

    raise ValueError(f"Unknown lightning node type: '{node_type}'")


def initialize_ln_client() -> LightningClientBase:
    global _client
    if _client is not None:
        logger.warning("Lightning client already initialized.")
        return _client

    _client = build_client()
    logger.info(f"Using {_client.get_implementation_name()} lightning backend")
    return _client


def get_client() -> LightningClientBase:
    if _client is None:
        raise RuntimeError("Lightning client is not initialized")

    return _client


async def get_info() -> LightningNodeInformation:
    return await get_client().get_info()


async def create_invoice(amount_msat: int, description: str, expiry: int) -> Invoice:
    return await get_client().create_invoice(amount_msat, description, expiry)


async def get_invoice(invoice_id: str) -> Invoice:
    return await get_client().get_invoice(invoice_id)


async def listen_invoices() -> AsyncGenerator[Invoice, None]:
    async for invoice in get_client().listen():
        yield invoice


def register_invoice_listener() -> asyncio.Task:
    return asyncio.create_task(_handle_invoice_listener())


@logger.catch(message="Invoice listener crashed")
async def _handle_invoice_listener():
    try:
        async for i in listen_invoices():
            logger.info(f"Invoice {i.id} paid, received {i.amount_received_msat} msat")
    except (LightningClientError, aiohttp.ClientError) as e:
        logger.error(f"Invoice listener stopped: {e}")


async def pay(bolt11: str, cancel: Optional[asyncio.Event] = None) -> Optional[PayResponse]:
    return await get_client().pay(bolt11, cancel)


async def get_deposit_address() -> str:
    return await get_client().get_deposit_address()


async def connect_to(node_info: NodeInfo) -> None:
    await get_client().connect_to(node_info)


async def open_channel(request: OpenChannelRequest) -> OpenChannelResponse:
    return await get_client().open_channel(request)


async def list_channels() -> List[Channel]:
    return await get_client().list_channels()
