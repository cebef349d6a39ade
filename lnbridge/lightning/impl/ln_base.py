import asyncio
from abc import abstractmethod
from typing import AsyncGenerator, List, Optional

from lnbridge.bitcoind.utils import BitcoinRpc
from lnbridge.lightning.exceptions import NotSupportedError
from lnbridge.lightning.models import (
    Channel,
    Invoice,
    LightningNodeInformation,
    NodeInfo,
    OpenChannelRequest,
    OpenChannelResponse,
    PayResponse,
)


class LightningClientBase:
    def __init__(self, wallet_rpc: Optional[BitcoinRpc] = None) -> None:
        self._wallet_rpc = wallet_rpc

    @abstractmethod
    def get_implementation_name(self) -> str:
        raise NotImplementedError()

    @abstractmethod
    async def get_info(self) -> LightningNodeInformation:
        raise NotImplementedError()

    @abstractmethod
    async def create_invoice(
        self, amount_msat: int, description: str = "", expiry: int = 3600
    ) -> Invoice:
        raise NotImplementedError()

    @abstractmethod
    async def get_invoice(self, invoice_id: str) -> Invoice:
        raise NotImplementedError()

    @abstractmethod
    async def listen(self) -> AsyncGenerator[Invoice, None]:
        raise NotImplementedError()

    @abstractmethod
    async def pay(
        self, bolt11: str, cancel: Optional[asyncio.Event] = None
    ) -> Optional[PayResponse]:
        raise NotImplementedError()

    @abstractmethod
    async def connect_to(self, node_info: NodeInfo) -> None:
        raise NotImplementedError()

    @abstractmethod
    async def open_channel(self, request: OpenChannelRequest) -> OpenChannelResponse:
        raise NotImplementedError()

    @abstractmethod
    async def list_channels(self) -> List[Channel]:
        raise NotImplementedError()

    async def get_deposit_address(self) -> str:
        if self._wallet_rpc is None:
            raise NotSupportedError(
                "The bitcoind connection details were not provided."
            )

        return await self._wallet_rpc.get_new_address()
