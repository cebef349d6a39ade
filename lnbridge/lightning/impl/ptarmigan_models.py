from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel


class ChannelSide(BaseModel):
    msatoshi: int = 0


class Peer(BaseModel):
    node_id: str
    status: str = ""
    role: Optional[str] = None
    channel_id: Optional[str] = None
    short_channel_id: Optional[str] = None
    funding_tx: Optional[str] = None
    funding_vout: int = 0
    confirmation: int = 0
    channel_flags: int = 0
    local: ChannelSide = ChannelSide()
    remote: ChannelSide = ChannelSide()


class GetInfoResult(BaseModel):
    node_id: str
    node_port: int
    total_local_msat: int = 0
    block_count: Optional[int] = None
    peers: List[Peer] = []


class GetInfoResponse(BaseModel):
    result: GetInfoResult


class CreateInvoiceResult(BaseModel):
    hash: str
    bolt11: str
    amount_msat: Optional[int] = None


class CreateInvoiceResponse(BaseModel):
    result: CreateInvoiceResult


class SendPaymentResult(BaseModel):
    payment_id: int


class SendPaymentResponse(BaseModel):
    result: SendPaymentResult


class PaymentResult(BaseModel):
    payment_id: int
    state: str
    hash: Optional[str] = None


class ListPaymentResponse(BaseModel):
    result: List[PaymentResult] = []


class InvoiceResult(BaseModel):
    hash: str
    # unused, used or expire
    state: str
    bolt11: str
    amount_msat: int = 0
    creation_time: datetime
    expiry: int = 3600


class ListInvoiceResponse(BaseModel):
    result: List[InvoiceResult] = []


class CommandResponse(BaseModel):
    result: Any = None

    @property
    def message(self) -> str:
        if isinstance(self.result, str):
            return self.result

        if isinstance(self.result, dict):
            return str(self.result.get("status", ""))

        return ""
