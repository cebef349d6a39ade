import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

_HEX_RE = re.compile(r"[0-9a-fA-F]+")
_DIGITS_RE = re.compile(r"[0-9]+")

# Raw states of a channel that is open and usable.
ECLAIR_NORMAL_STATE = "NORMAL"
PTARMIGAN_NORMAL_STATE = "normal operation"

# Bit 0 of channel_flags is announce_channel (BOLT #2).
_ANNOUNCE_CHANNEL_FLAG = 0x01


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_unix(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class InvoiceStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    EXPIRED = "expired"

    @classmethod
    def resolve(
        cls,
        min_amount_msat: int,
        received_msat: int,
        expires_at: datetime,
        now: Optional[datetime] = None,
    ) -> "InvoiceStatus":
        if now is None:
            now = _utcnow()

        if received_msat >= min_amount_msat:
            return InvoiceStatus.PAID

        if now >= expires_at:
            return InvoiceStatus.EXPIRED

        return InvoiceStatus.UNPAID


class PayResult(str, Enum):
    OK = "ok"
    COULD_NOT_FIND_ROUTE = "could_not_find_route"


class OpenChannelResult(str, Enum):
    OK = "ok"
    NEED_MORE_CONFIRMATIONS = "need_more_confirmations"
    CANNOT_AFFORD_FUNDING = "cannot_afford_funding"
    PEER_NOT_CONNECTED = "peer_not_connected"
    ALREADY_EXISTS = "already_exists"


class NodeInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    node_id: str = Field(..., description="Public key of the node in hex format.")
    host: str = Field(..., description="Host name or IP address of the node.")
    port: int = Field(..., ge=0, le=65535, description="Port the node listens on.")

    @field_validator("node_id")
    @classmethod
    def _check_node_id(cls, v: str) -> str:
        if len(v) != 66 or not _HEX_RE.fullmatch(v):
            raise ValueError("node_id must be a 33 byte public key in hex format")

        return v.lower()

    @classmethod
    def from_address(cls, node_id: str, address: str) -> "NodeInfo":
        """Builds a NodeInfo from a `host:port` string.

        The port is taken after the last colon so IPv6 hosts in brackets
        keep their colons.
        """
        host, sep, port = address.rpartition(":")
        if not sep or not host or not _DIGITS_RE.fullmatch(port):
            raise ValueError(f"Invalid node address: {address}")

        return cls(node_id=node_id, host=host, port=int(port))

    @classmethod
    def from_uri(cls, uri: str) -> "NodeInfo":
        node_id, sep, address = uri.partition("@")
        if not sep:
            raise ValueError(f"Invalid node URI, expected pubkey@host:port: {uri}")

        return cls.from_address(node_id, address)

    def __str__(self) -> str:
        return f"{self.node_id}@{self.host}:{self.port}"


class LightningNodeInformation(BaseModel):
    node_info_list: List[NodeInfo] = Field(
        [], description="Public addresses the node is reachable at."
    )
    block_height: Optional[int] = Field(
        None, description="Current block height as seen by the node."
    )

    @classmethod
    def from_eclair(cls, info) -> "LightningNodeInformation":
        nodes = []
        for address in info.public_addresses:
            try:
                nodes.append(NodeInfo.from_address(info.node_id, address))
            except ValueError as e:
                logger.warning(f"Skipping public address {address}: {e}")

        return cls(node_info_list=nodes, block_height=info.block_height)

    @classmethod
    def from_ptarmigan(cls, info, host: str) -> "LightningNodeInformation":
        # ptarmigan does not report its public address, only the port
        return cls(
            node_info_list=[
                NodeInfo(node_id=info.node_id, host=host, port=info.node_port)
            ],
            block_height=info.block_count,
        )


class Invoice(BaseModel):
    id: str = Field(..., description="The payment hash of the invoice.")
    amount_msat: int = Field(
        ..., description="Minimum amount that must be paid for the invoice to settle."
    )
    bolt11: str = Field(..., description="The encoded payment request.")
    expires_at: datetime
    status: InvoiceStatus = Field(
        ..., description="Computed from the received amount and expiry on lookup."
    )
    amount_received_msat: int = Field(
        0, description="Amount received so far. 0 if the backend could not tell."
    )
    paid_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        id: str,
        amount_msat: int,
        bolt11: str,
        expires_at: datetime,
        amount_received_msat: int = 0,
        paid_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> "Invoice":
        return cls(
            id=id,
            amount_msat=amount_msat,
            bolt11=bolt11,
            expires_at=expires_at,
            status=InvoiceStatus.resolve(
                amount_msat, amount_received_msat, expires_at, now
            ),
            amount_received_msat=amount_received_msat,
            paid_at=paid_at,
        )

    def as_new(self) -> "Invoice":
        """Returns the invoice as just created. Nothing can have been paid yet,
        so it is unpaid even when the amount is 0."""
        return self.model_copy(
            update={
                "status": InvoiceStatus.UNPAID,
                "amount_received_msat": 0,
                "paid_at": None,
            }
        )

    @classmethod
    def from_eclair(cls, invoice, received=None, now=None) -> "Invoice":
        received_msat = 0
        paid_at = None
        if received is not None:
            received_msat = received.amount_msat
            if received.received_at:
                paid_at = _from_unix(received.received_at / 1000)

        return cls.create(
            id=invoice.payment_hash,
            amount_msat=invoice.amount or 0,
            bolt11=invoice.serialized,
            expires_at=_from_unix(invoice.timestamp + invoice.expiry),
            amount_received_msat=received_msat,
            paid_at=paid_at,
            now=now,
        )

    @classmethod
    def from_ptarmigan(cls, invoice, now=None) -> "Invoice":
        received_msat = invoice.amount_msat if invoice.state == "used" else 0

        created = invoice.creation_time
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)

        return cls.create(
            id=invoice.hash,
            amount_msat=invoice.amount_msat,
            bolt11=invoice.bolt11,
            expires_at=created + timedelta(seconds=invoice.expiry),
            amount_received_msat=received_msat,
            now=now,
        )


class OutPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    txid: str
    index: int

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["OutPoint"]:
        """Parses `txid:index`, returns None if `raw` is malformed."""
        if not raw:
            return None

        parts = raw.split(":")
        if len(parts) != 2:
            return None

        txid, index = parts
        if not _HEX_RE.fullmatch(txid) or not _DIGITS_RE.fullmatch(index):
            return None

        return cls(txid=txid.lower(), index=int(index))

    def __str__(self) -> str:
        return f"{self.txid}:{self.index}"


class Channel(BaseModel):
    remote_node: str = Field(..., description="Public key of the channel peer.")
    local_balance_msat: int
    capacity_msat: int
    channel_point: Optional[OutPoint] = Field(
        None, description="Funding outpoint, null if the backend value is malformed."
    )
    is_active: bool
    is_public: bool

    @classmethod
    def from_eclair(cls, c) -> "Channel":
        commitments = c.data.commitments

        return cls(
            remote_node=c.node_id,
            local_balance_msat=commitments.local_commit.spec.to_local_msat,
            capacity_msat=commitments.commit_input.amount_satoshis * 1000,
            channel_point=OutPoint.parse(commitments.commit_input.out_point),
            is_active=c.state == ECLAIR_NORMAL_STATE,
            is_public=bool(commitments.channel_flags & _ANNOUNCE_CHANNEL_FLAG),
        )

    @classmethod
    def from_ptarmigan(cls, p) -> "Channel":
        return cls(
            remote_node=p.node_id,
            local_balance_msat=p.local.msatoshi,
            capacity_msat=p.local.msatoshi + p.remote.msatoshi,
            channel_point=OutPoint.parse(f"{p.funding_tx}:{p.funding_vout}"),
            is_active=p.status == PTARMIGAN_NORMAL_STATE,
            is_public=bool(p.channel_flags & _ANNOUNCE_CHANNEL_FLAG),
        )


class PayResponse(BaseModel):
    result: PayResult


class OpenChannelRequest(BaseModel):
    node_info: NodeInfo
    channel_amount_sat: int = Field(..., gt=0, description="Funding amount in sat.")
    fee_rate_sat_per_vbyte: int = Field(
        1, ge=1, description="Fee rate of the funding transaction."
    )


class OpenChannelResponse(BaseModel):
    result: OpenChannelResult
