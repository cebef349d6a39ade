from typing import List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _EclairModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class GetInfoResponse(_EclairModel):
    node_id: str
    alias: str = ""
    chain_hash: Optional[str] = None
    block_height: Optional[int] = None
    public_addresses: List[str] = []


class InvoiceResponse(_EclairModel):
    serialized: str
    payment_hash: str
    timestamp: int
    expiry: int = 3600
    description: str = ""
    node_id: Optional[str] = None
    # msat, absent for invoices without a fixed amount
    amount: Optional[int] = None


class ReceivedInfoResponse(_EclairModel):
    payment_hash: str
    amount_msat: int = 0
    # unix time in milliseconds, 0 while nothing was received
    received_at: int = 0


class SentStatus(_EclairModel):
    type: str


class SentInfoResponse(_EclairModel):
    id: str
    parent_id: Optional[str] = None
    payment_hash: Optional[str] = None
    amount: Optional[int] = None
    created_at: Optional[int] = None
    # Older eclair versions send a plain string, newer ones an object
    status: Union[str, SentStatus]

    @property
    def status_name(self) -> str:
        if isinstance(self.status, SentStatus):
            return self.status.type

        return self.status


class CommitmentSpec(_EclairModel):
    to_local_msat: int = Field(0, validation_alias=AliasChoices("toLocalMsat", "toLocal"))


class LocalCommit(_EclairModel):
    spec: CommitmentSpec


class CommitInput(_EclairModel):
    out_point: str = ""
    amount_satoshis: int = 0


class Commitments(_EclairModel):
    channel_flags: int = 0
    local_commit: LocalCommit
    commit_input: CommitInput


class ChannelData(_EclairModel):
    commitments: Optional[Commitments] = None


class ChannelResponse(_EclairModel):
    node_id: str
    channel_id: str
    state: str
    data: ChannelData = ChannelData()
