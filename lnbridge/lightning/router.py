from typing import List

from fastapi import APIRouter, HTTPException, Query, status

from lnbridge.lightning import service
from lnbridge.lightning.exceptions import (
    BackendConnectionError,
    InvoiceNotFoundError,
    LightningClientError,
    NotSupportedError,
)
from lnbridge.lightning.models import (
    Channel,
    Invoice,
    LightningNodeInformation,
    NodeInfo,
    OpenChannelRequest,
    OpenChannelResponse,
    PayResponse,
)

_PREFIX = "lightning"

router = APIRouter(prefix=f"/{_PREFIX}", tags=["Lightning"])

responses = {
    501: {"description": "The operation is not supported by this setup."},
    503: {"description": "The lightning backend is not reachable."},
}


def _to_http_exception(e: LightningClientError) -> HTTPException:
    if isinstance(e, NotSupportedError):
        return HTTPException(status.HTTP_501_NOT_IMPLEMENTED, detail=e.message)

    if isinstance(e, InvoiceNotFoundError):
        return HTTPException(status.HTTP_404_NOT_FOUND, detail=e.message)

    if isinstance(e, BackendConnectionError):
        return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.get(
    "/get-info",
    name=f"{_PREFIX}.get-info",
    summary="Get the public addresses and block height of the node.",
    response_model=LightningNodeInformation,
    responses=responses,
)
async def get_info_path():
    try:
        return await service.get_info()
    except LightningClientError as e:
        raise _to_http_exception(e)


@router.post(
    "/create-invoice",
    name=f"{_PREFIX}.create-invoice",
    summary="Creates a new invoice.",
    response_model=Invoice,
    responses=responses,
)
async def create_invoice_path(
    amount_msat: int = Query(..., ge=0, description="Amount to request in msat."),
    description: str = Query("", description="Description of the invoice."),
    expiry: int = Query(3600, gt=0, description="Seconds until the invoice expires."),
):
    try:
        return await service.create_invoice(amount_msat, description, expiry)
    except LightningClientError as e:
        raise _to_http_exception(e)


@router.get(
    "/get-invoice/{invoice_id}",
    name=f"{_PREFIX}.get-invoice",
    summary="Looks up an invoice by its payment hash.",
    description="The status is computed from the amount received and the expiry on every call.",
    response_model=Invoice,
    responses=responses,
)
async def get_invoice_path(invoice_id: str):
    try:
        return await service.get_invoice(invoice_id)
    except LightningClientError as e:
        raise _to_http_exception(e)


@router.post(
    "/pay",
    name=f"{_PREFIX}.pay",
    summary="Pays a bolt11 invoice and waits for the outcome.",
    response_model=PayResponse,
    responses={
        **responses,
        504: {"description": "The payment did not settle in time, outcome unknown."},
    },
)
async def pay_path(bolt11: str = Query(..., min_length=1)):
    try:
        res = await service.pay(bolt11)
    except LightningClientError as e:
        raise _to_http_exception(e)

    if res is None:
        raise HTTPException(
            status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Payment outcome is unknown. Check the payment status on the node.",
        )

    return res


@router.get(
    "/deposit-address",
    name=f"{_PREFIX}.deposit-address",
    summary="Generates a new on-chain deposit address.",
    description="Requires the bitcoind connection details to be configured.",
    response_model=str,
    responses=responses,
)
async def deposit_address_path():
    try:
        return await service.get_deposit_address()
    except LightningClientError as e:
        raise _to_http_exception(e)


@router.post(
    "/connect",
    name=f"{_PREFIX}.connect",
    summary="Connects to a peer.",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=responses,
)
async def connect_path(node_info: NodeInfo):
    try:
        await service.connect_to(node_info)
    except LightningClientError as e:
        raise _to_http_exception(e)


@router.post(
    "/open-channel",
    name=f"{_PREFIX}.open-channel",
    summary="Opens a channel to a peer.",
    description="Failures the backend reports are returned as a result, not as an error.",
    response_model=OpenChannelResponse,
    responses=responses,
)
async def open_channel_path(request: OpenChannelRequest):
    try:
        return await service.open_channel(request)
    except LightningClientError as e:
        raise _to_http_exception(e)


@router.get(
    "/list-channels",
    name=f"{_PREFIX}.list-channels",
    summary="Lists all channels of the node.",
    response_model=List[Channel],
    responses=responses,
)
async def list_channels_path():
    try:
        return await service.list_channels()
    except LightningClientError as e:
        raise _to_http_exception(e)
