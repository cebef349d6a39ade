import asyncio
from datetime import datetime, timezone

import pytest
from decouple import UndefinedValueError, undefined

from lnbridge.bitcoind import utils as bitcoind_utils
from lnbridge.lightning import service
from lnbridge.lightning.exceptions import NotSupportedError
from lnbridge.lightning.impl.eclair import EclairLightningClient
from lnbridge.lightning.impl.ptarmigan import PtarmiganLightningClient
from lnbridge.lightning.models import Invoice


def _fake_config(values):
    def _config(key, default=undefined, cast=None):
        if key in values:
            v = values[key]
            return cast(v) if cast is not None else v

        if default is undefined:
            raise UndefinedValueError(f"{key} not found")

        return default

    return _config


@pytest.fixture
def settings(monkeypatch):
    values = {}
    fake = _fake_config(values)
    monkeypatch.setattr(service, "config", fake)
    monkeypatch.setattr(bitcoind_utils, "config", fake)
    monkeypatch.setattr(service, "_client", None)
    return values


def test_build_eclair_client(settings):
    settings.update(
        {"ln_node": "Eclair", "eclair_url": "http://localhost:8080", "eclair_password": "pw"}
    )

    client = service.build_client()

    assert isinstance(client, EclairLightningClient)
    assert client.get_implementation_name() == "ECLAIR"


def test_build_ptarmigan_client(settings):
    settings.update(
        {
            "ln_node": "ptarmigan",
            "ptarmigan_url": "http://localhost:3000",
            "ptarmigan_api_token": "token",
        }
    )

    client = service.build_client()

    assert isinstance(client, PtarmiganLightningClient)
    assert client.get_implementation_name() == "PTARMIGAN"


def test_build_unknown_client(settings):
    settings["ln_node"] = "lnd"

    with pytest.raises(ValueError):
        service.build_client()


def test_missing_backend_url(settings):
    settings["ln_node"] = "eclair"

    with pytest.raises(UndefinedValueError):
        service.build_client()


def test_retry_policy_from_config(settings):
    settings.update(
        {
            "ln_node": "eclair",
            "eclair_url": "http://localhost:8080",
            "eclair_password": "pw",
            "ln_retry_max_attempts": "3",
            "ln_retry_delay": "1.5",
        }
    )

    client = service.build_client()
    policy = client._rest._retry

    assert policy.max_attempts == 3
    assert policy.delay == 1.5


@pytest.mark.asyncio
async def test_deposit_address_without_bitcoind(settings):
    settings.update(
        {"ln_node": "eclair", "eclair_url": "http://localhost:8080", "eclair_password": "pw"}
    )

    service.initialize_ln_client()

    with pytest.raises(NotSupportedError):
        await service.get_deposit_address()


def test_bitcoin_config_from_env(settings):
    settings.update(
        {
            "network": "regtest",
            "bitcoind_ip_regtest": "127.0.0.1",
            "bitcoind_port_rpc_regtest": "18443",
            "bitcoind_user": "user",
            "bitcoind_pw": "pw",
        }
    )

    c = bitcoind_utils.BitcoinConfig.from_env()

    assert c.rpc_url == "http://127.0.0.1:18443"
    assert c.username == "user"
    assert c.pw == "pw"


def test_bitcoin_config_missing(settings):
    settings["network"] = "regtest"

    assert bitcoind_utils.BitcoinConfig.from_env() is None


def test_initialize_once(settings):
    settings.update(
        {"ln_node": "eclair", "eclair_url": "http://localhost:8080", "eclair_password": "pw"}
    )

    first = service.initialize_ln_client()

    assert service.initialize_ln_client() is first
    assert service.get_client() is first


@pytest.mark.asyncio
async def test_invoice_listener_logs_paid_invoices(monkeypatch):
    seen = []

    async def _listen():
        for i in ("a", "b"):
            seen.append(i)
            yield Invoice.create(
                id=i,
                amount_msat=1000,
                bolt11=f"lnbcrt{i}",
                expires_at=datetime.now(timezone.utc),
                amount_received_msat=1000,
            )

    monkeypatch.setattr(service, "listen_invoices", _listen)

    await asyncio.wait_for(service.register_invoice_listener(), timeout=1)

    assert seen == ["a", "b"]


@pytest.mark.asyncio
async def test_invoice_listener_logs_unexpected_errors(monkeypatch):
    async def _listen():
        raise RuntimeError("boom")
        yield

    monkeypatch.setattr(service, "listen_invoices", _listen)

    task = service.register_invoice_listener()

    # logged by the listener, the task ends without an exception
    assert await asyncio.wait_for(task, timeout=1) is None


def test_client_not_initialized(settings):
    with pytest.raises(RuntimeError):
        service.get_client()
