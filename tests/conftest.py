from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from starlette.testclient import TestClient

from lnbridge.main import app

PUBKEY = "02" + "ab" * 32


@pytest.fixture(scope="module")
def test_client():
    client = TestClient(app)
    yield client


@pytest.fixture
def fake_node():
    """Serves a fake node backend for the duration of an `async with`.

    Takes a dict of method name to aiohttp handler and yields the base url.
    """

    @asynccontextmanager
    async def _serve(handlers):
        node = web.Application()
        for method, handler in handlers.items():
            node.router.add_route("*", f"/{method}", handler)

        async with TestServer(node) as server:
            yield str(server.make_url("/"))

    return _serve


@pytest.fixture
def pubkey() -> str:
    return PUBKEY
