import asyncio
import itertools
import json
from typing import Optional

import aiohttp
from decouple import UndefinedValueError, config
from loguru import logger
from starlette import status

from lnbridge.lightning.exceptions import BackendApiError, BackendConnectionError


class BitcoinConfig:
    def __init__(self, url: str, username: str, pw: str) -> None:
        self.rpc_url = url
        self.username = username
        self.pw = pw

    @classmethod
    def from_env(cls) -> Optional["BitcoinConfig"]:
        """Reads the bitcoind connection details.

        Returns None if they are missing, deposit addresses are not
        supported in that case.
        """
        network = config("network", default="mainnet")
        suffix = network if network in ("testnet", "regtest") else "mainnet"

        try:
            ip = config(f"bitcoind_ip_{suffix}")
            port = config(f"bitcoind_port_rpc_{suffix}")
            username = config("bitcoind_user")
            pw = config("bitcoind_pw")
        except UndefinedValueError as e:
            logger.info(f"No bitcoind connection configured: {e}")
            return None

        return cls(f"http://{ip}:{port}", username, pw)


# https://github.com/python/cpython/blob/3.10/Lib/asyncio/tasks.py#L31
_generate_rpc_id = itertools.count(1).__next__


class BitcoinRpc:
    """Minimal bitcoind JSON-RPC client, used to get deposit addresses."""

    def __init__(self, bitcoin_config: BitcoinConfig) -> None:
        self._config = bitcoin_config

    async def call(self, method: str, params: Optional[list] = None):
        auth = aiohttp.BasicAuth(self._config.username, self._config.pw)
        headers = {"Content-type": "text/json"}
        data = json.dumps(
            {
                "jsonrpc": "2.0",
                "method": method,
                "id": _generate_rpc_id(),
                "params": params if params is not None else [],
            }
        )

        try:
            async with aiohttp.ClientSession(auth=auth, headers=headers) as session:
                async with session.post(self._config.rpc_url, data=data) as resp:
                    if resp.status == status.HTTP_401_UNAUTHORIZED:
                        raise BackendApiError(
                            method,
                            resp.status,
                            "Access denied to Bitcoin Core RPC. Check if username and password is correct",
                        )

                    code, text = resp.status, await resp.text()
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise BackendConnectionError(self._config.rpc_url, 1, e) from e

        try:
            body = json.loads(text)
        except ValueError:
            body = {"error": text or f"Unknown answer from Bitcoin Core ({code})"}

        if not isinstance(body, dict) or body.get("error"):
            message = body.get("error") if isinstance(body, dict) else str(body)
            if isinstance(message, dict):
                message = message.get("message", str(message))
            logger.error(f"Bitcoin Core RPC {method} failed: {message}")
            raise BackendApiError(method, code, message)

        return body["result"]

    async def get_new_address(self) -> str:
        return await self.call("getnewaddress")
