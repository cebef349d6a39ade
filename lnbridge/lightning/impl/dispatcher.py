import json
from typing import Any, Dict, Mapping, Optional, Tuple, Type, TypeVar, Union

import aiohttp
from loguru import logger
from pydantic import BaseModel, TypeAdapter, ValidationError
from starlette import status

from lnbridge.lightning.exceptions import BackendApiError, BackendConnectionError
from lnbridge.lightning.impl.retry import RetryExhaustedError, RetryPolicy

T = TypeVar("T")


class NoRequest:
    """Marker for backend methods that take no payload."""

    def __repr__(self) -> str:
        return "NO_REQUEST"


NO_REQUEST = NoRequest()

Payload = Union[Mapping[str, Any], NoRequest]


class BackendErrorPayload(BaseModel):
    error: str


class BackendDispatcher:
    """Sends one request per backend method and parses the answer.

    Subclasses define the per-operation methods of a backend dialect and
    choose how a payload is encoded. This class only knows how to get a
    request to `<url>/<method>` and how to read the answer.
    """

    def __init__(
        self,
        url: str,
        auth: Optional[aiohttp.BasicAuth] = None,
        headers: Optional[Dict[str, str]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 60,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        if not url:
            raise ValueError("url cannot be empty")

        self.url = url.rstrip("/")
        self._auth = auth
        self._headers = headers or {}
        self._retry = retry_policy or RetryPolicy()
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    def _encode(self, payload: Payload) -> Tuple[Any, Dict[str, str]]:
        raise NotImplementedError()

    async def _send(self, method: str, payload: Payload, shape: Type[T]) -> T:
        logger.trace(f"_send(method={method}, payload={payload})")

        body, headers = self._encode(payload)
        endpoint = f"{self.url}/{method}"

        try:
            code, text = await self._retry.run(lambda: self._post(endpoint, body, headers))
        except RetryExhaustedError as e:
            raise BackendConnectionError(
                endpoint, e.attempts, e.last_error
            ) from e.last_error
        except aiohttp.ClientError as e:
            # truncated bodies and bad urls are not retried
            logger.error(f"{method} failed: {e!r}")
            raise BackendConnectionError(endpoint, 1, e) from e

        if code < status.HTTP_200_OK or code >= status.HTTP_300_MULTIPLE_CHOICES:
            message = _error_message(text)
            logger.error(f"{method} failed with status {code}: {message}")
            raise BackendApiError(method, code, message)

        try:
            return TypeAdapter(shape).validate_json(text)
        except ValidationError as e:
            logger.error(f"Unexpected answer to {method}: {text}")
            raise BackendApiError(
                method, code, f"Unexpected response from backend: {e}"
            ) from e

    async def _post(self, endpoint: str, body, headers: Dict[str, str]) -> Tuple[int, str]:
        if self._session is not None:
            return await self._do_post(self._session, endpoint, body, headers)

        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            return await self._do_post(session, endpoint, body, headers)

    async def _do_post(
        self, session: aiohttp.ClientSession, endpoint: str, body, headers
    ) -> Tuple[int, str]:
        async with session.post(
            endpoint,
            data=body,
            auth=self._auth,
            headers={**self._headers, **headers},
            timeout=self._timeout,
        ) as resp:
            return resp.status, await resp.text()


def _error_message(text: str) -> str:
    try:
        return BackendErrorPayload.model_validate_json(text).error
    except ValidationError:
        return text or "Unknown error"


class FormDispatcher(BackendDispatcher):
    """Sends payloads as `application/x-www-form-urlencoded`."""

    def _encode(self, payload: Payload) -> Tuple[Any, Dict[str, str]]:
        if isinstance(payload, NoRequest):
            return {}, {}

        return {k: str(v) for k, v in payload.items() if v is not None}, {}


class JsonDispatcher(BackendDispatcher):
    """Sends payloads as JSON, an empty body stands for no payload."""

    def _encode(self, payload: Payload) -> Tuple[Any, Dict[str, str]]:
        headers = {"Content-Type": "application/json"}
        if isinstance(payload, NoRequest):
            return "", headers

        data = {k: v for k, v in payload.items() if v is not None}
        return json.dumps(data), headers
