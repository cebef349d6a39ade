import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

import aiohttp
from loguru import logger

T = TypeVar("T")

# Failures that happen before the backend produced a response.
TRANSPORT_ERRORS: Tuple[Type[BaseException], ...] = (
    aiohttp.ClientConnectionError,
    asyncio.TimeoutError,
)


class RetryExhaustedError(Exception):
    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class RetryPolicy:
    """Retries transport failures of a single call.

    Attempts run one after another. Before attempt k+1 the policy waits
    k * `delay` seconds. Anything that is not a transport failure is raised
    right away.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        delay: float = 60,
        retry_on: Tuple[Type[BaseException], ...] = TRANSPORT_ERRORS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if delay < 0:
            raise ValueError("delay cannot be negative")

        self.max_attempts = max_attempts
        self.delay = delay
        self.retry_on = retry_on
        self._sleep = sleep

    def wait_before(self, attempt: int) -> float:
        """Seconds to wait before `attempt` (1 based)."""
        return (attempt - 1) * self.delay

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        attempt = 1
        while True:
            try:
                return await func()
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.error(f"Attempt {attempt}/{self.max_attempts} failed: {e}")
                    raise RetryExhaustedError(attempt, e) from e

                attempt += 1
                wait = self.wait_before(attempt)
                logger.warning(
                    f"Transport error: {e!r}. Retry {attempt}/{self.max_attempts} in {wait} seconds."
                )
                await self._sleep(wait)
