import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

from loguru import logger

from lnbridge.lightning.exceptions import LightningClientError
from lnbridge.lightning.models import PayResult


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# Returns the latest status for a reference id or None if the backend has
# no record of the payment yet.
StatusFetcher = Callable[[str], Awaitable[Optional[PaymentStatus]]]


class PaymentOutcomePoller:
    """Polls a submitted payment until it reaches a terminal status.

    `poll` returns PayResult.OK or PayResult.COULD_NOT_FIND_ROUTE for
    terminal statuses and for backend failures while polling. It returns
    None when `cancel` is set or `max_duration` elapsed; the outcome of the
    payment is unknown in that case.
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        interval: float = 0.2,
        empty_interval: float = 0.05,
        max_duration: Optional[float] = None,
    ) -> None:
        self._fetch_status = fetch_status
        self.interval = interval
        self.empty_interval = empty_interval
        self.max_duration = max_duration

    async def poll(
        self, reference_id: str, cancel: Optional[asyncio.Event] = None
    ) -> Optional[PayResult]:
        logger.trace(f"poll(reference_id={reference_id})")

        if cancel is None:
            cancel = asyncio.Event()

        loop = asyncio.get_running_loop()
        deadline = None
        if self.max_duration:
            deadline = loop.time() + self.max_duration

        while not cancel.is_set():
            if deadline is not None and loop.time() >= deadline:
                logger.warning(
                    f"Payment {reference_id} still not settled after {self.max_duration} seconds, giving up."
                )
                return None

            try:
                status = await self._fetch_status(reference_id)
            except LightningClientError as e:
                logger.error(f"Unable to get status of payment {reference_id}: {e}")
                return PayResult.COULD_NOT_FIND_ROUTE

            if status == PaymentStatus.SUCCEEDED:
                return PayResult.OK

            if status == PaymentStatus.FAILED:
                return PayResult.COULD_NOT_FIND_ROUTE

            await _wait(cancel, self.interval if status else self.empty_interval)

        logger.debug(f"Polling of payment {reference_id} was cancelled.")
        return None


async def _wait(cancel: asyncio.Event, seconds: float) -> None:
    """Sleeps `seconds`, returns early once `cancel` is set."""
    try:
        await asyncio.wait_for(cancel.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
