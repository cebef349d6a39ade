from typing import Awaitable, Callable, Optional

from loguru import logger

from lnbridge.lightning.errors import (
    CREATED_CHANNEL_MARKER,
    OPEN_CHANNEL_ERROR_DEFAULT,
    OPEN_CHANNEL_ERROR_RULES,
    OPEN_CHANNEL_MESSAGE_RULES,
    PRE_CONFIRMATION_CHANNEL_STATES,
    classify_message,
)
from lnbridge.lightning.models import OpenChannelResult

# Returns the raw state string of a channel by its id.
ChannelStateLookup = Callable[[str], Awaitable[str]]


class ChannelOpenClassifier:
    """Turns the answer of an open channel call into an OpenChannelResult."""

    def __init__(self, lookup_state: Optional[ChannelStateLookup] = None) -> None:
        self._lookup_state = lookup_state

    async def classify_message(self, message: str) -> OpenChannelResult:
        logger.trace(f"classify_message(message={message})")

        if CREATED_CHANNEL_MARKER in message and self._lookup_state is not None:
            channel_id = message.replace(CREATED_CHANNEL_MARKER, "").strip()
            state = await self._lookup_state(channel_id)
            logger.debug(f"Channel {channel_id} is in state {state}")

            if state in PRE_CONFIRMATION_CHANNEL_STATES:
                return OpenChannelResult.NEED_MORE_CONFIRMATIONS

        return classify_message(message, OPEN_CHANNEL_MESSAGE_RULES, OpenChannelResult.OK)

    def classify_error(self, error: Exception) -> OpenChannelResult:
        result = classify_message(error, OPEN_CHANNEL_ERROR_RULES, OPEN_CHANNEL_ERROR_DEFAULT)

        logger.debug(f"Open channel failed with '{error}', classified as {result.value}")
        return result
