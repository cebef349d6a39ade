"""Ordered text classification of backend messages.

Backends only report failures as free text. Every place that turns such text
into a structured outcome goes through a rule table defined here, so the
wording each backend uses is kept in one spot.
"""

from enum import Enum
from typing import NamedTuple, Sequence, Tuple, TypeVar, Union

from lnbridge.lightning.models import OpenChannelResult

T = TypeVar("T", bound=Enum)


class MessageRule(NamedTuple):
    needles: Tuple[str, ...]
    outcome: Enum

    def matches(self, message: str) -> bool:
        return any(n in message for n in self.needles)


def classify_message(
    message: Union[str, Exception], rules: Sequence[MessageRule], default: T
) -> T:
    """Returns the outcome of the first rule matching `message`.

    Matching is a case sensitive substring search, rules are checked in
    order and `default` is returned when none matches.
    """
    if isinstance(message, Exception):
        message = getattr(message, "message", None) or str(message)

    if message is None:
        return default

    for rule in rules:
        if rule.matches(message):
            return rule.outcome

    return default


# The states a channel goes through before its funding tx is confirmed.
PRE_CONFIRMATION_CHANNEL_STATES = frozenset(
    [
        "WAIT_FOR_OPEN_CHANNEL",
        "WAIT_FOR_ACCEPT_CHANNEL",
        "WAIT_FOR_FUNDING_CREATED",
        "WAIT_FOR_FUNDING_SIGNED",
        "WAIT_FOR_FUNDING_LOCKED",
        "WAIT_FOR_FUNDING_CONFIRMED",
    ]
)

CREATED_CHANNEL_MARKER = "created channel"

OPEN_CHANNEL_MESSAGE_RULES = (
    MessageRule(("couldn't publish funding tx",), OpenChannelResult.CANNOT_AFFORD_FUNDING),
)

OPEN_CHANNEL_ERROR_RULES = (
    MessageRule(
        ("not connected", "no connection to peer"),
        OpenChannelResult.PEER_NOT_CONNECTED,
    ),
    MessageRule(("insufficient funds",), OpenChannelResult.CANNOT_AFFORD_FUNDING),
    MessageRule(
        ("peer sent error: 'Multiple channels unsupported'",),
        OpenChannelResult.ALREADY_EXISTS,
    ),
)

# Unrecognized open channel errors are reported as ALREADY_EXISTS. Kept for
# compatibility with existing callers, see DESIGN.md before changing it.
OPEN_CHANNEL_ERROR_DEFAULT = OpenChannelResult.ALREADY_EXISTS
