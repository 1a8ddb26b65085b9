"""
topia.engine.events — GrantRequest envelope
============================================

Every earning trigger (chat message, voice sweep tick) is normalized into a
:class:`GrantRequest` before it reaches the currency service.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from topia.database.models import HotTimeKind, TransactionType

__all__ = [
    "GRANT_HOT_TIME_KIND",
    "GRANT_TRANSACTION_TYPE",
    "GrantBlockReason",
    "GrantKind",
    "GrantRequest",
]


class GrantKind(enum.StrEnum):
    """Activity that earns currency."""
    TEXT = "text"
    VOICE = "voice"


class GrantBlockReason(enum.StrEnum):
    """Why an earning trigger did not produce a grant."""
    DISABLED = "disabled"
    MESSAGE_TOO_SHORT = "message_too_short"
    EXCLUDED_CHANNEL = "excluded_channel"
    EXCLUDED_ROLE = "excluded_role"
    COOLDOWN = "cooldown"
    DAILY_LIMIT = "daily_limit"


GRANT_TRANSACTION_TYPE: dict[GrantKind, TransactionType] = {
    GrantKind.TEXT: TransactionType.EARN_TEXT,
    GrantKind.VOICE: TransactionType.EARN_VOICE,
}

GRANT_HOT_TIME_KIND: dict[GrantKind, HotTimeKind] = {
    GrantKind.TEXT: HotTimeKind.TEXT,
    GrantKind.VOICE: HotTimeKind.VOICE,
}


@dataclass(frozen=True, slots=True)
class GrantRequest:
    """Normalized earning trigger.

    ``message_length`` is only meaningful for :attr:`GrantKind.TEXT`.
    """

    guild_id: int
    user_id: int
    channel_id: int
    kind: GrantKind
    role_ids: tuple[int, ...] = ()
    message_length: int = 0
