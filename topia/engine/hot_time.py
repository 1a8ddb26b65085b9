"""
topia.engine.hot_time — Boosted reward windows
===============================================

A hot time is a guild-local time-of-day window (``HH:MM`` or ``HH:MM:SS``)
that multiplies earned currency.  Matching is at minute resolution with both
ends inclusive; a window whose start is after its end wraps past midnight
(``22:00``–``02:00``).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import time

from topia.database.models import HotTimeKind
from topia.engine.rules import HotTimeWindow


@dataclass(frozen=True, slots=True)
class HotTimeMatch:
    active: bool
    multiplier: float = 1.0
    hot_time_id: int | None = None


NO_HOT_TIME = HotTimeMatch(active=False)


def time_to_minutes(value: str) -> int:
    """``"22:30"`` / ``"22:30:15"`` → minutes past midnight (seconds dropped).

    Raises ``ValueError`` for anything that is not a valid clock time.
    """
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    seconds = int(parts[2]) if len(parts) == 3 else 0
    if not (0 <= hours < 24 and 0 <= minutes < 60 and 0 <= seconds < 60):
        raise ValueError(f"Invalid time of day: {value!r}")
    return hours * 60 + minutes


def is_time_in_range(current: int, start: int, end: int) -> bool:
    """Inclusive minute-range check that handles midnight wrap-around."""
    if start > end:
        return current >= start or current <= end
    return start <= current <= end


def check_hot_time(
    windows: Iterable[HotTimeWindow],
    local_now: time,
    channel_id: int | None,
    kind: HotTimeKind,
) -> HotTimeMatch:
    """Return the first enabled window of *kind* (or ``all``) covering now.

    A window with a non-empty ``channel_ids`` set only applies inside those
    channels.
    """
    current = local_now.hour * 60 + local_now.minute
    for window in windows:
        if not window.enabled:
            continue
        if window.kind not in (kind, HotTimeKind.ALL):
            continue
        if window.channel_ids and channel_id not in window.channel_ids:
            continue
        if is_time_in_range(
            current, time_to_minutes(window.start_time), time_to_minutes(window.end_time)
        ):
            return HotTimeMatch(
                active=True, multiplier=window.multiplier, hot_time_id=window.id,
            )
    return NO_HOT_TIME
