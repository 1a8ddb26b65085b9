"""
topia.engine.limits — Cooldown windows & daily caps
====================================================

Pure functions over wallet counters.  Nothing here touches the database;
:mod:`topia.services.currency_service` feeds in persisted values read under
the wallet lock and writes the results back.

All datetimes are timezone-aware UTC.  SQLite hands back naive values for
``DateTime(timezone=True)`` columns, so anything read from a row goes through
:func:`ensure_utc` first.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def local_date(value: datetime, tz: ZoneInfo) -> date:
    """The calendar date of *value* as seen in the guild's timezone."""
    return ensure_utc(value).astimezone(tz).date()


def next_local_midnight(now: datetime, tz: ZoneInfo) -> datetime:
    """UTC instant of the next guild-local midnight after *now*."""
    tomorrow = local_date(now, tz) + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=tz).astimezone(UTC)


def needs_daily_reset(reset_at: datetime | None, now: datetime, tz: ZoneInfo) -> bool:
    """True when the daily counters belong to an earlier guild-local day."""
    if reset_at is None:
        return True
    return local_date(reset_at, tz) < local_date(now, tz)


# ---------------------------------------------------------------------------
# Cooldown
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CooldownCheck:
    """Outcome of :func:`check_cooldown`.

    ``new_count`` is the per-cooldown counter to persist if the grant goes
    through.  The last-grant timestamp is always moved to now.
    """

    allowed: bool
    new_count: int


def check_cooldown(
    last_grant_at: datetime | None,
    cooldown_seconds: int,
    max_per_cooldown: int,
    count_in_cooldown: int,
    now: datetime,
) -> CooldownCheck:
    """Decide whether another grant fits in the current cooldown window.

    Up to *max_per_cooldown* grants are allowed until *cooldown_seconds*
    have passed since the last one; after that the counter starts over.
    """
    last = ensure_utc(last_grant_at)
    if last is None:
        return CooldownCheck(allowed=True, new_count=1)

    elapsed = (now - last).total_seconds()
    if elapsed >= cooldown_seconds:
        return CooldownCheck(allowed=True, new_count=1)

    if count_in_cooldown < max_per_cooldown:
        return CooldownCheck(allowed=True, new_count=count_in_cooldown + 1)

    return CooldownCheck(allowed=False, new_count=count_in_cooldown)


# ---------------------------------------------------------------------------
# Daily cap
# ---------------------------------------------------------------------------
def remaining_daily(daily_earned: int, daily_limit: int) -> int:
    return max(0, daily_limit - daily_earned)


def clamp_to_daily_limit(amount: int, daily_earned: int, daily_limit: int) -> int:
    """Cut *amount* down so ``daily_earned + amount`` never passes the cap."""
    return max(0, min(amount, remaining_daily(daily_earned, daily_limit)))
