"""
topia.engine.rules — Immutable economy rule snapshots
======================================================

:class:`GuildSettings` is the typed, detached view of a ``currency_settings``
row (or of the defaults when no row exists).  :class:`EconomyRules` bundles it
with every multiplier, hot time, and exclusion for one guild so the reward
calculation can run without touching the database.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from topia.constants import CURRENCY_DEFAULTS
from topia.database.models import ChannelCategoryType, HotTimeKind, RoundingPolicy

if TYPE_CHECKING:
    from topia.database.models import CurrencySettings


@dataclass(frozen=True, slots=True)
class GuildSettings:
    guild_id: int
    enabled: bool
    topy_name: str
    ruby_name: str
    text_earn_enabled: bool
    text_earn_min: int
    text_earn_max: int
    text_min_length: int
    text_cooldown_seconds: int
    text_max_per_cooldown: int
    text_daily_limit: int
    voice_earn_enabled: bool
    voice_earn_min: int
    voice_earn_max: int
    voice_cooldown_seconds: int
    voice_daily_limit: int
    min_transfer_topy: int
    min_transfer_ruby: int
    transfer_fee_topy_percent: float
    transfer_fee_ruby_percent: float
    rounding: RoundingPolicy
    timezone: str
    attendance_reward: int
    is_default: bool = False

    @classmethod
    def defaults(cls, guild_id: int) -> GuildSettings:
        values = dict(CURRENCY_DEFAULTS)
        values["rounding"] = RoundingPolicy(values["rounding"])
        return cls(guild_id=guild_id, is_default=True, **values)

    @classmethod
    def from_row(cls, row: CurrencySettings) -> GuildSettings:
        values: dict[str, Any] = {}
        for key, default in CURRENCY_DEFAULTS.items():
            value = getattr(row, key)
            values[key] = default if value is None else value
        values["rounding"] = RoundingPolicy(values["rounding"])
        return cls(guild_id=row.guild_id, **values)

    @property
    def tz(self) -> ZoneInfo:
        """Guild-local timezone; unknown names fall back to UTC."""
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return ZoneInfo("UTC")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["rounding"] = self.rounding.value
        return data


SETTINGS_FIELDS: frozenset[str] = frozenset(
    f.name for f in fields(GuildSettings) if f.name not in {"guild_id", "is_default"}
)


@dataclass(frozen=True, slots=True)
class HotTimeWindow:
    id: int
    kind: HotTimeKind
    start_time: str
    end_time: str
    multiplier: float
    enabled: bool = True
    channel_ids: frozenset[int] = frozenset()


@dataclass(frozen=True, slots=True)
class EconomyRules:
    """Everything the grant calculation needs to know about one guild."""

    settings: GuildSettings
    channel_multipliers: dict[int, float] = field(default_factory=dict)
    role_multipliers: dict[int, float] = field(default_factory=dict)
    channel_categories: dict[int, ChannelCategoryType] = field(default_factory=dict)
    hot_times: tuple[HotTimeWindow, ...] = ()
    excluded_channels: frozenset[int] = frozenset()
    excluded_roles: frozenset[int] = frozenset()
