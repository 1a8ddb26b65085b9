"""
topia.constants — Shared Constants & Helpers
=============================================

Single source of truth for economy defaults and presentation helpers.
Import from here instead of duplicating in cogs, services, and the API.
"""

from __future__ import annotations

from topia.database.models import ChannelCategoryType, CurrencyType, RoundingPolicy

# ---------------------------------------------------------------------------
# Economy defaults — used when a guild has no currency_settings row
# ---------------------------------------------------------------------------
CURRENCY_DEFAULTS: dict[str, object] = {
    "enabled": True,
    "topy_name": "토피",
    "ruby_name": "루비",
    "text_earn_enabled": True,
    "text_earn_min": 1,
    "text_earn_max": 1,
    "text_min_length": 15,
    "text_cooldown_seconds": 30,
    "text_max_per_cooldown": 1,
    "text_daily_limit": 300,
    "voice_earn_enabled": True,
    "voice_earn_min": 1,
    "voice_earn_max": 1,
    "voice_cooldown_seconds": 60,
    "voice_daily_limit": 2000,
    "min_transfer_topy": 100,
    "min_transfer_ruby": 1,
    "transfer_fee_topy_percent": 1.2,
    "transfer_fee_ruby_percent": 0.0,
    "rounding": RoundingPolicy.FLOOR.value,
    "timezone": "UTC",
    "attendance_reward": 10,
}
"""Column name → default value for :class:`~topia.database.models.CurrencySettings`."""

# Voice earning allows a single grant per cooldown window.
VOICE_MAX_PER_COOLDOWN = 1

CHANNEL_CATEGORY_MULTIPLIERS: dict[ChannelCategoryType, float] = {
    ChannelCategoryType.NORMAL: 1.0,
    ChannelCategoryType.MUSIC: 1.0,
    ChannelCategoryType.AFK: 0.1,
    ChannelCategoryType.PREMIUM: 1.5,
}

ATTENDANCE_REWARD_TYPE = "attendance"

# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------
CURRENCY_EMOJI: dict[CurrencyType, str] = {
    CurrencyType.TOPY: "\U0001f4b0",  # 💰
    CurrencyType.RUBY: "\U0001f48e",  # 💎
}

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉


def format_amount(value: int) -> str:
    """Compact display for large balances (``1.2K``, ``3.4M``)."""
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return str(value)
