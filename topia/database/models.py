"""
topia.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- wallets                — Per-guild, per-user, per-currency balances
- currency_transactions  — Append-only ledger of every balance mutation
- currency_settings      — Per-guild economy tuning (one row per guild)
- currency_multipliers   — Channel / role reward multipliers
- channel_categories     — Channel category tags (normal, music, afk, premium)
- currency_hot_times     — Time windows with boosted rewards
- currency_exclusions    — Channels / roles that never earn
- currency_managers      — Members allowed to grant currency manually
- daily_rewards          — Attendance claim streaks
- admin_log              — Append-only audit trail
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Topia ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class CurrencyType(enum.StrEnum):
    """The two guild currencies."""
    TOPY = "topy"
    RUBY = "ruby"


class TransactionType(enum.StrEnum):
    """Every kind of balance mutation recorded in the ledger."""
    EARN_TEXT = "earn_text"
    EARN_VOICE = "earn_voice"
    EARN_ATTENDANCE = "earn_attendance"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    SHOP_PURCHASE = "shop_purchase"
    TAX = "tax"
    FEE = "fee"
    ADMIN_ADD = "admin_add"
    ADMIN_REMOVE = "admin_remove"
    GAME_ENTRY = "game_entry"
    GAME_REWARD = "game_reward"
    GAME_REFUND = "game_refund"
    VAULT_DEPOSIT = "vault_deposit"
    VAULT_WITHDRAW = "vault_withdraw"


class RoundingPolicy(enum.StrEnum):
    """How a multiplied reward is turned back into an integer."""
    FLOOR = "floor"
    ROUND = "round"
    CEIL = "ceil"


class TargetType(enum.StrEnum):
    """What a multiplier or exclusion row points at."""
    CHANNEL = "channel"
    ROLE = "role"


class ChannelCategoryType(enum.StrEnum):
    """Channel tags with their own default reward multiplier."""
    NORMAL = "normal"
    MUSIC = "music"
    AFK = "afk"
    PREMIUM = "premium"


class HotTimeKind(enum.StrEnum):
    """Which earning path a hot-time window boosts."""
    TEXT = "text"
    VOICE = "voice"
    ALL = "all"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    MANUAL_GRANT = "MANUAL_GRANT"


# ---------------------------------------------------------------------------
# Wallet — one row per (guild, user, currency)
# ---------------------------------------------------------------------------
class Wallet(Base):
    """A member's balance in one currency.

    Text and voice earning keep separate cooldown counters but share one
    ``daily_earned`` counter, which resets when ``daily_reset_at`` falls on
    an earlier guild-local date than "now".
    """
    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency_type: Mapped[str] = mapped_column(String(10), nullable=False)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    daily_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    daily_reset_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_text_grant_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    text_count_in_cooldown: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_voice_grant_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    voice_count_in_cooldown: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "guild_id", "user_id", "currency_type", name="uq_wallets_guild_user_currency",
        ),
        Index("ix_wallets_leaderboard", "guild_id", "currency_type", "balance"),
    )

    def __repr__(self) -> str:
        return (
            f"<Wallet guild={self.guild_id} user={self.user_id} "
            f"{self.currency_type}={self.balance}>"
        )


# ---------------------------------------------------------------------------
# CurrencyTransaction — append-only ledger
# ---------------------------------------------------------------------------
class CurrencyTransaction(Base):
    """Immutable record of a balance mutation.

    ``amount`` is signed (credits positive, debits negative) so that the sum
    of a wallet's rows equals its balance.
    """
    __tablename__ = "currency_transactions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency_type: Mapped[str] = mapped_column(String(10), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fee: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    related_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_currency_tx_wallet", "guild_id", "user_id", "currency_type"),
        Index("ix_currency_tx_guild_time", "guild_id", "created_at"),
        Index("ix_currency_tx_type_time", "transaction_type", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CurrencyTransaction id={self.id} user={self.user_id} "
            f"type={self.transaction_type} amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# CurrencySettings — per-guild economy tuning
# ---------------------------------------------------------------------------
class CurrencySettings(Base):
    """Economy configuration for one guild.

    Column defaults mirror :data:`topia.constants.CURRENCY_DEFAULTS` so a row
    inserted with only ``guild_id`` behaves exactly like a missing row.
    """
    __tablename__ = "currency_settings"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    topy_name: Mapped[str] = mapped_column(String(50), default="토피")
    ruby_name: Mapped[str] = mapped_column(String(50), default="루비")

    text_earn_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    text_earn_min: Mapped[int] = mapped_column(Integer, default=1)
    text_earn_max: Mapped[int] = mapped_column(Integer, default=1)
    text_min_length: Mapped[int] = mapped_column(Integer, default=15)
    text_cooldown_seconds: Mapped[int] = mapped_column(Integer, default=30)
    text_max_per_cooldown: Mapped[int] = mapped_column(Integer, default=1)
    text_daily_limit: Mapped[int] = mapped_column(Integer, default=300)

    voice_earn_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    voice_earn_min: Mapped[int] = mapped_column(Integer, default=1)
    voice_earn_max: Mapped[int] = mapped_column(Integer, default=1)
    voice_cooldown_seconds: Mapped[int] = mapped_column(Integer, default=60)
    voice_daily_limit: Mapped[int] = mapped_column(Integer, default=2000)

    min_transfer_topy: Mapped[int] = mapped_column(Integer, default=100)
    min_transfer_ruby: Mapped[int] = mapped_column(Integer, default=1)
    transfer_fee_topy_percent: Mapped[float] = mapped_column(Float, default=1.2)
    transfer_fee_ruby_percent: Mapped[float] = mapped_column(Float, default=0.0)

    rounding: Mapped[str] = mapped_column(String(10), default=RoundingPolicy.FLOOR.value)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    attendance_reward: Mapped[int] = mapped_column(Integer, default=10)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<CurrencySettings guild={self.guild_id} enabled={self.enabled}>"


# ---------------------------------------------------------------------------
# CurrencyMultiplier — channel / role reward multipliers
# ---------------------------------------------------------------------------
class CurrencyMultiplier(Base):
    __tablename__ = "currency_multipliers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    target_type: Mapped[str] = mapped_column(String(10), nullable=False)
    target_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    __table_args__ = (
        UniqueConstraint(
            "guild_id", "target_type", "target_id", name="uq_multipliers_guild_target",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<CurrencyMultiplier guild={self.guild_id} "
            f"{self.target_type}={self.target_id} x{self.multiplier}>"
        )


# ---------------------------------------------------------------------------
# ChannelCategory — per-channel category tag
# ---------------------------------------------------------------------------
class ChannelCategory(Base):
    __tablename__ = "channel_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ChannelCategoryType.NORMAL.value
    )

    __table_args__ = (
        UniqueConstraint("guild_id", "channel_id", name="uq_channel_categories_guild_channel"),
    )

    def __repr__(self) -> str:
        return f"<ChannelCategory channel={self.channel_id} category={self.category!r}>"


# ---------------------------------------------------------------------------
# HotTime — boosted reward windows
# ---------------------------------------------------------------------------
class HotTime(Base):
    """A guild-local time-of-day window with a reward multiplier.

    ``start_time`` / ``end_time`` are ``HH:MM`` (or ``HH:MM:SS``) strings.
    A window whose start is after its end wraps midnight.  An empty
    ``channel_ids`` list means every channel.
    """
    __tablename__ = "currency_hot_times"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    kind: Mapped[str] = mapped_column(String(10), nullable=False, default=HotTimeKind.ALL.value)
    start_time: Mapped[str] = mapped_column(String(8), nullable=False)
    end_time: Mapped[str] = mapped_column(String(8), nullable=False)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.5)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    channel_ids: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        Index("ix_hot_times_guild", "guild_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<HotTime id={self.id} {self.kind} {self.start_time}-{self.end_time} "
            f"x{self.multiplier}>"
        )


# ---------------------------------------------------------------------------
# CurrencyExclusion — channels / roles that never earn
# ---------------------------------------------------------------------------
class CurrencyExclusion(Base):
    __tablename__ = "currency_exclusions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    target_type: Mapped[str] = mapped_column(String(10), nullable=False)
    target_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "guild_id", "target_type", "target_id", name="uq_exclusions_guild_target",
        ),
    )

    def __repr__(self) -> str:
        return f"<CurrencyExclusion {self.target_type}={self.target_id}>"


# ---------------------------------------------------------------------------
# CurrencyManager — members allowed to grant currency
# ---------------------------------------------------------------------------
class CurrencyManager(Base):
    __tablename__ = "currency_managers"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<CurrencyManager guild={self.guild_id} user={self.user_id}>"


# ---------------------------------------------------------------------------
# DailyReward — attendance streaks
# ---------------------------------------------------------------------------
class DailyReward(Base):
    __tablename__ = "daily_rewards"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    reward_type: Mapped[str] = mapped_column(String(30), primary_key=True)
    last_claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    streak_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<DailyReward user={self.user_id} type={self.reward_type!r} "
            f"streak={self.streak_count}>"
        )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
