"""
topia.services.currency_service — Currency Grants, Transfers & Attendance
==========================================================================

Shared service used by both the bot and the dashboard API.  Built from an
explicitly injected :class:`~sqlalchemy.Engine`; the clock and random source
are injectable so tests are deterministic.

Grant pipeline (text and voice):

  1. settings / exclusions          → ``GrantResult(granted=False, reason=…)``
  2. lock wallet, lazy-create, daily reset
  3. cooldown window, daily cap     → ``GrantResult(granted=False, reason=…)``
  4. random base × multipliers      (:mod:`topia.engine.reward`)
  5. clamp to remaining daily allowance
  6. credit + ledger row + counters in one transaction

Not-eligible outcomes are results, never exceptions.  Business rule
violations raise :class:`~topia.errors.CurrencyError` subclasses; database
failures raise :class:`~topia.errors.RepositoryError` after rollback.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from topia.constants import ATTENDANCE_REWARD_TYPE, VOICE_MAX_PER_COOLDOWN
from topia.database.models import (
    CurrencyTransaction,
    CurrencyType,
    DailyReward,
    TransactionType,
    Wallet,
)
from topia.engine.events import (
    GRANT_TRANSACTION_TYPE,
    GrantBlockReason,
    GrantKind,
    GrantRequest,
)
from topia.engine.limits import (
    check_cooldown,
    clamp_to_daily_limit,
    ensure_utc,
    local_date,
    needs_daily_reset,
    next_local_midnight,
)
from topia.engine.reward import (
    calculate_grant_amount,
    calculate_transfer_fee,
    fee_percent,
    min_transfer,
)
from topia.engine.rules import GuildSettings
from topia.errors import (
    AlreadyClaimed,
    InsufficientBalance,
    InvalidAmount,
    NotCurrencyManager,
    SelfTransfer,
    repository_errors,
)
from topia.services.settings_repository import SettingsRepository
from topia.services.wallet_repository import WalletKey, WalletRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def utc_now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GrantResult:
    granted: bool
    amount: int | None = None
    total_balance: int | None = None
    daily_earned: int | None = None
    reason: GrantBlockReason | None = None

    @classmethod
    def blocked(cls, reason: GrantBlockReason) -> GrantResult:
        return cls(granted=False, reason=reason)


@dataclass(frozen=True, slots=True)
class TransferResult:
    amount: int
    fee: int
    from_balance: int
    to_balance: int


@dataclass(frozen=True, slots=True)
class AttendanceResult:
    reward: int
    streak_count: int
    total_count: int
    new_balance: int
    next_claim_at: datetime


@dataclass(frozen=True, slots=True)
class AttendanceStatus:
    can_claim: bool
    next_claim_at: datetime | None
    streak_count: int
    total_count: int


@dataclass(frozen=True, slots=True)
class WalletView:
    guild_id: int
    user_id: int
    currency_type: CurrencyType
    balance: int
    total_earned: int
    daily_earned: int

    @classmethod
    def from_row(cls, row: Wallet, *, daily_stale: bool = False) -> WalletView:
        """*daily_stale* reports ``daily_earned`` as 0 when the reset is due."""
        return cls(
            guild_id=row.guild_id,
            user_id=row.user_id,
            currency_type=CurrencyType(row.currency_type),
            balance=row.balance,
            total_earned=row.total_earned,
            daily_earned=0 if daily_stale else row.daily_earned,
        )


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    rank: int
    user_id: int
    balance: int
    total_earned: int


@dataclass(frozen=True, slots=True)
class TransactionView:
    id: int
    user_id: int
    currency_type: CurrencyType
    transaction_type: TransactionType
    amount: int
    balance_after: int
    fee: int
    related_user_id: int | None
    description: str | None
    created_at: datetime | None

    @classmethod
    def from_row(cls, row: CurrencyTransaction) -> TransactionView:
        return cls(
            id=row.id,
            user_id=row.user_id,
            currency_type=CurrencyType(row.currency_type),
            transaction_type=TransactionType(row.transaction_type),
            amount=row.amount,
            balance_after=row.balance_after,
            fee=row.fee,
            related_user_id=row.related_user_id,
            description=row.description,
            created_at=ensure_utc(row.created_at),
        )


# Wallet columns used by each earning path: (last grant timestamp, count in
# cooldown).  Both paths share ``daily_earned``.
_GRANT_COUNTERS: dict[GrantKind, tuple[str, str]] = {
    GrantKind.TEXT: ("last_text_grant_at", "text_count_in_cooldown"),
    GrantKind.VOICE: ("last_voice_grant_at", "voice_count_in_cooldown"),
}


def _grant_limits(settings: GuildSettings, kind: GrantKind) -> tuple[bool, int, int, int]:
    """(enabled, cooldown seconds, max per cooldown, daily limit) for *kind*."""
    if kind is GrantKind.TEXT:
        return (
            settings.text_earn_enabled,
            settings.text_cooldown_seconds,
            settings.text_max_per_cooldown,
            settings.text_daily_limit,
        )
    return (
        settings.voice_earn_enabled,
        settings.voice_cooldown_seconds,
        VOICE_MAX_PER_COOLDOWN,
        settings.voice_daily_limit,
    )


def _page(limit: int, offset: int) -> tuple[int, int]:
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class CurrencyService:
    """Entry point for every currency operation.

    Thread-safe: all methods are synchronous and meant to be called from
    worker threads (``run_db``) or FastAPI's threadpool.
    """

    def __init__(
        self,
        engine: Engine,
        settings_repo: SettingsRepository | None = None,
        wallet_repo: WalletRepository | None = None,
        clock: Callable[[], datetime] = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        self.engine = engine
        self.settings_repo = settings_repo or SettingsRepository(engine)
        self.wallets = wallet_repo or WalletRepository()
        self.clock = clock
        self.rng = rng or random.Random()

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # -------------------------------------------------------------------
    # Earning
    # -------------------------------------------------------------------
    def grant_text_currency(
        self,
        guild_id: int,
        user_id: int,
        channel_id: int,
        role_ids: tuple[int, ...] | list[int] = (),
        message_length: int = 0,
    ) -> GrantResult:
        return self.grant(GrantRequest(
            guild_id=guild_id,
            user_id=user_id,
            channel_id=channel_id,
            kind=GrantKind.TEXT,
            role_ids=tuple(role_ids),
            message_length=message_length,
        ))

    def grant_voice_currency(
        self,
        guild_id: int,
        user_id: int,
        channel_id: int,
        role_ids: tuple[int, ...] | list[int] = (),
    ) -> GrantResult:
        return self.grant(GrantRequest(
            guild_id=guild_id,
            user_id=user_id,
            channel_id=channel_id,
            kind=GrantKind.VOICE,
            role_ids=tuple(role_ids),
        ))

    def grant(self, request: GrantRequest) -> GrantResult:
        """Evaluate one earning trigger and credit the wallet if it is due."""
        rules = self.settings_repo.load_rules(request.guild_id)
        settings = rules.settings
        enabled, cooldown_seconds, max_per_cooldown, daily_limit = _grant_limits(
            settings, request.kind
        )

        reason: GrantBlockReason | None = None
        if not settings.enabled or not enabled:
            reason = GrantBlockReason.DISABLED
        elif request.kind is GrantKind.TEXT and request.message_length < settings.text_min_length:
            reason = GrantBlockReason.MESSAGE_TOO_SHORT
        elif request.channel_id in rules.excluded_channels:
            reason = GrantBlockReason.EXCLUDED_CHANNEL
        elif any(r in rules.excluded_roles for r in request.role_ids):
            reason = GrantBlockReason.EXCLUDED_ROLE
        if reason is not None:
            return self._blocked(request, reason)

        last_attr, count_attr = _GRANT_COUNTERS[request.kind]
        key = WalletKey(request.guild_id, request.user_id, CurrencyType.TOPY)

        with repository_errors(f"grant_{request.kind}_currency"), \
                self.wallets.lock(key), self._session() as session:
            now = self.clock()
            wallet = self.wallets.get_or_create(session, key)
            if needs_daily_reset(wallet.daily_reset_at, now, settings.tz):
                wallet.daily_earned = 0
                wallet.daily_reset_at = now

            cooldown = check_cooldown(
                getattr(wallet, last_attr),
                cooldown_seconds,
                max_per_cooldown,
                getattr(wallet, count_attr),
                now,
            )
            if not cooldown.allowed:
                return self._blocked(request, GrantBlockReason.COOLDOWN)

            daily_earned = wallet.daily_earned
            if daily_earned >= daily_limit:
                return self._blocked(request, GrantBlockReason.DAILY_LIMIT)

            calc = calculate_grant_amount(
                rules, request.kind, request.channel_id, request.role_ids, now, self.rng,
            )
            amount = clamp_to_daily_limit(calc.amount, daily_earned, daily_limit)
            if amount <= 0:
                return self._blocked(request, GrantBlockReason.DAILY_LIMIT)

            self.wallets.credit(
                session, wallet, amount, GRANT_TRANSACTION_TYPE[request.kind], earned=True,
            )
            wallet.daily_earned = daily_earned + amount
            setattr(wallet, last_attr, now)
            setattr(wallet, count_attr, cooldown.new_count)
            session.commit()

            result = GrantResult(
                granted=True,
                amount=amount,
                total_balance=wallet.balance,
                daily_earned=daily_earned + amount,
            )

        logger.info(
            "Granted %d topy (%s) to user %d in guild %d → balance %d, today %d/%d",
            amount, request.kind, request.user_id, request.guild_id,
            result.total_balance, result.daily_earned, daily_limit,
        )
        return result

    @staticmethod
    def _blocked(request: GrantRequest, reason: GrantBlockReason) -> GrantResult:
        logger.debug(
            "No %s grant for user %d in guild %d: %s",
            request.kind, request.user_id, request.guild_id, reason,
        )
        return GrantResult.blocked(reason)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_wallets(self, guild_id: int, user_id: int) -> dict[CurrencyType, WalletView | None]:
        """Both wallets for one member; missing ones are ``None``."""
        tz = self.settings_repo.get_settings(guild_id).tz
        views: dict[CurrencyType, WalletView | None] = {}
        with repository_errors("get_wallets"), self._session() as session:
            now = self.clock()
            for currency in CurrencyType:
                row = self.wallets.get(session, WalletKey(guild_id, user_id, currency))
                if row is None:
                    views[currency] = None
                    continue
                stale = needs_daily_reset(row.daily_reset_at, now, tz)
                views[currency] = WalletView.from_row(row, daily_stale=stale)
        return views

    def get_leaderboard(
        self,
        guild_id: int,
        currency_type: CurrencyType = CurrencyType.TOPY,
        limit: int = 10,
        offset: int = 0,
    ) -> list[LeaderboardEntry]:
        limit, offset = _page(limit, offset)
        with repository_errors("get_leaderboard"), self._session() as session:
            rows = self.wallets.leaderboard(session, guild_id, currency_type, limit, offset)
            return [
                LeaderboardEntry(
                    rank=offset + i + 1,
                    user_id=row.user_id,
                    balance=row.balance,
                    total_earned=row.total_earned,
                )
                for i, row in enumerate(rows)
            ]

    def get_transactions(
        self,
        guild_id: int,
        user_id: int | None = None,
        currency_type: CurrencyType | None = None,
        transaction_type: TransactionType | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[TransactionView]:
        limit, offset = _page(limit, offset)
        with repository_errors("get_transactions"), self._session() as session:
            rows = self.wallets.transactions(
                session,
                guild_id,
                user_id=user_id,
                currency_type=currency_type,
                transaction_type=transaction_type,
                limit=limit,
                offset=offset,
            )
            return [TransactionView.from_row(r) for r in rows]

    def get_settings(self, guild_id: int) -> GuildSettings:
        return self.settings_repo.get_settings(guild_id)

    def update_settings(
        self, guild_id: int, changes: dict[str, Any], actor_id: int
    ) -> GuildSettings:
        return self.settings_repo.update_settings(guild_id, changes, actor_id)

    # -------------------------------------------------------------------
    # Wallet lifecycle
    # -------------------------------------------------------------------
    def initialize_wallets(self, guild_id: int, user_id: int) -> dict[CurrencyType, WalletView]:
        """Create both wallets for a new member (no-op for existing ones)."""
        keys = [WalletKey(guild_id, user_id, currency) for currency in CurrencyType]
        with repository_errors("initialize_wallets"), \
                self.wallets.lock(*keys), self._session() as session:
            views = {
                key.currency_type: WalletView.from_row(self.wallets.get_or_create(session, key))
                for key in keys
            }
            session.commit()
        return views

    # -------------------------------------------------------------------
    # Transfers
    # -------------------------------------------------------------------
    def transfer(
        self,
        guild_id: int,
        from_user_id: int,
        to_user_id: int,
        amount: int,
        currency_type: CurrencyType = CurrencyType.TOPY,
        reason: str | None = None,
    ) -> TransferResult:
        """Move *amount* between members; the sender also pays the fee."""
        if from_user_id == to_user_id:
            raise SelfTransfer()

        settings = self.settings_repo.get_settings(guild_id)
        minimum = max(1, min_transfer(settings, currency_type))
        if amount < minimum:
            raise InvalidAmount(f"Minimum transfer amount is {minimum}")

        fee = calculate_transfer_fee(amount, fee_percent(settings, currency_type))
        required = amount + fee
        src = WalletKey(guild_id, from_user_id, currency_type)
        dst = WalletKey(guild_id, to_user_id, currency_type)

        with repository_errors("transfer"), \
                self.wallets.lock(src, dst), self._session() as session:
            # Row locks are taken in key order so opposing transfers can't deadlock.
            rows: dict[WalletKey, Wallet | None] = {}
            for key in sorted((src, dst)):
                if key == src:
                    rows[key] = self.wallets.get(session, key, for_update=True)
                else:
                    rows[key] = self.wallets.get_or_create(session, key)
            sender, receiver = rows[src], rows[dst]

            available = sender.balance if sender is not None else 0
            if available < required:
                raise InsufficientBalance(required, available)

            self.wallets.debit(
                session, sender, amount, TransactionType.TRANSFER_OUT,
                fee=fee, related_user_id=to_user_id, description=reason,
            )
            if fee > 0:
                self.wallets.debit(
                    session, sender, fee, TransactionType.FEE, description="Transfer fee",
                )
            self.wallets.credit(
                session, receiver, amount, TransactionType.TRANSFER_IN,
                related_user_id=from_user_id, description=reason,
            )
            session.commit()
            result = TransferResult(
                amount=amount, fee=fee,
                from_balance=sender.balance, to_balance=receiver.balance,
            )

        logger.info(
            "Transfer %d %s (+%d fee) %d → %d in guild %d",
            amount, currency_type, fee, from_user_id, to_user_id, guild_id,
        )
        return result

    # -------------------------------------------------------------------
    # Manual grants
    # -------------------------------------------------------------------
    def admin_grant(
        self,
        guild_id: int,
        manager_user_id: int,
        target_user_id: int,
        amount: int,
        currency_type: CurrencyType = CurrencyType.TOPY,
        description: str | None = None,
    ) -> int:
        """Add (or, with a negative *amount*, remove) currency.  Returns the new balance."""
        if amount == 0:
            raise InvalidAmount("Amount must not be zero")

        key = WalletKey(guild_id, target_user_id, currency_type)
        with repository_errors("admin_grant"), \
                self.wallets.lock(key), self._session() as session:
            if not self.settings_repo.is_manager(session, guild_id, manager_user_id):
                raise NotCurrencyManager(manager_user_id)

            wallet = self.wallets.get_or_create(session, key)
            if amount > 0:
                self.wallets.credit(
                    session, wallet, amount, TransactionType.ADMIN_ADD,
                    related_user_id=manager_user_id, description=description,
                )
            else:
                if wallet.balance < -amount:
                    raise InsufficientBalance(-amount, wallet.balance)
                self.wallets.debit(
                    session, wallet, -amount, TransactionType.ADMIN_REMOVE,
                    related_user_id=manager_user_id, description=description,
                )
            session.commit()
            balance = wallet.balance

        logger.info(
            "Manager %d adjusted %s of user %d in guild %d by %+d → %d",
            manager_user_id, currency_type, target_user_id, guild_id, amount, balance,
        )
        return balance

    # -------------------------------------------------------------------
    # Attendance
    # -------------------------------------------------------------------
    def claim_attendance(self, guild_id: int, user_id: int) -> AttendanceResult:
        """Daily check-in.  Raises :class:`AlreadyClaimed` on a second claim today."""
        settings = self.settings_repo.get_settings(guild_id)
        tz = settings.tz
        key = WalletKey(guild_id, user_id, CurrencyType.TOPY)

        with repository_errors("claim_attendance"), \
                self.wallets.lock(key), self._session() as session:
            now = self.clock()
            today = local_date(now, tz)
            record = session.get(
                DailyReward, (guild_id, user_id, ATTENDANCE_REWARD_TYPE), with_for_update=True,
            )

            if record is None:
                record = DailyReward(
                    guild_id=guild_id,
                    user_id=user_id,
                    reward_type=ATTENDANCE_REWARD_TYPE,
                    last_claimed_at=now,
                    streak_count=1,
                    total_count=1,
                )
                session.add(record)
            else:
                last_day = local_date(record.last_claimed_at, tz)
                if last_day >= today:
                    raise AlreadyClaimed(next_local_midnight(now, tz))
                if last_day == today - timedelta(days=1):
                    record.streak_count += 1
                else:
                    record.streak_count = 1
                record.total_count += 1
                record.last_claimed_at = now

            wallet = self.wallets.get_or_create(session, key)
            if needs_daily_reset(wallet.daily_reset_at, now, tz):
                wallet.daily_earned = 0
                wallet.daily_reset_at = now
            reward = settings.attendance_reward
            if reward > 0:
                self.wallets.credit(
                    session, wallet, reward, TransactionType.EARN_ATTENDANCE, earned=True,
                    description=f"Attendance reward (streak {record.streak_count})",
                )
                wallet.daily_earned += reward
            session.commit()
            result = AttendanceResult(
                reward=reward,
                streak_count=record.streak_count,
                total_count=record.total_count,
                new_balance=wallet.balance,
                next_claim_at=next_local_midnight(now, tz),
            )

        logger.info(
            "Attendance: user %d in guild %d streak=%d reward=%d",
            user_id, guild_id, result.streak_count, reward,
        )
        return result

    def get_attendance_status(self, guild_id: int, user_id: int) -> AttendanceStatus:
        tz = self.settings_repo.get_settings(guild_id).tz
        with repository_errors("get_attendance_status"), self._session() as session:
            record = session.get(DailyReward, (guild_id, user_id, ATTENDANCE_REWARD_TYPE))
            if record is None:
                return AttendanceStatus(
                    can_claim=True, next_claim_at=None, streak_count=0, total_count=0,
                )
            now = self.clock()
            can_claim = local_date(record.last_claimed_at, tz) < local_date(now, tz)
            return AttendanceStatus(
                can_claim=can_claim,
                next_claim_at=None if can_claim else next_local_midnight(now, tz),
                streak_count=record.streak_count,
                total_count=record.total_count,
            )

    # -------------------------------------------------------------------
    # Currency managers
    # -------------------------------------------------------------------
    def get_currency_managers(self, guild_id: int) -> list[int]:
        return self.settings_repo.list_managers(guild_id)

    def is_currency_manager(self, guild_id: int, user_id: int) -> bool:
        with repository_errors("is_currency_manager"), self._session() as session:
            return self.settings_repo.is_manager(session, guild_id, user_id)

    def add_currency_manager(self, guild_id: int, user_id: int, actor_id: int) -> bool:
        return self.settings_repo.add_manager(guild_id, user_id, actor_id)

    def remove_currency_manager(self, guild_id: int, user_id: int, actor_id: int) -> bool:
        return self.settings_repo.remove_manager(guild_id, user_id, actor_id)
