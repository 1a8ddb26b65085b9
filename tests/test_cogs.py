"""
tests/test_cogs.py — Unit Tests for the Discord Cogs
=====================================================

Drives the earning listeners, the voice sweep, and the slash-command
callbacks with lightweight fakes in place of Discord objects.  The currency
service underneath is the real one on in-memory SQLite.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from topia.bot.cogs.admin import Admin
from topia.bot.cogs.earning import Earning, is_voice_earner, iter_voice_earners, member_role_ids
from topia.bot.cogs.wallet import Wallet, error_message, leaderboard_lines
from topia.database.models import CurrencyType
from topia.errors import AlreadyClaimed, InsufficientBalance, RepositoryError
from topia.services.currency_service import LeaderboardEntry

GUILD_ID = 100


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _make_bot(service, **cfg) -> SimpleNamespace:
    """Create a lightweight stand-in for TopiaBot."""
    config = dict(community_name="Topia", voice_sweep_seconds=60, currency_log_channel_id=None)
    config.update(cfg)
    return SimpleNamespace(
        currency=service,
        cfg=SimpleNamespace(**config),
        guilds=[],
        get_channel=MagicMock(return_value=None),
    )


def _member(user_id, *, bot=False, roles=(), voice=None):
    return SimpleNamespace(
        id=user_id,
        bot=bot,
        roles=[SimpleNamespace(id=r) for r in roles],
        voice=voice,
        mention=f"<@{user_id}>",
        display_name=f"user{user_id}",
    )


def _voice(*, mute=False, deaf=False):
    return SimpleNamespace(self_mute=mute, self_deaf=deaf)


def _message(author, content="hello there, this is long enough", guild=True):
    return SimpleNamespace(
        id=1,
        author=author,
        content=content,
        guild=SimpleNamespace(id=GUILD_ID) if guild else None,
        channel=SimpleNamespace(id=500),
    )


def _interaction(user_id=1):
    return SimpleNamespace(
        guild_id=GUILD_ID,
        user=_member(user_id),
        response=SimpleNamespace(send_message=AsyncMock()),
    )


# ---------------------------------------------------------------------------
# Earning helpers
# ---------------------------------------------------------------------------
class TestVoiceEligibility:
    def test_role_ids(self):
        assert member_role_ids(_member(1, roles=(3, 4))) == (3, 4)
        assert member_role_ids(SimpleNamespace()) == ()

    def test_bots_never_earn(self):
        assert not is_voice_earner(_member(1, bot=True, voice=_voice()))

    def test_disconnected_members_never_earn(self):
        assert not is_voice_earner(_member(1, voice=None))

    def test_muted_and_deafened_does_not_earn(self):
        assert not is_voice_earner(_member(1, voice=_voice(mute=True, deaf=True)))

    def test_muted_only_still_earns(self):
        assert is_voice_earner(_member(1, voice=_voice(mute=True)))

    def test_iter_voice_earners(self):
        guild = SimpleNamespace(voice_channels=[
            SimpleNamespace(id=10, members=[
                _member(1, voice=_voice()),
                _member(2, bot=True, voice=_voice()),
            ]),
            SimpleNamespace(id=11, members=[_member(3, voice=_voice(mute=True, deaf=True))]),
        ])
        assert [(m.id, ch) for m, ch in iter_voice_earners(guild)] == [(1, 10)]


# ---------------------------------------------------------------------------
# Earning cog
# ---------------------------------------------------------------------------
class TestEarningCog:
    def test_message_grants_topy(self, service):
        cog = Earning(_make_bot(service))
        run_async(cog.on_message(_message(_member(1))))
        assert service.get_wallets(GUILD_ID, 1)[CurrencyType.TOPY].balance == 1

    def test_bots_and_dms_are_ignored(self):
        currency = MagicMock()
        cog = Earning(_make_bot(currency))
        run_async(cog.on_message(_message(_member(1, bot=True))))
        run_async(cog.on_message(_message(_member(1), guild=False)))
        currency.grant_text_currency.assert_not_called()

    def test_repository_errors_are_swallowed(self):
        currency = MagicMock()
        currency.grant_text_currency.side_effect = RepositoryError("grant_text_currency")
        cog = Earning(_make_bot(currency))
        run_async(cog.on_message(_message(_member(1))))
        currency.grant_text_currency.assert_called_once()

    def test_voice_sweep_grants_eligible_members(self, service):
        bot = _make_bot(service)
        bot.guilds = [SimpleNamespace(id=GUILD_ID, voice_channels=[
            SimpleNamespace(id=10, members=[
                _member(1, voice=_voice()),
                _member(2, voice=_voice(mute=True, deaf=True)),
            ]),
        ])]
        cog = Earning(bot)
        run_async(cog.voice_sweep())

        wallets = {uid: service.get_wallets(GUILD_ID, uid)[CurrencyType.TOPY] for uid in (1, 2)}
        assert wallets[1].daily_earned == 1
        assert wallets[2] is None

    def test_member_join_creates_wallets(self, service):
        cog = Earning(_make_bot(service))
        member = _member(7)
        member.guild = SimpleNamespace(id=GUILD_ID)
        run_async(cog.on_member_join(member))
        wallets = service.get_wallets(GUILD_ID, 7)
        assert all(w is not None for w in wallets.values())


# ---------------------------------------------------------------------------
# Wallet cog
# ---------------------------------------------------------------------------
class TestWalletCog:
    def test_error_messages(self):
        msg = error_message(InsufficientBalance(1012, 1000), "토피")
        assert "1,012" in msg and "1,000" in msg and "토피" in msg
        claimed = error_message(AlreadyClaimed(datetime(2026, 3, 11, tzinfo=UTC)))
        assert "<t:" in claimed

    def test_leaderboard_lines_use_badges_then_numbers(self):
        entries = [LeaderboardEntry(rank=i, user_id=i, balance=10 * i, total_earned=0)
                   for i in range(1, 5)]
        lines = leaderboard_lines(entries, "토피")
        assert lines[0].startswith("\U0001f947")
        assert lines[3].startswith("**4.**")
        assert "<@4>" in lines[3]

    def test_attendance_then_already_claimed(self, service):
        cog = Wallet(_make_bot(service))
        first = _interaction()
        run_async(Wallet.attendance.callback(cog, first))
        assert "Checked in" in first.response.send_message.await_args.args[0]

        again = _interaction()
        run_async(Wallet.attendance.callback(cog, again))
        call = again.response.send_message.await_args
        assert "Already checked in" in call.args[0]
        assert call.kwargs["ephemeral"] is True

    def test_transfer_insufficient_balance(self, service):
        cog = Wallet(_make_bot(service))
        interaction = _interaction(user_id=1)
        run_async(Wallet.transfer.callback(cog, interaction, _member(2), 500))
        call = interaction.response.send_message.await_args
        assert "Not enough" in call.args[0]
        assert call.kwargs["ephemeral"] is True

    def test_transfer_to_bot_refused(self, service):
        cog = Wallet(_make_bot(service))
        interaction = _interaction()
        run_async(Wallet.transfer.callback(cog, interaction, _member(2, bot=True), 500))
        assert "Bots" in interaction.response.send_message.await_args.args[0]


# ---------------------------------------------------------------------------
# Admin cog
# ---------------------------------------------------------------------------
class TestAdminCog:
    def test_grant_requires_manager(self, service):
        cog = Admin(_make_bot(service))
        interaction = _interaction(user_id=9)
        run_async(Admin.grant.callback(cog, interaction, _member(1), 100))
        assert "currency managers" in interaction.response.send_message.await_args.args[0]

    def test_grant_by_manager_is_announced(self, service):
        log_channel = MagicMock()
        bot = _make_bot(service, currency_log_channel_id=77)
        bot.get_channel = MagicMock(return_value=log_channel)
        service.add_currency_manager(GUILD_ID, 9, actor_id=1)

        cog = Admin(bot)
        interaction = _interaction(user_id=9)
        run_async(Admin.grant.callback(cog, interaction, _member(1), 100))

        assert "New balance: **100**" in interaction.response.send_message.await_args.args[0]
        assert service.get_wallets(GUILD_ID, 1)[CurrencyType.TOPY].balance == 100
        # The MagicMock is not a discord.TextChannel, so nothing is posted.
        log_channel.send.assert_not_called()

    def test_manager_add_and_list(self, service):
        cog = Admin(_make_bot(service))
        add = _interaction()
        run_async(Admin.manager_add.callback(cog, add, _member(5)))
        assert "is now a currency manager" in add.response.send_message.await_args.args[0]

        listing = _interaction()
        run_async(Admin.manager_list.callback(cog, listing))
        assert "<@5>" in listing.response.send_message.await_args.args[0]
