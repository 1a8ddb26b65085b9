"""
topia.bot.cogs.wallet — Member Currency Commands
=================================================

Slash commands for member self-service:
- /wallet — topy and ruby balances (yours or another member's)
- /leaderboard — richest members, paginated
- /transfer — send topy or ruby to another member (fee applies)
- /attendance — daily check-in reward with streak tracking

Business errors become ephemeral replies; database failures are logged and
the member sees a generic apology.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from topia.constants import CURRENCY_EMOJI, RANK_BADGES, format_amount
from topia.database.engine import run_db
from topia.database.models import CurrencyType
from topia.errors import (
    AlreadyClaimed,
    CurrencyError,
    InsufficientBalance,
    InvalidAmount,
    NotCurrencyManager,
    RepositoryError,
    SelfTransfer,
)

if TYPE_CHECKING:
    from topia.bot.core import TopiaBot
    from topia.engine.rules import GuildSettings
    from topia.services.currency_service import LeaderboardEntry

logger = logging.getLogger(__name__)

LEADERBOARD_PAGE_SIZE = 10

CURRENCY_CHOICES = [
    app_commands.Choice(name="Topy", value=CurrencyType.TOPY.value),
    app_commands.Choice(name="Ruby", value=CurrencyType.RUBY.value),
]


def currency_name(settings: GuildSettings, currency: CurrencyType) -> str:
    return {
        CurrencyType.TOPY: settings.topy_name,
        CurrencyType.RUBY: settings.ruby_name,
    }[currency]


def error_message(exc: CurrencyError, unit: str = "") -> str:
    """User-facing text for a business error."""
    if isinstance(exc, InsufficientBalance):
        return (
            f"❌ Not enough {unit}: you need **{exc.required:,}** "
            f"but have **{exc.available:,}**."
        )
    if isinstance(exc, SelfTransfer):
        return "❌ You can't send currency to yourself."
    if isinstance(exc, InvalidAmount):
        return f"❌ {exc}"
    if isinstance(exc, NotCurrencyManager):
        return "❌ Only currency managers can do that."
    if isinstance(exc, AlreadyClaimed):
        ts = int(exc.next_claim_at.timestamp())
        return f"⏰ Already checked in today. Next check-in <t:{ts}:R>."
    return "⚠️ Something went wrong. Please try again later."


def leaderboard_lines(entries: list[LeaderboardEntry], unit: str) -> list[str]:
    lines = []
    for entry in entries:
        badge = (
            RANK_BADGES[entry.rank - 1]
            if entry.rank <= len(RANK_BADGES) else f"**{entry.rank}.**"
        )
        lines.append(f"{badge} <@{entry.user_id}> — {entry.balance:,} {unit}")
    return lines


class Wallet(commands.Cog, name="Wallet"):
    """Balances, rankings, transfers, and daily attendance."""

    def __init__(self, bot: TopiaBot) -> None:
        self.bot = bot

    async def _reply_error(
        self, interaction: discord.Interaction, exc: CurrencyError, unit: str = "",
    ) -> None:
        """Send the ephemeral error reply.  Call from inside the except block."""
        if isinstance(exc, RepositoryError):
            logger.exception(
                "Currency command failed for user %s in guild %s",
                interaction.user.id, interaction.guild_id,
            )
        await interaction.response.send_message(error_message(exc, unit), ephemeral=True)

    # -------------------------------------------------------------------
    # /wallet
    # -------------------------------------------------------------------
    @app_commands.command(name="wallet", description="Show topy and ruby balances.")
    @app_commands.describe(member="Whose wallet to show (defaults to you)")
    @app_commands.guild_only()
    async def wallet(
        self, interaction: discord.Interaction, member: discord.Member | None = None,
    ) -> None:
        target = member or interaction.user
        guild_id = interaction.guild_id or 0
        try:
            settings = await run_db(self.bot.currency.get_settings, guild_id)
            wallets = await run_db(self.bot.currency.get_wallets, guild_id, target.id)
        except CurrencyError as exc:
            await self._reply_error(interaction, exc)
            return

        embed = discord.Embed(
            title=f"{target.display_name}'s wallet",
            color=discord.Color.gold(),
        )
        for currency in CurrencyType:
            view = wallets[currency]
            balance = view.balance if view is not None else 0
            embed.add_field(
                name=f"{CURRENCY_EMOJI[currency]} {currency_name(settings, currency)}",
                value=f"**{balance:,}** ({format_amount(balance)})",
                inline=True,
            )
        topy = wallets[CurrencyType.TOPY]
        if topy is not None:
            embed.add_field(
                name="Earned today",
                value=(
                    f"**{topy.daily_earned:,}** · cap chat {settings.text_daily_limit:,} "
                    f"/ voice {settings.voice_daily_limit:,}"
                ),
                inline=False,
            )
        embed.set_footer(text=self.bot.cfg.community_name)
        await interaction.response.send_message(embed=embed, ephemeral=member is None)

    # -------------------------------------------------------------------
    # /leaderboard
    # -------------------------------------------------------------------
    @app_commands.command(name="leaderboard", description="Top members by balance.")
    @app_commands.describe(currency="Which currency to rank by", page="Page number (10 per page)")
    @app_commands.choices(currency=CURRENCY_CHOICES)
    @app_commands.guild_only()
    async def leaderboard(
        self,
        interaction: discord.Interaction,
        currency: str = CurrencyType.TOPY.value,
        page: app_commands.Range[int, 1, 100] = 1,
    ) -> None:
        guild_id = interaction.guild_id or 0
        kind = CurrencyType(currency)
        try:
            settings = await run_db(self.bot.currency.get_settings, guild_id)
            entries = await run_db(
                self.bot.currency.get_leaderboard,
                guild_id,
                kind,
                LEADERBOARD_PAGE_SIZE,
                (page - 1) * LEADERBOARD_PAGE_SIZE,
            )
        except CurrencyError as exc:
            await self._reply_error(interaction, exc)
            return

        unit = currency_name(settings, kind)
        if not entries:
            await interaction.response.send_message(
                "No one is on this page yet! Start chatting to earn some.", ephemeral=True,
            )
            return

        embed = discord.Embed(
            title=f"{CURRENCY_EMOJI[kind]} {unit} leaderboard — page {page}",
            description="\n".join(leaderboard_lines(entries, unit)),
            color=discord.Color.gold(),
        )
        embed.set_footer(text=self.bot.cfg.community_name)
        await interaction.response.send_message(embed=embed)

    # -------------------------------------------------------------------
    # /transfer
    # -------------------------------------------------------------------
    @app_commands.command(name="transfer", description="Send currency to another member.")
    @app_commands.describe(
        member="Who receives the currency",
        amount="How much to send (the fee is charged on top)",
        currency="Which currency to send",
        reason="Optional note shown in the transaction history",
    )
    @app_commands.choices(currency=CURRENCY_CHOICES)
    @app_commands.guild_only()
    async def transfer(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        amount: app_commands.Range[int, 1],
        currency: str = CurrencyType.TOPY.value,
        reason: str | None = None,
    ) -> None:
        guild_id = interaction.guild_id or 0
        kind = CurrencyType(currency)
        if member.bot:
            await interaction.response.send_message(
                "❌ Bots don't have wallets.", ephemeral=True,
            )
            return

        unit = kind.value
        try:
            settings = await run_db(self.bot.currency.get_settings, guild_id)
            unit = currency_name(settings, kind)
            result = await run_db(
                self.bot.currency.transfer,
                guild_id,
                interaction.user.id,
                member.id,
                amount,
                kind,
                reason,
            )
        except CurrencyError as exc:
            await self._reply_error(interaction, exc, unit)
            return

        fee_line = f" (fee {result.fee:,})" if result.fee else ""
        await interaction.response.send_message(
            f"✅ Sent **{result.amount:,} {unit}** to {member.mention}{fee_line}. "
            f"Your balance: **{result.from_balance:,}**."
        )

    # -------------------------------------------------------------------
    # /attendance
    # -------------------------------------------------------------------
    @app_commands.command(name="attendance", description="Daily check-in for a topy reward.")
    @app_commands.guild_only()
    async def attendance(self, interaction: discord.Interaction) -> None:
        guild_id = interaction.guild_id or 0
        try:
            settings = await run_db(self.bot.currency.get_settings, guild_id)
            result = await run_db(
                self.bot.currency.claim_attendance, guild_id, interaction.user.id,
            )
        except CurrencyError as exc:
            await self._reply_error(interaction, exc)
            return

        await interaction.response.send_message(
            f"\U0001f4c5 Checked in! +**{result.reward:,} {settings.topy_name}** · "
            f"streak **{result.streak_count}** day(s) · total **{result.total_count}**. "
            f"Balance: **{result.new_balance:,}**."
        )


async def setup(bot: TopiaBot) -> None:
    await bot.add_cog(Wallet(bot))
