"""
topia.bot.cogs.admin — Currency Manager Commands
=================================================

- /grant — add or remove currency (currency managers only)
- /currency-manager add | remove | list — manage who may use /grant
  (guild administrators)

Manual grants are echoed to ``currency_log_channel_id`` when configured.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from topia.bot.cogs.wallet import CURRENCY_CHOICES, currency_name, error_message
from topia.constants import CURRENCY_EMOJI
from topia.database.engine import run_db
from topia.database.models import CurrencyType
from topia.errors import CurrencyError, RepositoryError

if TYPE_CHECKING:
    from topia.bot.core import TopiaBot

logger = logging.getLogger(__name__)


class Admin(commands.Cog, name="Admin"):
    """Manual grants and currency-manager administration."""

    manager_group = app_commands.Group(
        name="currency-manager",
        description="Manage who can grant currency.",
        default_permissions=discord.Permissions(administrator=True),
        guild_only=True,
    )

    def __init__(self, bot: TopiaBot) -> None:
        self.bot = bot

    async def _fail(
        self, interaction: discord.Interaction, exc: CurrencyError, unit: str = "",
    ) -> None:
        if isinstance(exc, RepositoryError):
            logger.exception(
                "Admin command failed for user %s in guild %s",
                interaction.user.id, interaction.guild_id,
            )
        await interaction.response.send_message(error_message(exc, unit), ephemeral=True)

    # -------------------------------------------------------------------
    # /grant
    # -------------------------------------------------------------------
    @app_commands.command(name="grant", description="Add or remove a member's currency.")
    @app_commands.describe(
        member="The member whose balance changes",
        amount="Positive to add, negative to remove",
        currency="Which currency to adjust",
        description="Reason recorded in the transaction history",
    )
    @app_commands.choices(currency=CURRENCY_CHOICES)
    @app_commands.guild_only()
    async def grant(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        amount: int,
        currency: str = CurrencyType.TOPY.value,
        description: str | None = None,
    ) -> None:
        guild_id = interaction.guild_id or 0
        kind = CurrencyType(currency)
        unit = kind.value
        try:
            settings = await run_db(self.bot.currency.get_settings, guild_id)
            unit = currency_name(settings, kind)
            balance = await run_db(
                self.bot.currency.admin_grant,
                guild_id,
                interaction.user.id,
                member.id,
                amount,
                kind,
                description,
            )
        except CurrencyError as exc:
            await self._fail(interaction, exc, unit)
            return

        verb = "Added" if amount > 0 else "Removed"
        summary = (
            f"{verb} **{abs(amount):,} {unit}** "
            f"{'to' if amount > 0 else 'from'} {member.mention}. "
            f"New balance: **{balance:,}**."
        )
        await interaction.response.send_message(f"✅ {summary}", ephemeral=True)
        await self._announce_grant(interaction, kind, summary, description)

    async def _announce_grant(
        self,
        interaction: discord.Interaction,
        currency: CurrencyType,
        summary: str,
        description: str | None,
    ) -> None:
        channel_id = self.bot.cfg.currency_log_channel_id
        if not channel_id:
            return
        channel = self.bot.get_channel(channel_id)
        if not isinstance(channel, discord.TextChannel):
            logger.warning("Currency log channel %s not found", channel_id)
            return
        embed = discord.Embed(
            title=f"{CURRENCY_EMOJI[currency]} Manual grant",
            description=summary,
            color=discord.Color.blurple(),
        )
        embed.add_field(name="Manager", value=interaction.user.mention)
        if description:
            embed.add_field(name="Reason", value=description, inline=False)
        try:
            await channel.send(embed=embed)
        except discord.HTTPException:
            logger.warning("Could not post manual grant to channel %s", channel_id)

    # -------------------------------------------------------------------
    # /currency-manager
    # -------------------------------------------------------------------
    @manager_group.command(name="add", description="Allow a member to use /grant.")
    @app_commands.describe(member="The member to promote")
    async def manager_add(self, interaction: discord.Interaction, member: discord.Member) -> None:
        try:
            added = await run_db(
                self.bot.currency.add_currency_manager,
                interaction.guild_id or 0, member.id, interaction.user.id,
            )
        except CurrencyError as exc:
            await self._fail(interaction, exc)
            return
        msg = (
            f"✅ {member.mention} is now a currency manager."
            if added else f"ℹ️ {member.mention} is already a currency manager."
        )
        await interaction.response.send_message(msg, ephemeral=True)

    @manager_group.command(name="remove", description="Revoke a member's /grant access.")
    @app_commands.describe(member="The member to demote")
    async def manager_remove(self, interaction: discord.Interaction, member: discord.Member) -> None:
        try:
            removed = await run_db(
                self.bot.currency.remove_currency_manager,
                interaction.guild_id or 0, member.id, interaction.user.id,
            )
        except CurrencyError as exc:
            await self._fail(interaction, exc)
            return
        msg = (
            f"✅ {member.mention} is no longer a currency manager."
            if removed else f"ℹ️ {member.mention} was not a currency manager."
        )
        await interaction.response.send_message(msg, ephemeral=True)

    @manager_group.command(name="list", description="Show this server's currency managers.")
    async def manager_list(self, interaction: discord.Interaction) -> None:
        try:
            managers = await run_db(
                self.bot.currency.get_currency_managers, interaction.guild_id or 0,
            )
        except CurrencyError as exc:
            await self._fail(interaction, exc)
            return
        if not managers:
            await interaction.response.send_message(
                "No currency managers yet. Add one with `/currency-manager add`.",
                ephemeral=True,
            )
            return
        await interaction.response.send_message(
            "**Currency managers:** " + ", ".join(f"<@{uid}>" for uid in managers),
            ephemeral=True,
        )


async def setup(bot: TopiaBot) -> None:
    await bot.add_cog(Admin(bot))
