"""
topia.bot.cogs.earning — Message & Voice Currency Earning
==========================================================

Turns Discord activity into grant attempts:

1. ``on_message`` → ``grant_text_currency`` with the message length.
2. A voice sweep every ``voice_sweep_seconds`` (default 60) →
   ``grant_voice_currency`` for every connected member who is not a bot and
   not both self-muted and self-deafened.
3. ``on_member_join`` → both wallets are created up front.

Grants run on a worker thread via ``run_db``.  Not-eligible outcomes are
silent; database failures are logged and the event is dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

from topia.database.engine import run_db
from topia.errors import RepositoryError

if TYPE_CHECKING:
    from topia.bot.core import TopiaBot

logger = logging.getLogger(__name__)


def member_role_ids(member: discord.Member) -> tuple[int, ...]:
    return tuple(role.id for role in getattr(member, "roles", None) or ())


def is_voice_earner(member: discord.Member) -> bool:
    """Connected humans earn unless they are both self-muted and self-deafened."""
    if member.bot:
        return False
    voice = member.voice
    if voice is None:
        return False
    return not (voice.self_mute and voice.self_deaf)


def iter_voice_earners(guild: discord.Guild) -> Iterator[tuple[discord.Member, int]]:
    """Yield ``(member, channel_id)`` for everyone due a voice grant."""
    for vc in guild.voice_channels:
        for member in vc.members:
            if is_voice_earner(member):
                yield member, vc.id


class Earning(commands.Cog, name="Earning"):
    """Awards topy for chatting and for time spent in voice."""

    def __init__(self, bot: TopiaBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.voice_sweep.change_interval(seconds=self.bot.cfg.voice_sweep_seconds)
        self.voice_sweep.start()

    async def cog_unload(self) -> None:
        self.voice_sweep.cancel()

    # -------------------------------------------------------------------
    # Text
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        try:
            await self._handle_message(message)
        except RepositoryError:
            logger.exception(
                "Text grant failed for message %s from user %s",
                message.id, message.author.id,
            )

    async def _handle_message(self, message: discord.Message) -> None:
        result = await run_db(
            self.bot.currency.grant_text_currency,
            message.guild.id,
            message.author.id,
            message.channel.id,
            member_role_ids(message.author),
            len(message.content),
        )
        if result.granted:
            logger.debug(
                "Message %s earned %d topy for %s",
                message.id, result.amount, message.author.id,
            )

    # -------------------------------------------------------------------
    # Voice
    # -------------------------------------------------------------------
    @tasks.loop(seconds=60)
    async def voice_sweep(self) -> None:
        """Periodic sweep that grants voice currency to connected members."""
        for guild in self.bot.guilds:
            granted = 0
            for member, channel_id in iter_voice_earners(guild):
                try:
                    result = await run_db(
                        self.bot.currency.grant_voice_currency,
                        guild.id,
                        member.id,
                        channel_id,
                        member_role_ids(member),
                    )
                except RepositoryError:
                    logger.exception(
                        "Voice grant failed for user %s in guild %s", member.id, guild.id,
                    )
                    continue
                if result.granted:
                    granted += 1
            if granted:
                logger.debug("Voice sweep: %d grants in guild %s", granted, guild.id)

    @voice_sweep.before_loop
    async def before_voice_sweep(self) -> None:
        """Wait until the bot is ready before sweeping voice channels."""
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        if member.bot:
            return
        try:
            await run_db(self.bot.currency.initialize_wallets, member.guild.id, member.id)
        except RepositoryError:
            logger.exception(
                "Wallet initialization failed for user %s in guild %s",
                member.id, member.guild.id,
            )


async def setup(bot: TopiaBot) -> None:
    await bot.add_cog(Earning(bot))
