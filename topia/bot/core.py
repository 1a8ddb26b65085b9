"""
topia.bot.core — Bot Instance & Cog Loader
===========================================

Defines :class:`TopiaBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``), DB engine (``bot.engine``), and
   :class:`CurrencyService` (``bot.currency``) so every Cog reaches them via
   ``self.bot.*``.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).
4. Disposes the engine's connection pool on shutdown.
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from topia.config import TopiaConfig
from topia.services.currency_service import CurrencyService

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "topia.bot.cogs.earning",
    "topia.bot.cogs.wallet",
    "topia.bot.cogs.admin",
]


class TopiaBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`TopiaConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    currency:
        Optional pre-built service (tests inject one); built from *engine*
        otherwise.
    """

    def __init__(
        self,
        cfg: TopiaConfig,
        engine: Engine,
        currency: CurrencyService | None = None,
    ) -> None:
        # MESSAGE_CONTENT — message length for text earning (privileged)
        # GUILD_MEMBERS   — join events for wallet initialization (privileged)
        # GUILD_VOICE_STATES is part of default() and feeds the voice sweep.
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} economy bot",
        )

        self.cfg = cfg
        self.engine = engine
        self.currency = currency or CurrencyService(engine)

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions.  One broken Cog doesn't stop the others."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        """Graceful shutdown — close the gateway, then release DB connections."""
        logger.info("Bot shutting down…")
        await super().close()
        self.engine.dispose()
