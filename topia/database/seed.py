"""
topia.database.seed — Default Guild Settings Seeder
====================================================

Inserts a ``currency_settings`` row for the primary guild on first startup
so the dashboard is immediately editable.

Idempotent — an existing row is never touched.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine

from topia.constants import CURRENCY_DEFAULTS
from topia.database.engine import get_session
from topia.database.models import CurrencySettings

logger = logging.getLogger(__name__)


def seed_guild_settings(engine: Engine, guild_id: int) -> bool:
    """Insert default settings for *guild_id* if no row exists.

    Returns True when a row was inserted.
    """
    with get_session(engine) as session:
        if session.get(CurrencySettings, guild_id) is not None:
            return False
        session.add(CurrencySettings(guild_id=guild_id, **CURRENCY_DEFAULTS))

    logger.info("Seeded default currency settings for guild %d.", guild_id)
    return True
