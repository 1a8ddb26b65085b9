"""
topia.database.engine — Database Connection & Async Helper
===========================================================

Discord bots run on an ``asyncio`` event loop while SQLAlchemy + psycopg2 is
synchronous.  Every DB call made from a cog is shipped to a worker thread
with :func:`run_db` so the event loop never blocks:

    1. An event fires in Discord (async world).
    2. The cog calls ``await run_db(service.grant_text_currency, ...)``.
    3. ``run_db`` runs the synchronous call through ``asyncio.to_thread()``.
    4. The result is awaited back in the cog.

Usage::

    from topia.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine, primary_guild_id)    # CREATE TABLE IF NOT EXISTS …

    result = await run_db(service.grant_voice_currency, guild_id, user_id, ...)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from topia.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine`.

    *url* defaults to the ``DATABASE_URL`` env var.  The pool is sized for a
    single community bot plus the dashboard API:

    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine, guild_id: int | None = None) -> None:
    """Create all tables defined in :mod:`topia.database.models`.

    Safe to call on every startup (``CREATE TABLE IF NOT EXISTS``).  When
    *guild_id* is given, the guild's settings row is seeded with defaults so
    the dashboard has something to edit.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    if guild_id:
        from topia.database.seed import seed_guild_settings

        seed_guild_settings(engine, guild_id)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that commits on success and rolls back on
    exception.

    Usage::

        with get_session(engine) as session:
            session.add(CurrencyManager(guild_id=1, user_id=2))
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every DB call in a cog should go through this wrapper::

        result = await run_db(service.get_wallets, guild_id, user_id)

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor``.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
