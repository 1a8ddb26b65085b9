"""
tests/test_bootstrap.py — Config Loading & First-Run Seeding
==============================================================

Tests ``load_config`` against temporary YAML files and the idempotent
``init_db`` / ``seed_guild_settings`` startup path.

All tests use temporary files or an in-memory SQLite database; no Discord
connection or PostgreSQL required.
"""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from topia.config import DEFAULT_VOICE_SWEEP_SECONDS, load_config
from topia.database.engine import create_db_engine, init_db
from topia.database.models import CurrencySettings
from topia.database.seed import seed_guild_settings
from topia.services.settings_repository import SettingsRepository

GUILD_ID = 111222333

BASE_YAML = """\
community_name: Topia
bot_prefix: "!"
guild_id: 111222333
dashboard_port: 8000
"""


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
class TestLoadConfig:
    def test_required_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(BASE_YAML, encoding="utf-8")

        cfg = load_config(path)
        assert cfg.community_name == "Topia"
        assert cfg.guild_id == GUILD_ID
        assert cfg.currency_log_channel_id is None
        assert cfg.voice_sweep_seconds == DEFAULT_VOICE_SWEEP_SECONDS

    def test_optional_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            BASE_YAML + "currency_log_channel_id: '42'\nvoice_sweep_seconds: 30\n",
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg.currency_log_channel_id == 42
        assert cfg.voice_sweep_seconds == 30

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("community_name: Topia\n", encoding="utf-8")
        with pytest.raises(KeyError):
            load_config(path)


# ---------------------------------------------------------------------------
# Engine & seeding
# ---------------------------------------------------------------------------
@pytest.fixture
def bare_engine():
    """In-memory SQLite with no tables yet."""
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


class TestInitDb:
    def test_create_engine_requires_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError):
            create_db_engine()

    def test_init_db_seeds_primary_guild(self, bare_engine):
        init_db(bare_engine, GUILD_ID)
        settings = SettingsRepository(bare_engine).get_settings(GUILD_ID)
        assert not settings.is_default
        assert settings.text_daily_limit == 300

    def test_init_db_is_idempotent(self, bare_engine):
        init_db(bare_engine, GUILD_ID)
        init_db(bare_engine, GUILD_ID)
        with Session(bare_engine) as session:
            assert session.scalar(select(func.count()).select_from(CurrencySettings)) == 1

    def test_seed_never_overwrites(self, db_engine):
        repo = SettingsRepository(db_engine)
        repo.update_settings(GUILD_ID, {"attendance_reward": 25}, actor_id=1)

        assert seed_guild_settings(db_engine, GUILD_ID) is False
        assert repo.get_settings(GUILD_ID).attendance_reward == 25

    def test_seed_inserts_once(self, db_engine):
        assert seed_guild_settings(db_engine, GUILD_ID) is True
        assert seed_guild_settings(db_engine, GUILD_ID) is False
