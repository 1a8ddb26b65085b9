"""
topia.config — YAML Configuration Loader
=========================================

``config.yaml`` holds **infrastructure-only** settings (Discord identity,
primary guild, dashboard port).  All economy tuning (earn rates, cooldowns,
caps, fees, multipliers) lives in the per-guild ``currency_settings`` table,
editable from the dashboard.

Usage::

    from topia.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Topia"
    print(cfg.guild_id)          # 1468816181854081229
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

DEFAULT_VOICE_SWEEP_SECONDS = 60


@dataclass(frozen=True, slots=True)
class TopiaConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int  # Primary guild snowflake (for seeding & scoping)

    # Dashboard
    dashboard_port: int

    # Optional
    currency_log_channel_id: int | None = None  # Where manual grants are announced
    voice_sweep_seconds: int = DEFAULT_VOICE_SWEEP_SECONDS


def load_config(path: str | Path = "config.yaml") -> TopiaConfig:
    """Read *path* and return a :class:`TopiaConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return TopiaConfig(
        community_name=raw["community_name"],
        bot_prefix=raw["bot_prefix"],
        guild_id=int(raw["guild_id"]),
        dashboard_port=int(raw["dashboard_port"]),
        currency_log_channel_id=(
            int(raw["currency_log_channel_id"]) if raw.get("currency_log_channel_id") else None
        ),
        voice_sweep_seconds=int(raw.get("voice_sweep_seconds") or DEFAULT_VOICE_SWEEP_SECONDS),
    )
