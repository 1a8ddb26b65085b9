"""
Topia — Community Economy Platform for Discord
===============================================
A Discord bot and dashboard API sharing one currency economy: members earn
**topy** by chatting and sitting in voice, check in daily for attendance
rewards, and trade both topy and the premium **ruby** with each other.
Guild administrators tune every rate, cap, and multiplier from the dashboard.

Package layout::

    topia/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Economy defaults + display helpers
    ├── errors.py          # Currency error taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models (10 tables)
    │   └── seed.py        # Default settings seeder
    ├── engine/
    │   ├── events.py      # GrantRequest + grant enums
    │   ├── rules.py       # Immutable settings / rules snapshots
    │   ├── limits.py      # Cooldown windows + daily caps
    │   ├── hot_time.py    # Boosted reward windows
    │   └── reward.py      # Grant amount + transfer fee calculation
    ├── services/
    │   ├── wallet_repository.py    # Wallet + ledger rows, wallet locks
    │   ├── settings_repository.py  # Per-guild config, audit-logged writes
    │   └── currency_service.py     # Grants, transfers, attendance
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/
    │       ├── earning.py # on_message + voice sweep → grants
    │       ├── wallet.py  # /wallet, /leaderboard, /transfer, /attendance
    │       └── admin.py   # /grant, /currency-manager
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine, service, JWT admin guard
        └── routes/        # Public + admin REST endpoints
"""

__version__ = "0.1.0"
