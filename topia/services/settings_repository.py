"""
topia.services.settings_repository — Per-guild economy configuration
=====================================================================

Reads return detached, immutable snapshots (:class:`GuildSettings`,
:class:`EconomyRules`) so nothing outside this module holds ORM rows.  A guild
without a ``currency_settings`` row gets the defaults.

Every admin mutation follows the same pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSONB
  5. Commit

Database failures surface as :class:`~topia.errors.RepositoryError`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from topia.constants import CURRENCY_DEFAULTS
from topia.database.models import (
    AdminActionType,
    AdminLog,
    ChannelCategory,
    ChannelCategoryType,
    CurrencyExclusion,
    CurrencyManager,
    CurrencyMultiplier,
    CurrencySettings,
    HotTime,
    HotTimeKind,
    RoundingPolicy,
    TargetType,
)
from topia.engine.hot_time import time_to_minutes
from topia.engine.rules import SETTINGS_FIELDS, EconomyRules, GuildSettings, HotTimeWindow
from topia.errors import InvalidSettings, repository_errors

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

_BOOL_FIELDS = {k for k, v in CURRENCY_DEFAULTS.items() if isinstance(v, bool)}
_INT_FIELDS = {
    k for k, v in CURRENCY_DEFAULTS.items() if isinstance(v, int) and not isinstance(v, bool)
}
_PERCENT_FIELDS = {"transfer_fee_topy_percent", "transfer_fee_ruby_percent"}
_NAME_FIELDS = {"topy_name", "ruby_name"}


# ---------------------------------------------------------------------------
# Audit helpers
# ---------------------------------------------------------------------------
def _row_to_dict(obj: Any) -> dict | None:
    """Convert an ORM instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    guild_id: int,
    actor_id: int,
    action_type: AdminActionType,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        guild_id=guild_id,
        actor_id=actor_id,
        action_type=action_type.value,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
    ))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_settings_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """Check a partial settings update and return it with normalized values.

    Raises :class:`InvalidSettings` on unknown keys or out-of-range values.
    """
    unknown = set(changes) - SETTINGS_FIELDS
    if unknown:
        raise InvalidSettings(f"Unknown settings: {', '.join(sorted(unknown))}")

    clean: dict[str, Any] = {}
    for key, value in changes.items():
        if key in _BOOL_FIELDS:
            if not isinstance(value, bool):
                raise InvalidSettings(f"{key} must be a boolean")
        elif key in _INT_FIELDS:
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidSettings(f"{key} must be a non-negative integer")
        elif key in _PERCENT_FIELDS:
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise InvalidSettings(f"{key} must be a number")
            value = float(value)
            if not 0.0 <= value <= 100.0:
                raise InvalidSettings(f"{key} must be between 0 and 100")
        elif key in _NAME_FIELDS:
            if not isinstance(value, str) or not value.strip() or len(value) > 50:
                raise InvalidSettings(f"{key} must be 1-50 characters")
            value = value.strip()
        elif key == "rounding":
            try:
                value = RoundingPolicy(value).value
            except ValueError:
                raise InvalidSettings("rounding must be one of floor, round, ceil") from None
        elif key == "timezone":
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError, TypeError):
                raise InvalidSettings(f"Unknown timezone: {value!r}") from None
        clean[key] = value

    if clean.get("text_max_per_cooldown") == 0:
        raise InvalidSettings("text_max_per_cooldown must be at least 1")
    return clean


def _validate_multiplier(value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float) or value < 0:
        raise InvalidSettings("multiplier must be a non-negative number")
    return float(value)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------
class SettingsRepository:
    """Typed read/write access to the per-guild economy tables."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_settings(self, guild_id: int) -> GuildSettings:
        with repository_errors("get_settings"), Session(self.engine) as session:
            return self._settings_in(session, guild_id)

    def _settings_in(self, session: Session, guild_id: int) -> GuildSettings:
        row = session.get(CurrencySettings, guild_id)
        if row is None:
            logger.debug("No currency settings for guild %d; using defaults", guild_id)
            return GuildSettings.defaults(guild_id)
        return GuildSettings.from_row(row)

    def load_rules(self, guild_id: int) -> EconomyRules:
        """Everything the grant pipeline needs, read in one session."""
        with repository_errors("load_rules"), Session(self.engine) as session:
            settings = self._settings_in(session, guild_id)

            channel_mult: dict[int, float] = {}
            role_mult: dict[int, float] = {}
            for m in session.scalars(
                select(CurrencyMultiplier).where(CurrencyMultiplier.guild_id == guild_id)
            ):
                target = channel_mult if m.target_type == TargetType.CHANNEL else role_mult
                target[m.target_id] = m.multiplier

            categories = {
                c.channel_id: ChannelCategoryType(c.category)
                for c in session.scalars(
                    select(ChannelCategory).where(ChannelCategory.guild_id == guild_id)
                )
            }

            excluded_channels: set[int] = set()
            excluded_roles: set[int] = set()
            for ex in session.scalars(
                select(CurrencyExclusion).where(CurrencyExclusion.guild_id == guild_id)
            ):
                if ex.target_type == TargetType.CHANNEL:
                    excluded_channels.add(ex.target_id)
                else:
                    excluded_roles.add(ex.target_id)

            hot_times = tuple(
                _to_window(h) for h in session.scalars(
                    select(HotTime).where(HotTime.guild_id == guild_id).order_by(HotTime.id)
                )
            )

        return EconomyRules(
            settings=settings,
            channel_multipliers=channel_mult,
            role_multipliers=role_mult,
            channel_categories=categories,
            hot_times=hot_times,
            excluded_channels=frozenset(excluded_channels),
            excluded_roles=frozenset(excluded_roles),
        )

    def list_multipliers(self, guild_id: int) -> list[dict]:
        with repository_errors("list_multipliers"), Session(self.engine) as session:
            rows = session.scalars(
                select(CurrencyMultiplier)
                .where(CurrencyMultiplier.guild_id == guild_id)
                .order_by(CurrencyMultiplier.target_type, CurrencyMultiplier.target_id)
            ).all()
            return [_row_to_dict(r) for r in rows]

    def list_hot_times(self, guild_id: int) -> list[dict]:
        with repository_errors("list_hot_times"), Session(self.engine) as session:
            rows = session.scalars(
                select(HotTime).where(HotTime.guild_id == guild_id).order_by(HotTime.id)
            ).all()
            return [_row_to_dict(r) for r in rows]

    def list_exclusions(self, guild_id: int) -> list[dict]:
        with repository_errors("list_exclusions"), Session(self.engine) as session:
            rows = session.scalars(
                select(CurrencyExclusion)
                .where(CurrencyExclusion.guild_id == guild_id)
                .order_by(CurrencyExclusion.target_type, CurrencyExclusion.target_id)
            ).all()
            return [_row_to_dict(r) for r in rows]

    def list_channel_categories(self, guild_id: int) -> list[dict]:
        with repository_errors("list_channel_categories"), Session(self.engine) as session:
            rows = session.scalars(
                select(ChannelCategory)
                .where(ChannelCategory.guild_id == guild_id)
                .order_by(ChannelCategory.channel_id)
            ).all()
            return [_row_to_dict(r) for r in rows]

    # -------------------------------------------------------------------
    # Settings writes
    # -------------------------------------------------------------------
    def update_settings(
        self, guild_id: int, changes: dict[str, Any], actor_id: int
    ) -> GuildSettings:
        """Apply a validated partial update, creating the row if needed."""
        clean = validate_settings_changes(changes)
        with repository_errors("update_settings"), Session(self.engine) as session:
            row = session.get(CurrencySettings, guild_id)
            if row is None:
                row = CurrencySettings(guild_id=guild_id, **CURRENCY_DEFAULTS)
                session.add(row)
                session.flush()
                before = None
                action = AdminActionType.CREATE
            else:
                before = _row_to_dict(row)
                action = AdminActionType.UPDATE

            for key, value in clean.items():
                setattr(row, key, value)
            session.flush()

            _log_admin_action(
                session,
                guild_id=guild_id,
                actor_id=actor_id,
                action_type=action,
                target_table="currency_settings",
                target_id=str(guild_id),
                before=before,
                after=_row_to_dict(row),
            )
            updated = GuildSettings.from_row(row)
            session.commit()
        logger.info(
            "Currency settings for guild %d updated by %d: %s",
            guild_id, actor_id, sorted(clean),
        )
        return updated

    # -------------------------------------------------------------------
    # Multipliers & channel categories
    # -------------------------------------------------------------------
    def set_multiplier(
        self,
        guild_id: int,
        target_type: TargetType,
        target_id: int,
        multiplier: float,
        actor_id: int,
    ) -> dict:
        """Insert or replace the multiplier for one channel or role."""
        value = _validate_multiplier(multiplier)
        with repository_errors("set_multiplier"), Session(self.engine) as session:
            row = session.scalar(
                select(CurrencyMultiplier).where(
                    CurrencyMultiplier.guild_id == guild_id,
                    CurrencyMultiplier.target_type == target_type.value,
                    CurrencyMultiplier.target_id == target_id,
                )
            )
            before = _row_to_dict(row)
            if row is None:
                row = CurrencyMultiplier(
                    guild_id=guild_id, target_type=target_type.value, target_id=target_id,
                )
                session.add(row)
            row.multiplier = value
            session.flush()
            after = _row_to_dict(row)
            _log_admin_action(
                session,
                guild_id=guild_id,
                actor_id=actor_id,
                action_type=AdminActionType.CREATE if before is None else AdminActionType.UPDATE,
                target_table="currency_multipliers",
                target_id=str(row.id),
                before=before,
                after=after,
            )
            session.commit()
            return after

    def delete_multiplier(self, guild_id: int, multiplier_id: int, actor_id: int) -> bool:
        return self._audited_delete(
            CurrencyMultiplier, guild_id, multiplier_id, actor_id, "currency_multipliers",
        )

    def set_channel_category(
        self,
        guild_id: int,
        channel_id: int,
        category: ChannelCategoryType,
        actor_id: int,
    ) -> dict:
        with repository_errors("set_channel_category"), Session(self.engine) as session:
            row = session.scalar(
                select(ChannelCategory).where(
                    ChannelCategory.guild_id == guild_id,
                    ChannelCategory.channel_id == channel_id,
                )
            )
            before = _row_to_dict(row)
            if row is None:
                row = ChannelCategory(guild_id=guild_id, channel_id=channel_id)
                session.add(row)
            row.category = category.value
            session.flush()
            after = _row_to_dict(row)
            _log_admin_action(
                session,
                guild_id=guild_id,
                actor_id=actor_id,
                action_type=AdminActionType.CREATE if before is None else AdminActionType.UPDATE,
                target_table="channel_categories",
                target_id=str(channel_id),
                before=before,
                after=after,
            )
            session.commit()
            return after

    # -------------------------------------------------------------------
    # Hot times
    # -------------------------------------------------------------------
    def create_hot_time(
        self,
        guild_id: int,
        *,
        kind: HotTimeKind,
        start_time: str,
        end_time: str,
        multiplier: float,
        actor_id: int,
        enabled: bool = True,
        channel_ids: list[int] | None = None,
    ) -> dict:
        for value in (start_time, end_time):
            try:
                time_to_minutes(value)
            except ValueError as exc:
                raise InvalidSettings(str(exc)) from None
        value = _validate_multiplier(multiplier)

        with repository_errors("create_hot_time"), Session(self.engine) as session:
            row = HotTime(
                guild_id=guild_id,
                kind=kind.value,
                start_time=start_time,
                end_time=end_time,
                multiplier=value,
                enabled=enabled,
                channel_ids=[int(c) for c in channel_ids] if channel_ids else None,
            )
            session.add(row)
            session.flush()
            after = _row_to_dict(row)
            _log_admin_action(
                session,
                guild_id=guild_id,
                actor_id=actor_id,
                action_type=AdminActionType.CREATE,
                target_table="currency_hot_times",
                target_id=str(row.id),
                before=None,
                after=after,
            )
            session.commit()
            logger.info(
                "Hot time %s %s-%s x%.2f created for guild %d",
                kind, start_time, end_time, value, guild_id,
            )
            return after

    def delete_hot_time(self, guild_id: int, hot_time_id: int, actor_id: int) -> bool:
        return self._audited_delete(
            HotTime, guild_id, hot_time_id, actor_id, "currency_hot_times",
        )

    # -------------------------------------------------------------------
    # Exclusions
    # -------------------------------------------------------------------
    def add_exclusion(
        self, guild_id: int, target_type: TargetType, target_id: int, actor_id: int
    ) -> bool:
        """Exclude a channel or role from earning.  False if already excluded."""
        with repository_errors("add_exclusion"), Session(self.engine) as session:
            exists = session.scalar(
                select(CurrencyExclusion.id).where(
                    CurrencyExclusion.guild_id == guild_id,
                    CurrencyExclusion.target_type == target_type.value,
                    CurrencyExclusion.target_id == target_id,
                )
            )
            if exists is not None:
                return False
            row = CurrencyExclusion(
                guild_id=guild_id, target_type=target_type.value, target_id=target_id,
            )
            session.add(row)
            session.flush()
            _log_admin_action(
                session,
                guild_id=guild_id,
                actor_id=actor_id,
                action_type=AdminActionType.CREATE,
                target_table="currency_exclusions",
                target_id=str(row.id),
                before=None,
                after=_row_to_dict(row),
            )
            session.commit()
            return True

    def remove_exclusion(
        self, guild_id: int, target_type: TargetType, target_id: int, actor_id: int
    ) -> bool:
        with repository_errors("remove_exclusion"), Session(self.engine) as session:
            row = session.scalar(
                select(CurrencyExclusion).where(
                    CurrencyExclusion.guild_id == guild_id,
                    CurrencyExclusion.target_type == target_type.value,
                    CurrencyExclusion.target_id == target_id,
                )
            )
            if row is None:
                return False
            before = _row_to_dict(row)
            session.delete(row)
            _log_admin_action(
                session,
                guild_id=guild_id,
                actor_id=actor_id,
                action_type=AdminActionType.DELETE,
                target_table="currency_exclusions",
                target_id=str(before["id"]),
                before=before,
                after=None,
            )
            session.commit()
            return True

    # -------------------------------------------------------------------
    # Currency managers
    # -------------------------------------------------------------------
    def list_managers(self, guild_id: int) -> list[int]:
        with repository_errors("list_managers"), Session(self.engine) as session:
            return list(session.scalars(
                select(CurrencyManager.user_id)
                .where(CurrencyManager.guild_id == guild_id)
                .order_by(CurrencyManager.user_id)
            ).all())

    def is_manager(self, session: Session, guild_id: int, user_id: int) -> bool:
        return session.get(CurrencyManager, (guild_id, user_id)) is not None

    def add_manager(self, guild_id: int, user_id: int, actor_id: int) -> bool:
        """False if *user_id* already manages this guild's currency."""
        with repository_errors("add_manager"), Session(self.engine) as session:
            if self.is_manager(session, guild_id, user_id):
                return False
            session.add(CurrencyManager(guild_id=guild_id, user_id=user_id))
            _log_admin_action(
                session,
                guild_id=guild_id,
                actor_id=actor_id,
                action_type=AdminActionType.CREATE,
                target_table="currency_managers",
                target_id=str(user_id),
                before=None,
                after={"guild_id": guild_id, "user_id": user_id},
            )
            session.commit()
            logger.info("User %d is now a currency manager in guild %d", user_id, guild_id)
            return True

    def remove_manager(self, guild_id: int, user_id: int, actor_id: int) -> bool:
        with repository_errors("remove_manager"), Session(self.engine) as session:
            result = session.execute(
                delete(CurrencyManager).where(
                    CurrencyManager.guild_id == guild_id,
                    CurrencyManager.user_id == user_id,
                )
            )
            if result.rowcount == 0:
                return False
            _log_admin_action(
                session,
                guild_id=guild_id,
                actor_id=actor_id,
                action_type=AdminActionType.DELETE,
                target_table="currency_managers",
                target_id=str(user_id),
                before={"guild_id": guild_id, "user_id": user_id},
                after=None,
            )
            session.commit()
            logger.info("User %d is no longer a currency manager in guild %d", user_id, guild_id)
            return True

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _audited_delete(
        self, model_cls: type, guild_id: int, pk: int, actor_id: int, table_name: str
    ) -> bool:
        """Delete a guild-scoped row by primary key.  False if not found."""
        with repository_errors(f"delete {table_name}"), Session(self.engine) as session:
            obj = session.get(model_cls, pk)
            if obj is None or obj.guild_id != guild_id:
                return False
            before = _row_to_dict(obj)
            session.delete(obj)
            _log_admin_action(
                session,
                guild_id=guild_id,
                actor_id=actor_id,
                action_type=AdminActionType.DELETE,
                target_table=table_name,
                target_id=str(pk),
                before=before,
                after=None,
            )
            session.commit()
            return True


def _to_window(row: HotTime) -> HotTimeWindow:
    return HotTimeWindow(
        id=row.id,
        kind=HotTimeKind(row.kind),
        start_time=row.start_time,
        end_time=row.end_time,
        multiplier=row.multiplier,
        enabled=bool(row.enabled),
        channel_ids=frozenset(int(c) for c in row.channel_ids or ()),
    )
