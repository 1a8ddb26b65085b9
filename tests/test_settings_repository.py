"""
tests/test_settings_repository.py — Settings, Rules & Audit Trail
==================================================================

Validates partial settings updates, the rule snapshot used by the grant
pipeline, and that every admin mutation leaves an admin_log row.
"""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from topia.database.models import (
    AdminLog,
    ChannelCategoryType,
    HotTimeKind,
    RoundingPolicy,
    TargetType,
)
from topia.errors import InvalidSettings
from topia.services.settings_repository import SettingsRepository, validate_settings_changes

GUILD = 100
ACTOR = 1


@pytest.fixture
def repo(db_engine):
    return SettingsRepository(db_engine)


def _audit(engine) -> list[AdminLog]:
    with Session(engine) as session:
        return list(session.scalars(select(AdminLog).order_by(AdminLog.id)).all())


class TestValidation:
    def test_accepts_and_normalizes(self):
        clean = validate_settings_changes({
            "topy_name": "  코인 ",
            "transfer_fee_topy_percent": 2,
            "rounding": "round",
            "timezone": "Asia/Seoul",
        })
        assert clean["topy_name"] == "코인"
        assert clean["transfer_fee_topy_percent"] == 2.0
        assert clean["rounding"] == "round"

    @pytest.mark.parametrize("changes", [
        {"unknown_key": 1},
        {"guild_id": 5},
        {"enabled": "yes"},
        {"text_daily_limit": -1},
        {"text_daily_limit": True},
        {"transfer_fee_topy_percent": 101},
        {"rounding": "bankers"},
        {"timezone": "Not/AZone"},
        {"ruby_name": ""},
        {"ruby_name": "x" * 51},
        {"text_max_per_cooldown": 0},
    ])
    def test_rejects(self, changes):
        with pytest.raises(InvalidSettings):
            validate_settings_changes(changes)


class TestSettings:
    def test_defaults_without_row(self, repo):
        settings = repo.get_settings(GUILD)
        assert settings.is_default
        assert settings.text_min_length == 15
        assert settings.rounding is RoundingPolicy.FLOOR

    def test_first_update_creates_row(self, repo, db_engine):
        updated = repo.update_settings(GUILD, {"text_daily_limit": 50}, ACTOR)
        assert not updated.is_default
        assert updated.text_daily_limit == 50
        assert updated.voice_daily_limit == 2000

        (entry,) = _audit(db_engine)
        assert entry.action_type == "CREATE"
        assert entry.before_snapshot is None
        assert entry.after_snapshot["text_daily_limit"] == 50

    def test_second_update_records_before(self, repo, db_engine):
        repo.update_settings(GUILD, {"text_daily_limit": 50}, ACTOR)
        repo.update_settings(GUILD, {"text_daily_limit": 60}, ACTOR)

        entry = _audit(db_engine)[-1]
        assert entry.action_type == "UPDATE"
        assert entry.before_snapshot["text_daily_limit"] == 50
        assert entry.after_snapshot["text_daily_limit"] == 60
        assert repo.get_settings(GUILD).text_daily_limit == 60

    def test_rejected_update_writes_nothing(self, repo, db_engine):
        with pytest.raises(InvalidSettings):
            repo.update_settings(GUILD, {"rounding": "sideways"}, ACTOR)
        assert repo.get_settings(GUILD).is_default
        assert _audit(db_engine) == []


class TestRules:
    def test_load_rules_collects_everything(self, repo):
        repo.set_multiplier(GUILD, TargetType.CHANNEL, 10, 1.5, ACTOR)
        repo.set_multiplier(GUILD, TargetType.ROLE, 20, 2.0, ACTOR)
        repo.set_channel_category(GUILD, 30, ChannelCategoryType.AFK, ACTOR)
        repo.add_exclusion(GUILD, TargetType.CHANNEL, 40, ACTOR)
        repo.add_exclusion(GUILD, TargetType.ROLE, 50, ACTOR)
        repo.create_hot_time(
            GUILD, kind=HotTimeKind.VOICE, start_time="22:00", end_time="02:00",
            multiplier=2.0, actor_id=ACTOR, channel_ids=[60],
        )
        repo.set_multiplier(GUILD + 1, TargetType.CHANNEL, 99, 5.0, ACTOR)

        rules = repo.load_rules(GUILD)
        assert rules.channel_multipliers == {10: 1.5}
        assert rules.role_multipliers == {20: 2.0}
        assert rules.channel_categories == {30: ChannelCategoryType.AFK}
        assert rules.excluded_channels == frozenset({40})
        assert rules.excluded_roles == frozenset({50})
        (window,) = rules.hot_times
        assert window.kind is HotTimeKind.VOICE
        assert window.channel_ids == frozenset({60})

    def test_set_multiplier_upserts(self, repo, db_engine):
        first = repo.set_multiplier(GUILD, TargetType.ROLE, 20, 2.0, ACTOR)
        second = repo.set_multiplier(GUILD, TargetType.ROLE, 20, 3.0, ACTOR)
        assert first["id"] == second["id"]
        assert repo.load_rules(GUILD).role_multipliers == {20: 3.0}
        assert [e.action_type for e in _audit(db_engine)] == ["CREATE", "UPDATE"]

    def test_negative_multiplier_rejected(self, repo):
        with pytest.raises(InvalidSettings):
            repo.set_multiplier(GUILD, TargetType.ROLE, 20, -0.5, ACTOR)

    def test_delete_is_guild_scoped(self, repo, db_engine):
        row = repo.set_multiplier(GUILD, TargetType.ROLE, 20, 2.0, ACTOR)
        assert not repo.delete_multiplier(GUILD + 1, row["id"], ACTOR)
        assert repo.delete_multiplier(GUILD, row["id"], ACTOR)
        assert repo.list_multipliers(GUILD) == []
        assert _audit(db_engine)[-1].action_type == "DELETE"

    def test_exclusions_toggle(self, repo):
        assert repo.add_exclusion(GUILD, TargetType.ROLE, 50, ACTOR)
        assert not repo.add_exclusion(GUILD, TargetType.ROLE, 50, ACTOR)
        assert len(repo.list_exclusions(GUILD)) == 1
        assert repo.remove_exclusion(GUILD, TargetType.ROLE, 50, ACTOR)
        assert not repo.remove_exclusion(GUILD, TargetType.ROLE, 50, ACTOR)

    def test_hot_time_validation(self, repo):
        with pytest.raises(InvalidSettings):
            repo.create_hot_time(
                GUILD, kind=HotTimeKind.ALL, start_time="7pm", end_time="22:00",
                multiplier=2.0, actor_id=ACTOR,
            )
        assert repo.list_hot_times(GUILD) == []

    def test_hot_time_delete(self, repo):
        row = repo.create_hot_time(
            GUILD, kind=HotTimeKind.ALL, start_time="19:00", end_time="22:00",
            multiplier=2.0, actor_id=ACTOR,
        )
        assert repo.delete_hot_time(GUILD, row["id"], ACTOR)
        assert repo.load_rules(GUILD).hot_times == ()
