"""
topia.api.routes.currency — Guild currency endpoints
=====================================================

Reads (wallets, leaderboard, settings) are public; everything that exposes
the ledger or changes configuration requires an admin JWT.  Snowflake ids
are serialized as strings.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from topia.api.deps import AdminActor, get_currency_service, get_current_admin
from topia.database.models import (
    ChannelCategoryType,
    CurrencyType,
    HotTimeKind,
    TargetType,
    TransactionType,
)
from topia.engine.rules import GuildSettings
from topia.services.currency_service import (
    CurrencyService,
    LeaderboardEntry,
    TransactionView,
    WalletView,
)

router = APIRouter(prefix="/guilds/{guild_id}/currency", tags=["currency"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class SettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool | None = None
    topy_name: str | None = None
    ruby_name: str | None = None
    text_earn_enabled: bool | None = None
    text_earn_min: int | None = None
    text_earn_max: int | None = None
    text_min_length: int | None = None
    text_cooldown_seconds: int | None = None
    text_max_per_cooldown: int | None = None
    text_daily_limit: int | None = None
    voice_earn_enabled: bool | None = None
    voice_earn_min: int | None = None
    voice_earn_max: int | None = None
    voice_cooldown_seconds: int | None = None
    voice_daily_limit: int | None = None
    min_transfer_topy: int | None = None
    min_transfer_ruby: int | None = None
    transfer_fee_topy_percent: float | None = None
    transfer_fee_ruby_percent: float | None = None
    rounding: str | None = None
    timezone: str | None = None
    attendance_reward: int | None = None


class MultiplierCreate(BaseModel):
    target_type: TargetType
    target_id: int
    multiplier: float = Field(ge=0)


class HotTimeCreate(BaseModel):
    kind: HotTimeKind = HotTimeKind.ALL
    start_time: str
    end_time: str
    multiplier: float = Field(default=1.5, ge=0)
    enabled: bool = True
    channel_ids: list[int] = Field(default_factory=list)


class ExclusionCreate(BaseModel):
    target_type: TargetType
    target_id: int


class ChannelCategorySet(BaseModel):
    channel_id: int
    category: ChannelCategoryType


class ManagerCreate(BaseModel):
    user_id: int


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def _wallet_dict(view: WalletView | None, user_id: int, currency: CurrencyType) -> dict:
    if view is None:
        return {
            "user_id": str(user_id),
            "currency_type": currency.value,
            "balance": 0,
            "total_earned": 0,
            "daily_earned": 0,
            "exists": False,
        }
    return {
        "user_id": str(view.user_id),
        "currency_type": view.currency_type.value,
        "balance": view.balance,
        "total_earned": view.total_earned,
        "daily_earned": view.daily_earned,
        "exists": True,
    }


def _entry_dict(entry: LeaderboardEntry) -> dict:
    return {
        "rank": entry.rank,
        "user_id": str(entry.user_id),
        "balance": entry.balance,
        "total_earned": entry.total_earned,
    }


def _tx_dict(tx: TransactionView) -> dict:
    return {
        "id": tx.id,
        "user_id": str(tx.user_id),
        "currency_type": tx.currency_type.value,
        "transaction_type": tx.transaction_type.value,
        "amount": tx.amount,
        "balance_after": tx.balance_after,
        "fee": tx.fee,
        "related_user_id": str(tx.related_user_id) if tx.related_user_id else None,
        "description": tx.description,
        "created_at": tx.created_at.isoformat() if tx.created_at else None,
    }


def _settings_dict(settings: GuildSettings) -> dict:
    data = settings.to_dict()
    data["guild_id"] = str(settings.guild_id)
    return data


def _stringify(row: dict, *keys: str) -> dict:
    """Snowflake columns → strings (JS numbers lose precision past 2**53)."""
    out = dict(row)
    for key in keys:
        if out.get(key) is not None:
            out[key] = str(out[key])
    return out


# ---------------------------------------------------------------------------
# Wallets & leaderboard (public)
# ---------------------------------------------------------------------------
@router.get("/wallets/{user_id}")
def get_wallets(
    guild_id: int,
    user_id: int,
    service: CurrencyService = Depends(get_currency_service),
):
    wallets = service.get_wallets(guild_id, user_id)
    return {
        "guild_id": str(guild_id),
        "wallets": {
            currency.value: _wallet_dict(wallets[currency], user_id, currency)
            for currency in CurrencyType
        },
    }


@router.get("/leaderboard")
def get_leaderboard(
    guild_id: int,
    currency: CurrencyType = CurrencyType.TOPY,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    service: CurrencyService = Depends(get_currency_service),
):
    entries = service.get_leaderboard(
        guild_id, currency, limit=page_size, offset=(page - 1) * page_size,
    )
    return {
        "currency": currency.value,
        "page": page,
        "page_size": page_size,
        "entries": [_entry_dict(e) for e in entries],
    }


# ---------------------------------------------------------------------------
# Transactions (admin)
# ---------------------------------------------------------------------------
@router.get("/transactions")
def get_transactions(
    guild_id: int,
    user_id: int | None = None,
    currency_type: CurrencyType | None = None,
    type: TransactionType | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(get_current_admin),
    service: CurrencyService = Depends(get_currency_service),
):
    rows = service.get_transactions(
        guild_id,
        user_id=user_id,
        currency_type=currency_type,
        transaction_type=type,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return {"page": page, "limit": limit, "transactions": [_tx_dict(t) for t in rows]}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings")
def get_settings(
    guild_id: int,
    service: CurrencyService = Depends(get_currency_service),
):
    return _settings_dict(service.get_settings(guild_id))


@router.patch("/settings")
def update_settings(
    guild_id: int,
    body: SettingsUpdate,
    actor_id: AdminActor,
    service: CurrencyService = Depends(get_currency_service),
):
    changes: dict[str, Any] = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(400, "No settings to update")
    settings = service.update_settings(guild_id, changes, actor_id)
    return _settings_dict(settings)


# ---------------------------------------------------------------------------
# Multipliers (admin)
# ---------------------------------------------------------------------------
@router.get("/multipliers")
def list_multipliers(
    guild_id: int,
    admin: dict = Depends(get_current_admin),
    service: CurrencyService = Depends(get_currency_service),
):
    rows = service.settings_repo.list_multipliers(guild_id)
    return {"multipliers": [_stringify(r, "guild_id", "target_id") for r in rows]}


@router.post("/multipliers", status_code=201)
def create_multiplier(
    guild_id: int,
    body: MultiplierCreate,
    actor_id: AdminActor,
    service: CurrencyService = Depends(get_currency_service),
):
    row = service.settings_repo.set_multiplier(
        guild_id, body.target_type, body.target_id, body.multiplier, actor_id,
    )
    return _stringify(row, "guild_id", "target_id")


@router.delete("/multipliers/{multiplier_id}")
def delete_multiplier(
    guild_id: int,
    multiplier_id: int,
    actor_id: AdminActor,
    service: CurrencyService = Depends(get_currency_service),
):
    if not service.settings_repo.delete_multiplier(guild_id, multiplier_id, actor_id):
        raise HTTPException(404, "Multiplier not found")
    return {"deleted": multiplier_id}


# ---------------------------------------------------------------------------
# Hot times (admin)
# ---------------------------------------------------------------------------
@router.get("/hot-times")
def list_hot_times(
    guild_id: int,
    admin: dict = Depends(get_current_admin),
    service: CurrencyService = Depends(get_currency_service),
):
    rows = service.settings_repo.list_hot_times(guild_id)
    return {"hot_times": [_stringify(r, "guild_id") for r in rows]}


@router.post("/hot-times", status_code=201)
def create_hot_time(
    guild_id: int,
    body: HotTimeCreate,
    actor_id: AdminActor,
    service: CurrencyService = Depends(get_currency_service),
):
    row = service.settings_repo.create_hot_time(
        guild_id,
        kind=body.kind,
        start_time=body.start_time,
        end_time=body.end_time,
        multiplier=body.multiplier,
        enabled=body.enabled,
        channel_ids=body.channel_ids,
        actor_id=actor_id,
    )
    return _stringify(row, "guild_id")


@router.delete("/hot-times/{hot_time_id}")
def delete_hot_time(
    guild_id: int,
    hot_time_id: int,
    actor_id: AdminActor,
    service: CurrencyService = Depends(get_currency_service),
):
    if not service.settings_repo.delete_hot_time(guild_id, hot_time_id, actor_id):
        raise HTTPException(404, "Hot time not found")
    return {"deleted": hot_time_id}


# ---------------------------------------------------------------------------
# Earning exclusions (admin)
# ---------------------------------------------------------------------------
@router.get("/exclusions")
def list_exclusions(
    guild_id: int,
    admin: dict = Depends(get_current_admin),
    service: CurrencyService = Depends(get_currency_service),
):
    rows = service.settings_repo.list_exclusions(guild_id)
    return {"exclusions": [_stringify(r, "guild_id", "target_id") for r in rows]}


@router.post("/exclusions", status_code=201)
def add_exclusion(
    guild_id: int,
    body: ExclusionCreate,
    actor_id: AdminActor,
    service: CurrencyService = Depends(get_currency_service),
):
    added = service.settings_repo.add_exclusion(
        guild_id, body.target_type, body.target_id, actor_id,
    )
    if not added:
        raise HTTPException(409, "Already excluded")
    return {"target_type": body.target_type.value, "target_id": str(body.target_id)}


@router.delete("/exclusions/{target_type}/{target_id}")
def remove_exclusion(
    guild_id: int,
    target_type: TargetType,
    target_id: int,
    actor_id: AdminActor,
    service: CurrencyService = Depends(get_currency_service),
):
    if not service.settings_repo.remove_exclusion(guild_id, target_type, target_id, actor_id):
        raise HTTPException(404, "Exclusion not found")
    return {"deleted": {"target_type": target_type.value, "target_id": str(target_id)}}


# ---------------------------------------------------------------------------
# Channel categories (admin)
# ---------------------------------------------------------------------------
@router.get("/channel-categories")
def list_channel_categories(
    guild_id: int,
    admin: dict = Depends(get_current_admin),
    service: CurrencyService = Depends(get_currency_service),
):
    rows = service.settings_repo.list_channel_categories(guild_id)
    return {"channel_categories": [_stringify(r, "guild_id", "channel_id") for r in rows]}


@router.put("/channel-categories")
def set_channel_category(
    guild_id: int,
    body: ChannelCategorySet,
    actor_id: AdminActor,
    service: CurrencyService = Depends(get_currency_service),
):
    row = service.settings_repo.set_channel_category(
        guild_id, body.channel_id, body.category, actor_id,
    )
    return _stringify(row, "guild_id", "channel_id")


# ---------------------------------------------------------------------------
# Currency managers (admin)
# ---------------------------------------------------------------------------
@router.get("/managers")
def list_managers(
    guild_id: int,
    admin: dict = Depends(get_current_admin),
    service: CurrencyService = Depends(get_currency_service),
):
    return {"managers": [str(uid) for uid in service.get_currency_managers(guild_id)]}


@router.post("/managers", status_code=201)
def add_manager(
    guild_id: int,
    body: ManagerCreate,
    actor_id: AdminActor,
    service: CurrencyService = Depends(get_currency_service),
):
    added = service.add_currency_manager(guild_id, body.user_id, actor_id)
    if not added:
        raise HTTPException(409, "Already a currency manager")
    return {"user_id": str(body.user_id)}


@router.delete("/managers/{user_id}")
def remove_manager(
    guild_id: int,
    user_id: int,
    actor_id: AdminActor,
    service: CurrencyService = Depends(get_currency_service),
):
    if not service.remove_currency_manager(guild_id, user_id, actor_id):
        raise HTTPException(404, "Not a currency manager")
    return {"deleted": str(user_id)}
