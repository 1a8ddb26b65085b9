"""
topia.engine.reward — Grant Amount Pipeline
============================================

Pure calculation pipeline.  No Discord I/O, no DB I/O inside the engine.

Pipeline stages:
  random base → target multiplier (role / channel / category) → hot time
  → rounding policy → GrantAmount

Clamping to the daily cap happens in the service, against counters read
under the wallet lock.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime

from topia.constants import CHANNEL_CATEGORY_MULTIPLIERS
from topia.database.models import ChannelCategoryType, CurrencyType, RoundingPolicy
from topia.engine.events import GRANT_HOT_TIME_KIND, GrantKind
from topia.engine.hot_time import check_hot_time
from topia.engine.rules import EconomyRules, GuildSettings

logger = logging.getLogger(__name__)

_ROUNDERS = {
    RoundingPolicy.FLOOR: math.floor,
    RoundingPolicy.ROUND: lambda value: math.floor(value + 0.5),
    RoundingPolicy.CEIL: math.ceil,
}


def generate_random_amount(minimum: int, maximum: int, rng: random.Random) -> int:
    """Uniform integer in ``[minimum, maximum]``; reversed bounds are swapped."""
    if minimum > maximum:
        minimum, maximum = maximum, minimum
    return rng.randint(minimum, maximum)


def apply_rounding(value: float, policy: RoundingPolicy) -> int:
    """Round half up for ``ROUND`` rather than Python's banker's rounding."""
    return int(_ROUNDERS[policy](value))


def apply_multiplier(amount: int, multiplier: float, policy: RoundingPolicy) -> int:
    if multiplier == 1.0:
        return amount
    return apply_rounding(amount * multiplier, policy)


def resolve_target_multiplier(
    rules: EconomyRules, channel_id: int, role_ids: tuple[int, ...]
) -> float:
    """Highest matching role multiplier, else the channel's explicit multiplier,
    else its category default (``normal`` when untagged).
    """
    role_values = [rules.role_multipliers[r] for r in role_ids if r in rules.role_multipliers]
    if role_values:
        return max(role_values)
    if channel_id in rules.channel_multipliers:
        return rules.channel_multipliers[channel_id]
    category = rules.channel_categories.get(channel_id, ChannelCategoryType.NORMAL)
    return CHANNEL_CATEGORY_MULTIPLIERS[category]


# ---------------------------------------------------------------------------
# GrantAmount — output of the pipeline
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GrantAmount:
    base: int
    multiplier: float
    amount: int
    hot_time_id: int | None = None


def calculate_grant_amount(
    rules: EconomyRules,
    kind: GrantKind,
    channel_id: int,
    role_ids: tuple[int, ...],
    now: datetime,
    rng: random.Random,
) -> GrantAmount:
    """Run the pipeline for one text or voice grant at *now* (UTC)."""
    settings = rules.settings
    if kind is GrantKind.TEXT:
        base = generate_random_amount(settings.text_earn_min, settings.text_earn_max, rng)
    else:
        base = generate_random_amount(settings.voice_earn_min, settings.voice_earn_max, rng)

    multiplier = resolve_target_multiplier(rules, channel_id, role_ids)
    local_now = now.astimezone(settings.tz).time()
    hot = check_hot_time(rules.hot_times, local_now, channel_id, GRANT_HOT_TIME_KIND[kind])
    if hot.active:
        multiplier *= hot.multiplier

    amount = apply_multiplier(base, multiplier, settings.rounding)
    logger.debug(
        "Grant calc %s channel=%d base=%d x%.2f → %d (hot_time=%s)",
        kind, channel_id, base, multiplier, amount, hot.hot_time_id,
    )
    return GrantAmount(
        base=base, multiplier=multiplier, amount=amount, hot_time_id=hot.hot_time_id,
    )


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------
def fee_percent(settings: GuildSettings, currency: CurrencyType) -> float:
    return {
        CurrencyType.TOPY: settings.transfer_fee_topy_percent,
        CurrencyType.RUBY: settings.transfer_fee_ruby_percent,
    }[currency]


def min_transfer(settings: GuildSettings, currency: CurrencyType) -> int:
    return {
        CurrencyType.TOPY: settings.min_transfer_topy,
        CurrencyType.RUBY: settings.min_transfer_ruby,
    }[currency]


def calculate_transfer_fee(amount: int, percent: float) -> int:
    """Fee in integer per-mille arithmetic: 1.2 % of 1000 → 12."""
    per_mille = round(percent * 10)
    if per_mille <= 0:
        return 0
    return amount * per_mille // 1000
