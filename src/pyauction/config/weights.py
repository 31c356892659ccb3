"""Tunable constants for the valuation and prediction models.

None of these numbers are business rules; they are the knobs that were
calibrated against past auctions and can be overridden per deployment,
either through a JSON profile (see ``pyauction.config_loader``) or through
``PYAUCTION_*`` environment variables for the runtime limits.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping, Tuple


logger = logging.getLogger(__name__)

_LOCK_TIMEOUT_ENV = "PYAUCTION_LOCK_TIMEOUT"
_COMMIT_RETRIES_ENV = "PYAUCTION_COMMIT_RETRIES"

_LOCK_TIMEOUT_DEFAULT = 5.0
_COMMIT_RETRIES_DEFAULT = 3

# Participation probabilities never exceed this, whatever a profile sets.
PROBABILITY_CEILING = 0.95


def _env_float(name: str, default: float, *, clamp_min: float | None = None, clamp_max: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid float for %s: %s; using default %.2f", name, raw, default)
        return default
    if clamp_min is not None:
        value = max(clamp_min, value)
    if clamp_max is not None:
        value = min(clamp_max, value)
    return value


def _env_int(name: str, default: int, *, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid int for %s: %s; using default %d", name, raw, default)
        return default
    if min_value is not None:
        value = max(min_value, value)
    return value


def lock_timeout_seconds() -> float:
    return _env_float(_LOCK_TIMEOUT_ENV, _LOCK_TIMEOUT_DEFAULT, clamp_min=0.0, clamp_max=60.0)


def commit_retries() -> int:
    return _env_int(_COMMIT_RETRIES_ENV, _COMMIT_RETRIES_DEFAULT, min_value=1)


@dataclass(frozen=True)
class ValuationWeights:
    batting_runs_scale: float = 4000.0
    batting_runs_weight: float = 70.0
    batting_average_weight: float = 1.1
    batting_min_runs: float = 50.0
    bowling_wickets_scale: float = 180.0
    bowling_wickets_weight: float = 80.0
    bowling_economy_pivot: float = 7.5
    bowling_economy_weight: float = 3.0
    bowling_economy_bonus: float = 20.0
    bowling_min_wickets: float = 10.0
    default_economy: float = 8.0
    experience_matches_scale: float = 200.0
    experience_default: float = 30.0
    current_season: int = 2026
    weight_batting: float = 0.25
    weight_bowling: float = 0.25
    weight_experience: float = 0.15
    weight_form: float = 0.10
    allrounder_threshold: float = 40.0
    allrounder_bonus: float = 25.0
    keeper_bonus: float = 15.0
    price_span: float = 24_000.0
    # (rating, fraction of price_span) knots of the convex price curve
    price_curve: Tuple[Tuple[float, float], ...] = (
        (0.0, 0.0),
        (25.0, 0.08),
        (50.0, 0.25),
        (75.0, 0.55),
        (100.0, 1.0),
    )
    allrounder_price_premium: float = 6_000.0
    keeper_price_premium: float = 4_000.0
    availability_price_premium: float = 2_000.0
    min_price_ratio: float = 0.65
    max_price_ratio: float = 1.45
    max_price_cap: float = 32_000.0
    default_base_price: int = 1_000


@dataclass(frozen=True)
class PredictionWeights:
    purse_weight: float = 0.35
    utilization_tiers: Tuple[Tuple[float, float], ...] = (
        (30.0, 0.25),
        (60.0, 0.15),
        (80.0, 0.05),
    )
    utilization_penalty: float = -0.10
    need_weight: float = 0.20
    spending_bonus: float = 0.15
    spending_floor: float = 0.05
    reasonable_spend_ratio: float = 0.5
    early_bonus: float = 0.05
    early_roster_limit: int = 5
    saving_max_impact: float = 0.20
    saving_per_player: float = 0.01
    supply_high_penalty: float = 0.20
    supply_low_bonus: float = 0.15
    probability_cap: float = 0.95
    ceiling_purse_fraction: float = 0.38
    ceiling_bid_multiple: float = 3.0
    ceiling_hard_cap: int = 100_000
    ceiling_absolute_purse_fraction: float = 0.5
    ceiling_base_multiple: float = 10.0
    fallback_predicted_multiple: float = 5.0
    fallback_max_multiple: float = 10.0
    suggested_price_ratio: float = 0.75
    suggested_fallback_ratio: float = 0.70
    must_spend_ratio: float = 0.9
    suggested_max_ratio: float = 0.9
    suggested_base_floor: float = 1.5
    pass_margin: float = 0.10
    saving_purse_percent: float = 50.0
    icon_purse_percent: float = 70.0
    urgent_slots: int = 8
    late_progress_percent: float = 70.0
    late_urgent_slots: int = 5
    max_likely_bidders: int = 5
    max_upcoming_players: int = 15
    brilliance_floor: float = 50.0
    brilliance_top_fraction: float = 0.2
    active_probability: float = 0.5
    expected_increment_cap: int = 5
    expected_max_ratio: float = 1.2
    scarcity_high: int = 15
    scarcity_medium: int = 5
    role_targets: Mapping[str, int] = field(
        default_factory=lambda: {"BATTER": 3, "BOWLER": 3, "ALLROUNDER": 1}
    )
    critical_purse_fraction: float = 0.2

    @property
    def max_probability(self) -> float:
        """``probability_cap``, never above the hard 0.95 ceiling."""

        return max(0.0, min(self.probability_cap, PROBABILITY_CEILING))


def weights_from_mapping(cls: type, data: Mapping[str, Any] | None):
    """Return ``cls()`` with any known fields in ``data`` overriding defaults."""

    instance = cls()
    if not data:
        return instance
    known = {f.name for f in fields(cls)}
    overrides: dict[str, Any] = {}
    for name, value in data.items():
        if name not in known:
            logger.warning("Ignoring unknown %s field %r", cls.__name__, name)
            continue
        if isinstance(value, list):
            value = tuple(tuple(item) if isinstance(item, list) else item for item in value)
        overrides[name] = value
    return replace(instance, **overrides)
