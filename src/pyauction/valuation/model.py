"""Stat-driven player valuation.

``compute_valuation`` maps a free-form attribute bag (usually a row from an
uploaded stats sheet) to sub-scores, an overall rating and a price band. The
bag is untrusted: keys vary in case and punctuation between sheets and values
may be blank, textual or garbage, so every lookup degrades to a neutral
default instead of raising.

The player's role is derived from the batting and bowling sub-scores. Any
``Speciality`` column in the sheet is carried for display only.
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional, Sequence

from pyauction.config import AuctionRules, ValuationWeights, get_rules

if TYPE_CHECKING:
    from pyauction.models import PlayerRecord


class Role(str, Enum):
    BATTER = "BATTER"
    BOWLER = "BOWLER"
    ALLROUNDER = "ALLROUNDER"
    UNKNOWN = "UNKNOWN"


_ROLE_DOMINANCE_MARGIN = 20.0
_ROLE_MODERATE_FLOOR = 20.0
_ROLE_SINGLE_FLOOR = 30.0

_FORM_RECENT = 100.0
_FORM_MONTH = 85.0
_FORM_YEAR = 70.0
_FORM_MISSING = 50.0
_FORM_STALE = 40.0

_TRUTHY = {"yes", "y", "true", "1"}

ATTRIBUTE_ALIASES: Dict[str, tuple[str, ...]] = {
    "name": ("Name", "Player", "Player Name"),
    "runs": ("Runs", "Total Runs"),
    "average": ("Average", "Avg", "Batting Average"),
    "economy": ("Economy", "Eco", "Economy Rate"),
    "wickets": ("Wickets", "Wkts"),
    "matches": ("Matches", "Mat"),
    "catches": ("Catches",),
    "last_played": ("Last Played", "Last Played Date"),
    "keeper": ("Is Keeper", "Wicket Keeper", "Keeper"),
    "availability": ("Availability",),
    "base_price": ("Base Price",),
    "speciality": ("Speciality", "Specialty", "Role"),
}

_PERFORMANCE_FIELDS = ("runs", "average", "economy", "wickets", "matches", "catches")


def _attribute_token(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


def _build_alias_lookup() -> dict[str, str]:
    lookup: dict[str, str] = {}
    for canonical, variants in ATTRIBUTE_ALIASES.items():
        for variant in (canonical, *variants):
            key = _attribute_token(variant)
            if key:
                lookup.setdefault(key, canonical)
    return lookup


ATTRIBUTE_ALIAS_LOOKUP = _build_alias_lookup()


def normalize_attributes(attributes: Mapping[str, Any] | None) -> Dict[str, Any]:
    """Return the recognised attributes keyed by canonical name.

    The first non-blank value wins when a sheet carries several aliases for the
    same figure.
    """

    normalized: Dict[str, Any] = {}
    if not isinstance(attributes, Mapping):
        return normalized
    for key, value in attributes.items():
        if not isinstance(key, str):
            continue
        canonical = ATTRIBUTE_ALIAS_LOOKUP.get(_attribute_token(key))
        if canonical is None or canonical in normalized:
            continue
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        normalized[canonical] = value
    return normalized


def _coerce_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def batting_score(runs: float, average: float, weights: ValuationWeights) -> float:
    if runs <= weights.batting_min_runs:
        return 0.0
    raw = runs / weights.batting_runs_scale * weights.batting_runs_weight
    raw += max(0.0, average) * weights.batting_average_weight
    return _clamp(raw)


def bowling_score(wickets: float, economy: float, weights: ValuationWeights) -> float:
    if wickets <= weights.bowling_min_wickets:
        return 0.0
    raw = wickets / weights.bowling_wickets_scale * weights.bowling_wickets_weight
    raw += max(
        0.0,
        weights.bowling_economy_bonus - (economy - weights.bowling_economy_pivot) * weights.bowling_economy_weight,
    )
    return _clamp(raw)


def experience_score(matches: Optional[float], weights: ValuationWeights) -> float:
    if not matches or matches <= 0:
        return weights.experience_default
    scaled = matches / weights.experience_matches_scale * 100.0
    return _clamp(max(weights.experience_default, scaled))


def form_score(last_played: Any, weights: ValuationWeights) -> float:
    if last_played is None:
        return _FORM_MISSING
    text = str(last_played).strip().lower()
    if not text:
        return _FORM_MISSING
    years = [int(match) for match in re.findall(r"\b(?:19|20)\d{2}\b", text)]
    if years and max(years) >= weights.current_season - 1:
        return _FORM_RECENT
    if "today" in text or "regular" in text:
        return _FORM_RECENT
    if "month" in text:
        return _FORM_MONTH
    if "year" in text:
        return _FORM_YEAR
    return _FORM_STALE


def derive_role(batting: float, bowling: float, weights: ValuationWeights | None = None) -> Role:
    """Classify a player from sub-scores alone."""

    threshold = (weights or ValuationWeights()).allrounder_threshold
    if batting >= threshold and bowling >= threshold:
        return Role.ALLROUNDER
    if batting > bowling + _ROLE_DOMINANCE_MARGIN:
        return Role.BATTER
    if bowling > batting + _ROLE_DOMINANCE_MARGIN:
        return Role.BOWLER
    if batting >= _ROLE_MODERATE_FLOOR and bowling >= _ROLE_MODERATE_FLOOR:
        return Role.ALLROUNDER
    if batting >= _ROLE_SINGLE_FLOOR:
        return Role.BATTER
    if bowling >= _ROLE_SINGLE_FLOOR:
        return Role.BOWLER
    return Role.UNKNOWN


def price_curve_fraction(rating: float, knots: Sequence[Sequence[float]]) -> float:
    """Piecewise-linear interpolation over ``(rating, fraction)`` knots."""

    if not knots:
        return rating / 100.0
    points = sorted((float(x), float(y)) for x, y in knots)
    if rating <= points[0][0]:
        return points[0][1]
    for (x0, y0), (x1, y1) in zip(points, points[1:]):
        if rating <= x1:
            if x1 == x0:
                return y1
            return y0 + (y1 - y0) * (rating - x0) / (x1 - x0)
    return points[-1][1]


@dataclass(frozen=True)
class ValuationScore:
    overall_rating: int
    batting_score: int
    bowling_score: int
    experience_score: int
    form_score: int
    allrounder_bonus: int
    keeper_bonus: int
    predicted_price: int
    min_price: int
    max_price: int
    role: Role
    has_stats: bool
    base_price: int
    reasoning: str

    @property
    def bonuses(self) -> int:
        return self.allrounder_bonus + self.keeper_bonus

    @property
    def stats_summary(self) -> str:
        parts = []
        if self.batting_score > 0:
            parts.append(f"Bat: {self.batting_score}")
        if self.bowling_score > 0:
            parts.append(f"Bowl: {self.bowling_score}")
        if self.experience_score > 0:
            parts.append(f"Exp: {self.experience_score}")
        if self.form_score > 0:
            parts.append(f"Form: {self.form_score}")
        return " | ".join(parts) or "N/A"

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["role"] = self.role.value
        payload["bonuses"] = self.bonuses
        payload["stats_summary"] = self.stats_summary
        return payload


def compute_valuation(
    attributes: Mapping[str, Any] | None,
    base_price: Optional[int] = None,
    *,
    rules: AuctionRules | None = None,
    weights: ValuationWeights | None = None,
) -> ValuationScore:
    """Value one player from its attribute bag. Pure and deterministic."""

    rules = rules or get_rules()
    weights = weights or ValuationWeights()
    stats = normalize_attributes(attributes)

    parsed = {name: _coerce_float(stats.get(name)) for name in _PERFORMANCE_FIELDS}
    has_stats = any(value is not None for value in parsed.values())

    runs = parsed["runs"] or 0.0
    average = parsed["average"] or 0.0
    wickets = parsed["wickets"] or 0.0
    economy = parsed["economy"] if parsed["economy"] is not None else weights.default_economy

    batting = batting_score(runs, average, weights)
    bowling = bowling_score(wickets, economy, weights)
    experience = experience_score(parsed["matches"], weights)
    form = form_score(stats.get("last_played"), weights)
    role = derive_role(batting, bowling, weights)

    allrounder_bonus = weights.allrounder_bonus if role is Role.ALLROUNDER else 0.0
    is_keeper = _flag(stats.get("keeper"))
    keeper_bonus = weights.keeper_bonus if is_keeper else 0.0

    overall = _clamp(
        _half_up(
            batting * weights.weight_batting
            + bowling * weights.weight_bowling
            + allrounder_bonus
            + keeper_bonus
            + experience * weights.weight_experience
            + form * weights.weight_form
        )
    )

    if base_price is None:
        sheet_base = _coerce_float(stats.get("base_price"))
        base_price = int(sheet_base) if sheet_base and sheet_base > 0 else weights.default_base_price
    floor_price = rules.ceil_to_unit(base_price)

    raw_price = base_price + price_curve_fraction(overall, weights.price_curve) * weights.price_span
    if role is Role.ALLROUNDER:
        raw_price += weights.allrounder_price_premium
    if is_keeper:
        raw_price += weights.keeper_price_premium
    availability = str(stats.get("availability") or "").lower()
    if "both" in availability:
        raw_price += weights.availability_price_premium

    predicted = max(rules.round_to_unit(raw_price), floor_price)
    min_price = max(rules.round_to_unit(predicted * weights.min_price_ratio), floor_price)
    max_price = rules.round_to_unit(min(predicted * weights.max_price_ratio, weights.max_price_cap))
    max_price = max(max_price, predicted)

    name = str(stats.get("name") or "Player")
    reasoning_parts = [f"{name}: overall rating {int(overall)}/100"]
    if batting > 0:
        reasoning_parts.append(f"batting {_half_up(batting)}/100")
    if bowling > 0:
        reasoning_parts.append(f"bowling {_half_up(bowling)}/100")
    if allrounder_bonus:
        reasoning_parts.append(f"allrounder bonus +{int(allrounder_bonus)}")
    if keeper_bonus:
        reasoning_parts.append(f"keeper bonus +{int(keeper_bonus)}")
    reasoning_parts.append(f"experience {_half_up(experience)}/100, form {_half_up(form)}/100")
    reasoning_parts.append(f"predicted price {predicted:,} (range {min_price:,} - {max_price:,})")
    if not has_stats:
        reasoning_parts.append("no performance figures found; rating reflects defaults only")

    return ValuationScore(
        overall_rating=int(overall),
        batting_score=_half_up(batting),
        bowling_score=_half_up(bowling),
        experience_score=_half_up(experience),
        form_score=_half_up(form),
        allrounder_bonus=int(allrounder_bonus),
        keeper_bonus=int(keeper_bonus),
        predicted_price=predicted,
        min_price=min_price,
        max_price=max_price,
        role=role,
        has_stats=has_stats,
        base_price=base_price,
        reasoning=". ".join(reasoning_parts),
    )


def value_players(
    players: Iterable["PlayerRecord"],
    *,
    rules: AuctionRules | None = None,
    weights: ValuationWeights | None = None,
) -> Dict[str, ValuationScore]:
    """Value a batch of players keyed by ``player_id``."""

    return {
        player.player_id: compute_valuation(player.attributes, player.base_price, rules=rules, weights=weights)
        for player in players
    }


__all__ = [
    "ATTRIBUTE_ALIASES",
    "Role",
    "ValuationScore",
    "compute_valuation",
    "value_players",
    "derive_role",
    "normalize_attributes",
    "price_curve_fraction",
]
