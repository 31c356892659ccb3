"""Rank the players still to come by how much bidders may save for them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from pyauction.config import PredictionWeights
from pyauction.models import PlayerRecord
from pyauction.valuation import Role, ValuationScore


# (minimum, points, label) tiers, checked highest first
_RATING_TIERS: Tuple[Tuple[int, int, str], ...] = (
    (70, 40, "Excellent stats"),
    (60, 30, "Strong stats"),
    (50, 20, "Good stats"),
)
_PRICE_TIERS: Tuple[Tuple[int, int, str], ...] = (
    (20_000, 35, "High predicted price"),
    (15_000, 25, "Moderate-high predicted price"),
    (10_000, 15, "Moderate predicted price"),
)
_BASE_PRICE_TIERS: Tuple[Tuple[int, int, str], ...] = (
    (50_001, 25, "Very high base price"),
    (25_001, 15, "High base price"),
    (10_001, 10, "Moderate base price"),
)
_ICON_POINTS = 30
_STRONG_SKILL_SCORE = 60
_STRONG_SKILL_POINTS = 15
_EXPERIENCED_SCORE = 70
_EXPERIENCED_POINTS = 10
_ALLROUNDER_POINTS = 10


@dataclass(frozen=True)
class UpcomingPlayer:
    player_id: str
    name: str
    role: Role
    is_icon: bool
    base_price: int
    brilliance_score: int
    overall_rating: int
    predicted_price: int
    min_price: int
    max_price: int
    stats_summary: str
    factors: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "name": self.name,
            "role": self.role.value,
            "is_icon": self.is_icon,
            "base_price": self.base_price,
            "brilliance_score": self.brilliance_score,
            "overall_rating": self.overall_rating,
            "predicted_price": self.predicted_price,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "stats_summary": self.stats_summary,
            "factors": list(self.factors),
        }


def _tier(value: float, tiers: Sequence[Tuple[int, int, str]]) -> Tuple[int, str | None]:
    for minimum, points, label in tiers:
        if value >= minimum:
            return points, label
    return 0, None


def brilliance_score(player: PlayerRecord, score: ValuationScore) -> Tuple[int, List[str]]:
    total = 0
    factors: List[str] = []

    points, label = _tier(score.overall_rating, _RATING_TIERS)
    if label:
        total += points
        factors.append(f"{label} (rating {score.overall_rating}/100)")
    points, label = _tier(score.predicted_price, _PRICE_TIERS)
    if label:
        total += points
        factors.append(f"{label} ({score.predicted_price:,})")
    if player.is_icon:
        total += _ICON_POINTS
        factors.append("Icon player")
    points, label = _tier(player.base_price, _BASE_PRICE_TIERS)
    if label:
        total += points
        factors.append(label)
    if score.batting_score >= _STRONG_SKILL_SCORE:
        total += _STRONG_SKILL_POINTS
        factors.append(f"Strong batting ({score.batting_score}/100)")
    if score.bowling_score >= _STRONG_SKILL_SCORE:
        total += _STRONG_SKILL_POINTS
        factors.append(f"Strong bowling ({score.bowling_score}/100)")
    if score.experience_score >= _EXPERIENCED_SCORE:
        total += _EXPERIENCED_POINTS
        factors.append(f"Experienced ({score.experience_score}/100)")
    if score.role is Role.ALLROUNDER:
        total += _ALLROUNDER_POINTS
        factors.append("Allrounder (stats-based)")
    return total, factors


def rank_upcoming_players(
    players: Sequence[PlayerRecord],
    valuations: Mapping[str, ValuationScore],
    *,
    weights: PredictionWeights | None = None,
) -> List[UpcomingPlayer]:
    """Return the standout upcoming players, best first.

    A player qualifies when its brilliance score reaches
    ``max(brilliance_floor, score at the top-fraction rank)``; at most
    ``max_upcoming_players`` are returned.
    """

    weights = weights or PredictionWeights()
    ranked: List[UpcomingPlayer] = []
    for player in players:
        score = valuations.get(player.player_id)
        if score is None:
            continue
        total, factors = brilliance_score(player, score)
        ranked.append(
            UpcomingPlayer(
                player_id=player.player_id,
                name=player.display_name,
                role=score.role,
                is_icon=player.is_icon,
                base_price=player.base_price,
                brilliance_score=total,
                overall_rating=score.overall_rating,
                predicted_price=score.predicted_price,
                min_price=score.min_price,
                max_price=score.max_price,
                stats_summary=score.stats_summary,
                factors=tuple(factors),
            )
        )
    if not ranked:
        return []

    ranked.sort(key=lambda item: (-item.brilliance_score, item.player_id))
    pivot = ranked[min(int(len(ranked) * weights.brilliance_top_fraction), len(ranked) - 1)]
    threshold = max(weights.brilliance_floor, pivot.brilliance_score)
    standouts = [item for item in ranked if item.brilliance_score >= threshold]
    return standouts[: weights.max_upcoming_players]


__all__ = ["UpcomingPlayer", "brilliance_score", "rank_upcoming_players"]
