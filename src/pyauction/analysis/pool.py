"""Supply signals derived from the remaining player pool."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping

from pyauction.config import PredictionWeights
from pyauction.models import PlayerRecord, PlayerStatus
from pyauction.valuation import Role, ValuationScore


class AuctionStage(str, Enum):
    EARLY = "Early"
    MID = "Mid"
    LATE = "Late"


class SupplyImpact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_EARLY_STAGE_LIMIT = 33.0
_MID_STAGE_LIMIT = 67.0


@dataclass(frozen=True)
class RoleCount:
    sold: int = 0
    available: int = 0
    total: int = 0


@dataclass(frozen=True)
class PoolSummary:
    """Aggregate counts over the whole player set at one point in time."""

    total_players: int
    sold_count: int
    available_count: int
    unsold_count: int
    progress_percent: float
    stage: AuctionStage
    by_role: Mapping[Role, RoleCount] = field(default_factory=dict)

    def available(self, role: Role) -> int:
        return self.by_role.get(role, RoleCount()).available

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_players": self.total_players,
            "sold_count": self.sold_count,
            "available_count": self.available_count,
            "unsold_count": self.unsold_count,
            "progress_percent": round(self.progress_percent, 1),
            "stage": self.stage.value,
            "available_by_role": {role.value: counts.available for role, counts in self.by_role.items()},
        }


def auction_stage(progress_percent: float) -> AuctionStage:
    if progress_percent < _EARLY_STAGE_LIMIT:
        return AuctionStage.EARLY
    if progress_percent < _MID_STAGE_LIMIT:
        return AuctionStage.MID
    return AuctionStage.LATE


def analyze_pool(
    players: Iterable[PlayerRecord],
    valuations: Mapping[str, ValuationScore],
) -> PoolSummary:
    """Count players per derived role and status in one pass.

    Players without a valuation count as ``Role.UNKNOWN``.
    """

    tallies: Dict[Role, list[int]] = {role: [0, 0, 0] for role in Role}
    total = sold = available = unsold = 0
    for player in players:
        score = valuations.get(player.player_id)
        role = score.role if score is not None else Role.UNKNOWN
        bucket = tallies[role]
        bucket[2] += 1
        total += 1
        if player.status is PlayerStatus.SOLD:
            bucket[0] += 1
            sold += 1
        elif player.status is PlayerStatus.AVAILABLE:
            bucket[1] += 1
            available += 1
        elif player.status is PlayerStatus.UNSOLD:
            unsold += 1

    progress = (sold / total * 100.0) if total else 0.0
    by_role = {role: RoleCount(sold=s, available=a, total=t) for role, (s, a, t) in tallies.items()}
    return PoolSummary(
        total_players=total,
        sold_count=sold,
        available_count=available,
        unsold_count=unsold,
        progress_percent=progress,
        stage=auction_stage(progress),
        by_role=by_role,
    )


def supply_impact(available_same_role: int, weights: PredictionWeights | None = None) -> SupplyImpact:
    """Classify how plentiful a role still is."""

    weights = weights or PredictionWeights()
    if available_same_role >= weights.scarcity_high:
        return SupplyImpact.HIGH
    if available_same_role >= weights.scarcity_medium:
        return SupplyImpact.MEDIUM
    return SupplyImpact.LOW


__all__ = [
    "AuctionStage",
    "PoolSummary",
    "RoleCount",
    "SupplyImpact",
    "analyze_pool",
    "auction_stage",
    "supply_impact",
]
