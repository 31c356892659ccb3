"""Per-bidder squad composition gaps and budget pressure."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Sequence, Tuple

from pyauction.config import AuctionRules, PredictionWeights
from pyauction.models import BidderRecord, PlayerRecord
from pyauction.valuation import Role, ValuationScore


logger = logging.getLogger(__name__)


class BudgetPressure(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


NEED_LABELS: Mapping[Role, str] = {
    Role.BATTER: "Batters",
    Role.BOWLER: "Bowlers",
    Role.ALLROUNDER: "Allrounders",
}
KEEPER_NEED = "Wicket Keeper"

_BASE_URGENCY = 5
_CORE_GAP_URGENCY = 2
_ALLROUNDER_GAP_URGENCY = 1
_HIGH_PRESSURE_URGENCY = 1
_LOW_PURSE_RELIEF = 1
_HIGH_PRESSURE_RATIO = 1.5


@dataclass(frozen=True)
class TeamNeeds:
    bidder_id: str
    team_name: str
    needs: Tuple[str, ...]
    urgency: int
    must_spend_per_remaining_slot: float
    budget_pressure: BudgetPressure
    remaining_slots: int
    roster_size: int
    has_keeper: bool = False
    composition: Mapping[Role, int] = field(default_factory=dict)
    reasoning: str = ""

    def needs_role(self, role: Role) -> bool:
        label = NEED_LABELS.get(role)
        return label is not None and label in self.needs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bidder_id": self.bidder_id,
            "team_name": self.team_name,
            "needs": list(self.needs),
            "urgency": self.urgency,
            "must_spend_per_remaining_slot": round(self.must_spend_per_remaining_slot, 2),
            "budget_pressure": self.budget_pressure.value,
            "remaining_slots": self.remaining_slots,
            "roster_size": self.roster_size,
            "has_keeper": self.has_keeper,
            "composition": {role.value: count for role, count in self.composition.items()},
            "reasoning": self.reasoning,
        }


def remaining_slots(rules: AuctionRules, roster_size: int) -> int:
    """Open mandatory slots; the bidder occupies one slot."""

    return max(rules.mandatory_team_size - roster_size - 1, 0)


def budget_pressure(rules: AuctionRules, remaining_purse: int, slots: int) -> Tuple[float, BudgetPressure]:
    must_spend = remaining_purse / max(slots, 1)
    if slots <= 0 or remaining_purse <= 0:
        return must_spend, BudgetPressure.LOW
    average = rules.average_slot_budget
    if must_spend > average * _HIGH_PRESSURE_RATIO:
        return must_spend, BudgetPressure.HIGH
    if must_spend > average:
        return must_spend, BudgetPressure.MEDIUM
    return must_spend, BudgetPressure.LOW


def analyze_team_needs(
    bidder: BidderRecord,
    roster: Sequence[PlayerRecord],
    valuations: Mapping[str, ValuationScore],
    rules: AuctionRules,
    weights: PredictionWeights | None = None,
) -> TeamNeeds:
    """Compute role gaps, urgency (0-10) and budget pressure for one bidder.

    ``roster`` must be the bidder's current purchases; results are not cached
    because every sale changes them.
    """

    weights = weights or PredictionWeights()
    composition: Dict[Role, int] = {role: 0 for role in Role}
    has_keeper = False
    for player in roster:
        score = valuations.get(player.player_id)
        if score is None:
            composition[Role.UNKNOWN] += 1
            continue
        composition[score.role] += 1
        has_keeper = has_keeper or score.keeper_bonus > 0

    slots = remaining_slots(rules, len(roster))
    must_spend, pressure = budget_pressure(rules, bidder.remaining_purse, slots)

    needs: list[str] = []
    urgency = _BASE_URGENCY
    for role, label in NEED_LABELS.items():
        target = int(weights.role_targets.get(role.value, 0))
        if composition.get(role, 0) < target:
            needs.append(label)
            urgency += _ALLROUNDER_GAP_URGENCY if role is Role.ALLROUNDER else _CORE_GAP_URGENCY
    if not has_keeper:
        needs.append(KEEPER_NEED)

    if pressure is BudgetPressure.HIGH:
        urgency += _HIGH_PRESSURE_URGENCY
    purse_reference = bidder.initial_purse or rules.total_purse
    if bidder.remaining_purse < purse_reference * weights.critical_purse_fraction:
        urgency -= _LOW_PURSE_RELIEF
    urgency = max(0, min(10, urgency))

    if slots == 0:
        # a complete squad has nothing left to chase
        needs = []
        urgency = 0

    reasoning_parts = [f"Team has {len(roster)}/{rules.mandatory_team_size - 1} players"]
    reasoning_parts.append(f"Needs: {', '.join(needs)}" if needs else "Team is balanced")
    reasoning_parts.append(
        f"Must spend {must_spend:,.0f} per remaining slot ({slots} left), budget pressure {pressure.value}"
    )
    reasoning_parts.append(f"Urgency: {urgency}/10")

    logger.debug("Team needs for %s: urgency=%d pressure=%s", bidder.bidder_id, urgency, pressure.value)
    return TeamNeeds(
        bidder_id=bidder.bidder_id,
        team_name=bidder.label,
        needs=tuple(needs),
        urgency=urgency,
        must_spend_per_remaining_slot=must_spend,
        budget_pressure=pressure,
        remaining_slots=slots,
        roster_size=len(roster),
        has_keeper=has_keeper,
        composition=composition,
        reasoning=". ".join(reasoning_parts),
    )


__all__ = [
    "BudgetPressure",
    "KEEPER_NEED",
    "NEED_LABELS",
    "TeamNeeds",
    "analyze_team_needs",
    "budget_pressure",
    "remaining_slots",
]
