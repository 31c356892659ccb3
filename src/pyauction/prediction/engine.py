"""Deterministic bidder-behaviour prediction for the player on the block."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from pyauction.analysis import (
    AuctionStage,
    BudgetPressure,
    PoolSummary,
    SupplyImpact,
    TeamNeeds,
    analyze_pool,
    analyze_team_needs,
    supply_impact,
)
from pyauction.config import AuctionRules, PredictionWeights, ValuationWeights
from pyauction.models import AuctionSnapshot, BidderRecord, PlayerRecord, PlayerStatus
from pyauction.valuation import Role, ValuationScore, value_players

from .narrative import apply_enhancement
from .upcoming import UpcomingPlayer, rank_upcoming_players


logger = logging.getLogger("uvicorn.error")


class AuctionDataError(LookupError):
    """Raised when a prediction request references data that does not exist."""


class Action(str, Enum):
    BID = "bid"
    WAIT = "wait"
    PASS = "pass"


class CompetitionLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_SUPPLY_SATURATION_FACTOR = 2
_OPENING_BID_RATIO = 0.5


@dataclass(frozen=True)
class LikelyBidder:
    bidder_id: str
    bidder_name: str
    team_name: str
    probability: float
    ceiling_price: int
    is_focal: bool = False
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bidder_id": self.bidder_id,
            "bidder_name": self.bidder_name,
            "team_name": self.team_name,
            "probability": round(self.probability, 4),
            "ceiling_price": self.ceiling_price,
            "is_focal": self.is_focal,
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class RecommendedAction:
    action: Action
    suggested_buy_price: int
    recommended_bid: Optional[int] = None
    confidence: float = 0.5
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "suggested_buy_price": self.suggested_buy_price,
            "recommended_bid": self.recommended_bid,
            "confidence": round(self.confidence, 2),
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class MarketAnalysis:
    current_bid: int
    minimum_next_bid: int
    average_bid: int
    highest_bid: int
    competition_level: CompetitionLevel
    expected_final_price: int
    top_bidder_id: Optional[str]
    bidding_war_likelihood: str
    supply_impact: SupplyImpact
    auction_stage: AuctionStage
    player_role: Role
    pool_summary: Dict[str, Any] = field(default_factory=dict)
    team_needs: Tuple[TeamNeeds, ...] = ()
    valuation: Optional[ValuationScore] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_bid": self.current_bid,
            "minimum_next_bid": self.minimum_next_bid,
            "average_bid": self.average_bid,
            "highest_bid": self.highest_bid,
            "competition_level": self.competition_level.value,
            "expected_final_price": self.expected_final_price,
            "top_bidder_id": self.top_bidder_id,
            "bidding_war_likelihood": self.bidding_war_likelihood,
            "supply_impact": self.supply_impact.value,
            "auction_stage": self.auction_stage.value,
            "player_role": self.player_role.value,
            "pool_summary": dict(self.pool_summary),
            "team_needs": [needs.to_dict() for needs in self.team_needs],
            "valuation": self.valuation.to_dict() if self.valuation is not None else None,
        }


@dataclass(frozen=True)
class PredictionResult:
    auction_id: str
    player_id: str
    focal_bidder_id: str
    likely_bidders: Tuple[LikelyBidder, ...]
    recommended_action: RecommendedAction
    market_analysis: MarketAnalysis
    upcoming_high_value_players: Tuple[UpcomingPlayer, ...] = ()
    narrative_source: str = "local"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auction_id": self.auction_id,
            "player_id": self.player_id,
            "focal_bidder_id": self.focal_bidder_id,
            "likely_bidders": [bidder.to_dict() for bidder in self.likely_bidders],
            "recommended_action": self.recommended_action.to_dict(),
            "market_analysis": self.market_analysis.to_dict(),
            "upcoming_high_value_players": [player.to_dict() for player in self.upcoming_high_value_players],
            "narrative_source": self.narrative_source,
        }


class NarrativeEnhancer(Protocol):
    """Optional collaborator that rewrites prose and proposes numbers."""

    def enhance(self, result: PredictionResult, context: Mapping[str, Any]) -> Mapping[str, Any] | None:
        ...


class SnapshotSource(Protocol):
    def load_snapshot(self, auction_id: str) -> AuctionSnapshot:
        ...


@dataclass(frozen=True)
class _PriceAnchor:
    predicted: int
    minimum: int
    maximum: int
    from_stats: bool


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _reserve_needed(rules: AuctionRules, roster_size: int) -> int:
    return max(rules.mandatory_team_size - roster_size - 1, 0) * rules.min_per_player_reserve


def _cap_slots(rules: AuctionRules, roster_size: int) -> int:
    return max(rules.team_cap - roster_size - 1, 0)


class BidPredictionEngine:
    """Scores every bidder's interest and advises the focal bidder.

    One scoring law serves both richness levels: with
    ``include_stats_valuation`` off (or when the player has no usable stats)
    the price anchors come from base-price multiples instead of the
    valuation model.
    """

    def __init__(
        self,
        *,
        weights: PredictionWeights | None = None,
        valuation_weights: ValuationWeights | None = None,
        enhancer: NarrativeEnhancer | None = None,
    ) -> None:
        self.weights = weights or PredictionWeights()
        self.valuation_weights = valuation_weights or ValuationWeights()
        self.enhancer = enhancer

    def predict(
        self,
        snapshot: AuctionSnapshot,
        player_id: str,
        focal_bidder_id: str,
        *,
        use_external_enhancement: bool = False,
        include_stats_valuation: bool = True,
    ) -> PredictionResult:
        player = snapshot.player(player_id)
        if player is None:
            raise AuctionDataError(f"Player {player_id!r} not found in auction {snapshot.auction_id!r}")
        focal = snapshot.bidder(focal_bidder_id)
        if focal is None:
            raise AuctionDataError(f"Bidder {focal_bidder_id!r} not found in auction {snapshot.auction_id!r}")

        weights = self.weights
        rules = snapshot.rules
        valuations = value_players(snapshot.players, rules=rules, weights=self.valuation_weights)
        valuation = valuations[player.player_id]
        anchor = self._price_anchor(player, valuation, rules, include_stats_valuation)

        bids = snapshot.bids_for(player.player_id)
        amounts = [entry.amount for entry in bids]
        current_bid = amounts[-1] if amounts else 0
        highest_bid = max(amounts) if amounts else 0
        average_bid = rules.round_to_unit(sum(amounts) / len(amounts)) if amounts else 0
        top_bidder_id = bids[-1].bidder_id if bids else None
        increment = rules.increment_for(current_bid if current_bid > 0 else player.base_price)
        minimum_next = rules.minimum_next_bid(current_bid, player.base_price)

        pool = analyze_pool(snapshot.players, valuations)
        role = valuation.role
        available_same_role = pool.available(role)
        impact = supply_impact(available_same_role, weights)

        needs_by_bidder = {
            bidder.bidder_id: analyze_team_needs(
                bidder, snapshot.roster(bidder.bidder_id), valuations, rules, weights
            )
            for bidder in snapshot.bidders
        }

        upcoming_pool = [
            candidate
            for candidate in snapshot.available_players()
            if candidate.player_id != player.player_id
        ]
        upcoming = rank_upcoming_players(upcoming_pool, valuations, weights=weights)

        likely: List[LikelyBidder] = []
        for bidder in snapshot.bidders:
            roster_size = snapshot.roster_count(bidder.bidder_id)
            if bidder.remaining_purse < minimum_next or _cap_slots(rules, roster_size) == 0:
                continue
            probability, factors = self._participation_probability(
                bidder,
                roster_size,
                needs_by_bidder[bidder.bidder_id],
                role,
                impact,
                available_same_role,
                len(upcoming),
            )
            ceiling = self._ceiling_price(
                bidder, anchor, player.base_price, current_bid, increment, minimum_next, rules
            )
            likely.append(
                LikelyBidder(
                    bidder_id=bidder.bidder_id,
                    bidder_name=bidder.name or bidder.label,
                    team_name=bidder.label,
                    probability=probability,
                    ceiling_price=ceiling,
                    is_focal=bidder.bidder_id == focal.bidder_id,
                    reasoning=factors,
                )
            )
        likely.sort(key=lambda item: (-item.probability, item.bidder_id))
        likely = likely[: weights.max_likely_bidders]

        competition_reference = max(current_bid or player.base_price, 1)
        competition_total = sum(item.probability * item.ceiling_price / competition_reference for item in likely)
        if competition_total > 2:
            competition = CompetitionLevel.HIGH
        elif competition_total > 1:
            competition = CompetitionLevel.MEDIUM
        else:
            competition = CompetitionLevel.LOW

        active = [item for item in likely if item.probability > weights.active_probability]
        expected_final = self._expected_final_price(anchor, likely, active, current_bid, increment, rules)
        if len(active) >= 3:
            war = "High"
        elif len(active) == 2:
            war = "Medium"
        else:
            war = "Low"

        recommendation = self._recommend(
            snapshot,
            player,
            focal,
            needs_by_bidder[focal.bidder_id],
            anchor,
            pool,
            role,
            competition,
            current_bid,
            minimum_next,
            bool(upcoming),
        )

        market = MarketAnalysis(
            current_bid=current_bid,
            minimum_next_bid=minimum_next,
            average_bid=average_bid,
            highest_bid=highest_bid,
            competition_level=competition,
            expected_final_price=expected_final,
            top_bidder_id=top_bidder_id,
            bidding_war_likelihood=war,
            supply_impact=impact,
            auction_stage=pool.stage,
            player_role=role,
            pool_summary=pool.to_dict(),
            team_needs=tuple(sorted(needs_by_bidder.values(), key=lambda needs: (-needs.urgency, needs.bidder_id))),
            valuation=valuation if include_stats_valuation else None,
        )
        result = PredictionResult(
            auction_id=snapshot.auction_id,
            player_id=player.player_id,
            focal_bidder_id=focal.bidder_id,
            likely_bidders=tuple(likely),
            recommended_action=recommendation,
            market_analysis=market,
            upcoming_high_value_players=tuple(upcoming),
        )

        if use_external_enhancement and self.enhancer is not None:
            context = {
                "player": player.model_dump(mode="json"),
                "focal_bidder": focal.model_dump(mode="json"),
                "rules": rules.to_dict(),
                "bid_history": [entry.model_dump(mode="json") for entry in bids],
                "bidder_purses": {bidder.bidder_id: bidder.remaining_purse for bidder in snapshot.bidders},
                "max_price": anchor.maximum,
            }
            result = apply_enhancement(self.enhancer, result, context, rules, weights)
        logger.debug(
            "Prediction for %s/%s focal=%s: action=%s suggested=%s source=%s",
            snapshot.auction_id,
            player.player_id,
            focal.bidder_id,
            result.recommended_action.action.value,
            result.recommended_action.suggested_buy_price,
            result.narrative_source,
        )
        return result

    def _price_anchor(
        self,
        player: PlayerRecord,
        valuation: ValuationScore,
        rules: AuctionRules,
        include_stats_valuation: bool,
    ) -> _PriceAnchor:
        if include_stats_valuation and valuation.has_stats:
            return _PriceAnchor(valuation.predicted_price, valuation.min_price, valuation.max_price, True)
        base = player.base_price
        return _PriceAnchor(
            predicted=rules.ceil_to_unit(base * self.weights.fallback_predicted_multiple),
            minimum=rules.ceil_to_unit(base),
            maximum=rules.ceil_to_unit(base * self.weights.fallback_max_multiple),
            from_stats=False,
        )

    def _participation_probability(
        self,
        bidder: BidderRecord,
        roster_size: int,
        needs: TeamNeeds,
        role: Role,
        impact: SupplyImpact,
        available_same_role: int,
        standout_count: int,
    ) -> Tuple[float, str]:
        weights = self.weights
        initial = bidder.initial_purse
        purse_fraction = min(1.0, bidder.remaining_purse / initial) if initial > 0 else 0.0
        purse_factor = _clamp(purse_fraction * weights.purse_weight, 0.0, weights.purse_weight)

        utilization = bidder.spent / initial * 100.0 if initial > 0 else 100.0
        utilization_factor = weights.utilization_penalty
        for ceiling, bonus in weights.utilization_tiers:
            if utilization < ceiling:
                utilization_factor = bonus
                break

        need_factor = 0.0
        if needs.needs_role(role):
            need_factor = _clamp(weights.need_weight * needs.urgency / 10.0, 0.0, weights.need_weight)

        average_spent = bidder.spent / roster_size if roster_size else 0.0
        if 0 < average_spent < initial * weights.reasonable_spend_ratio:
            spending_factor = weights.spending_bonus
        else:
            spending_factor = weights.spending_floor

        early_factor = weights.early_bonus if roster_size < weights.early_roster_limit else 0.0

        saving_factor = 0.0
        if standout_count:
            impact_size = min(weights.saving_max_impact, standout_count * weights.saving_per_player)
            purse_percent = purse_fraction * 100.0
            if purse_percent > 70:
                saving_factor = -impact_size * 1.5
            elif purse_percent > 50:
                saving_factor = -impact_size
            elif purse_percent > 30:
                saving_factor = -impact_size * 0.5
            saving_factor = _clamp(saving_factor, -weights.saving_max_impact, 0.0)

        supply_factor = 0.0
        if impact is SupplyImpact.HIGH:
            saturation = max(weights.scarcity_high * _SUPPLY_SATURATION_FACTOR, 1)
            supply_factor = _clamp(
                -weights.supply_high_penalty * available_same_role / saturation,
                -weights.supply_high_penalty,
                0.0,
            )
        elif impact is SupplyImpact.LOW:
            scarcity = max(weights.scarcity_medium, 1)
            supply_factor = _clamp(
                weights.supply_low_bonus * (1 - available_same_role / scarcity),
                0.0,
                weights.supply_low_bonus,
            )

        raw = (
            purse_factor
            + utilization_factor
            + need_factor
            + spending_factor
            + early_factor
            + saving_factor
            + supply_factor
        )
        probability = _clamp(raw, 0.0, weights.max_probability)

        notes = []
        if purse_fraction > 0.7:
            notes.append("strong purse balance")
        if utilization < 30:
            notes.append("low purse utilization")
        if need_factor > 0.75 * weights.need_weight:
            notes.append("matches team needs")
        if spending_factor == weights.spending_bonus:
            notes.append("reasonable spending pattern")
        if early_factor:
            notes.append("early in squad building")
        if saving_factor < 0:
            notes.append(f"{standout_count} standout player(s) still to come")
        if supply_factor:
            notes.append(f"{impact.value} supply of {role.value.lower()}s")
        reasoning = (
            f"purse {purse_factor:+.2f}, utilization {utilization_factor:+.2f}, need {need_factor:+.2f}, "
            f"spending {spending_factor:+.2f}, early {early_factor:+.2f}, saving {saving_factor:+.2f}, "
            f"supply {supply_factor:+.2f}. Key factors: {', '.join(notes) or 'standard bidding pattern'}"
        )
        return probability, reasoning

    def _ceiling_price(
        self,
        bidder: BidderRecord,
        anchor: _PriceAnchor,
        base_price: int,
        current_bid: int,
        increment: int,
        minimum_next: int,
        rules: AuctionRules,
    ) -> int:
        weights = self.weights
        if current_bid > 0:
            market = current_bid * weights.ceiling_bid_multiple
        else:
            market = base_price * weights.ceiling_base_multiple
        ceiling = min(
            bidder.remaining_purse * weights.ceiling_purse_fraction,
            market,
            bidder.remaining_purse - increment,
            anchor.maximum,
            weights.ceiling_hard_cap,
        )
        ceiling = max(ceiling, minimum_next)
        ceiling = min(ceiling, bidder.remaining_purse * weights.ceiling_absolute_purse_fraction)
        return rules.ceil_to_unit(ceiling)

    def _expected_final_price(
        self,
        anchor: _PriceAnchor,
        likely: Sequence[LikelyBidder],
        active: Sequence[LikelyBidder],
        current_bid: int,
        increment: int,
        rules: AuctionRules,
    ) -> int:
        weights = self.weights
        if current_bid > 0:
            if active:
                lift = sum(
                    max(0, min(item.ceiling_price, current_bid * weights.ceiling_bid_multiple) - current_bid)
                    for item in active
                ) / len(active)
                expected = current_bid + min(lift, increment * weights.expected_increment_cap)
            else:
                expected = current_bid + len(likely) * increment * 2
        else:
            expected = anchor.predicted
        expected = min(expected, anchor.maximum * weights.expected_max_ratio)
        return max(rules.round_to_unit(expected), current_bid)

    def suggested_buy_price(
        self,
        anchor: _PriceAnchor,
        needs: TeamNeeds,
        base_price: int,
        rules: AuctionRules,
    ) -> int:
        """Target price for the focal bidder, always a multiple of the unit."""

        weights = self.weights
        ratio = weights.suggested_price_ratio if anchor.from_stats else weights.suggested_fallback_ratio
        suggested = anchor.predicted * ratio
        if needs.budget_pressure is BudgetPressure.HIGH:
            suggested = max(suggested, needs.must_spend_per_remaining_slot * weights.must_spend_ratio)
        suggested = max(suggested, anchor.minimum)
        suggested = min(suggested, anchor.maximum * weights.suggested_max_ratio)
        floor = base_price * weights.suggested_base_floor
        suggested = max(suggested, floor)
        rounded = rules.round_to_unit(suggested)
        if rounded < floor:
            rounded = rules.ceil_to_unit(floor)
        return rounded

    def _recommend(
        self,
        snapshot: AuctionSnapshot,
        player: PlayerRecord,
        focal: BidderRecord,
        needs: TeamNeeds,
        anchor: _PriceAnchor,
        pool: PoolSummary,
        role: Role,
        competition: CompetitionLevel,
        current_bid: int,
        minimum_next: int,
        has_standouts: bool,
    ) -> RecommendedAction:
        weights = self.weights
        rules = snapshot.rules
        roster_size = snapshot.roster_count(focal.bidder_id)
        reserve = _reserve_needed(rules, roster_size)
        suggested = self.suggested_buy_price(anchor, needs, player.base_price, rules)

        slots = _cap_slots(rules, roster_size)
        can_afford = (
            focal.remaining_purse >= minimum_next
            and focal.remaining_purse - minimum_next >= reserve
        )
        urgent = (
            needs.remaining_slots >= weights.urgent_slots
            or needs.budget_pressure is BudgetPressure.HIGH
            or (pool.progress_percent > weights.late_progress_percent and needs.remaining_slots >= weights.late_urgent_slots)
        )
        role_gap = needs.needs_role(role)
        purse_percent = focal.remaining_purse / focal.initial_purse * 100.0 if focal.initial_purse else 0.0
        saving = (
            has_standouts
            and purse_percent > weights.saving_purse_percent
            and not (player.is_icon and purse_percent > weights.icon_purse_percent)
        )

        if player.status is not PlayerStatus.AVAILABLE:
            return RecommendedAction(
                Action.PASS, suggested, None, 0.9, f"{player.display_name} is {player.status.value.lower()}."
            )
        if not can_afford:
            return RecommendedAction(
                Action.PASS,
                suggested,
                None,
                0.8,
                f"Insufficient balance: {focal.remaining_purse:,} remaining, the next bid of {minimum_next:,} "
                f"must leave {reserve:,} for the open squad slots.",
            )
        if slots == 0:
            return RecommendedAction(Action.PASS, suggested, None, 0.9, "Squad is full; no roster slots remain.")
        if current_bid > suggested * (1 + weights.pass_margin):
            excess = current_bid - suggested
            return RecommendedAction(
                Action.PASS,
                suggested,
                None,
                0.85,
                f"Current bid {current_bid:,} is {excess:,} above the suggested buy price {suggested:,}; let it go.",
            )
        if current_bid > suggested:
            return RecommendedAction(
                Action.WAIT,
                suggested,
                None,
                0.6,
                f"Current bid {current_bid:,} is just above the suggested buy price {suggested:,}; watch, do not chase.",
            )
        if saving and not urgent and not role_gap:
            return RecommendedAction(
                Action.WAIT,
                suggested,
                None,
                0.75,
                f"Standout players are still to come and {purse_percent:.0f}% of the purse remains; "
                f"competition is {competition.value}.",
            )
        if competition is not CompetitionLevel.HIGH or urgent:
            if current_bid > 0:
                target = minimum_next
            else:
                target = max(minimum_next, rules.round_to_unit(suggested * _OPENING_BID_RATIO))
            affordable = rules.unit * ((focal.remaining_purse - reserve) // rules.unit)
            recommended = max(minimum_next, min(target, affordable))
            reason = f"Bid {recommended:,}; target up to {suggested:,}."
            if urgent:
                reason += f" {needs.remaining_slots} slots to fill at {needs.must_spend_per_remaining_slot:,.0f} per slot."
            if role_gap:
                reason += f" Fills a {role.value.lower()} gap."
            return RecommendedAction(Action.BID, suggested, recommended, 0.8 if urgent else 0.7, reason)
        return RecommendedAction(
            Action.WAIT,
            suggested,
            None,
            0.6,
            f"Competition is high and there is no urgent squad need; hold below {suggested:,}.",
        )


def get_prediction(
    source: SnapshotSource,
    auction_id: str,
    player_id: str,
    focal_bidder_id: str,
    *,
    use_external_enhancement: bool = False,
    include_stats_valuation: bool = True,
    engine: BidPredictionEngine | None = None,
) -> PredictionResult:
    """Load a fresh snapshot and run the engine; unknown auctions raise ``AuctionDataError``."""

    try:
        snapshot = source.load_snapshot(auction_id)
    except KeyError as exc:
        raise AuctionDataError(f"Auction {auction_id!r} not found") from exc
    engine = engine or BidPredictionEngine()
    return engine.predict(
        snapshot,
        player_id,
        focal_bidder_id,
        use_external_enhancement=use_external_enhancement,
        include_stats_valuation=include_stats_valuation,
    )


__all__ = [
    "Action",
    "AuctionDataError",
    "BidPredictionEngine",
    "CompetitionLevel",
    "LikelyBidder",
    "MarketAnalysis",
    "NarrativeEnhancer",
    "PredictionResult",
    "RecommendedAction",
    "get_prediction",
]
