"""Auction rule sets for supported league formats."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Iterable, Mapping, Optional


@dataclass(frozen=True)
class AuctionRules:
    key: str
    total_purse: int
    min_bid_increment: int
    increment_threshold: int
    high_bid_increment: int
    mandatory_team_size: int
    min_per_player_reserve: int
    max_team_size: Optional[int] = None
    countdown_seconds: int = 30

    @property
    def unit(self) -> int:
        """Smallest bid step; every monetary output is a multiple of it."""

        return self.min_bid_increment

    @property
    def team_cap(self) -> int:
        return self.max_team_size or self.mandatory_team_size

    @property
    def average_slot_budget(self) -> float:
        return self.total_purse / max(self.mandatory_team_size, 1)

    def increment_for(self, anchor: int) -> int:
        """Step above ``anchor``; the larger step applies once a bid would reach the threshold."""

        if anchor + self.min_bid_increment >= self.increment_threshold:
            return self.high_bid_increment
        return self.min_bid_increment

    def minimum_next_bid(self, current_bid: int, base_price: int) -> int:
        """Lowest acceptable bid given the current high bid (0 when none)."""

        anchor = current_bid if current_bid > 0 else base_price
        return anchor + self.increment_for(anchor)

    def round_to_unit(self, amount: float) -> int:
        unit = self.unit
        if amount <= 0:
            return unit
        return max(unit, int(math.floor(amount / unit + 0.5)) * unit)

    def ceil_to_unit(self, amount: float) -> int:
        unit = self.unit
        if amount <= 0:
            return unit
        return max(unit, int(math.ceil(amount / unit - 1e-9)) * unit)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_AUCTION_RULES: Dict[str, AuctionRules] = {
    "APL": AuctionRules(
        key="APL",
        total_purse=100_000,
        min_bid_increment=1_000,
        increment_threshold=10_000,
        high_bid_increment=2_000,
        mandatory_team_size=12,
        min_per_player_reserve=1_000,
    ),
    "APL_MOCK": AuctionRules(
        key="APL_MOCK",
        total_purse=100_000,
        min_bid_increment=1_000,
        increment_threshold=10_000,
        high_bid_increment=2_000,
        mandatory_team_size=12,
        min_per_player_reserve=1_000,
        countdown_seconds=10,
    ),
    "SMALL_LEAGUE": AuctionRules(
        key="SMALL_LEAGUE",
        total_purse=50_000,
        min_bid_increment=500,
        increment_threshold=5_000,
        high_bid_increment=1_000,
        mandatory_team_size=8,
        min_per_player_reserve=500,
        max_team_size=10,
    ),
}

DEFAULT_RULES_KEY = "APL"


def iter_rules() -> Iterable[AuctionRules]:
    """Return an iterator of all configured rule sets."""

    return _AUCTION_RULES.values()


def get_rules(key: str = DEFAULT_RULES_KEY) -> AuctionRules:
    """Fetch rules by preset key, raising KeyError if missing."""

    normalized = key.upper()
    if normalized not in _AUCTION_RULES:
        raise KeyError(f"No auction rules configured for key={key!r}")
    return _AUCTION_RULES[normalized]


def rules_from_mapping(data: Mapping[str, Any] | None) -> AuctionRules:
    """Build rules from a preset key plus field overrides.

    Unknown keys are ignored so that stored rule blobs from older versions
    still load.
    """

    data = dict(data or {})
    base = get_rules(str(data.pop("key", DEFAULT_RULES_KEY) or DEFAULT_RULES_KEY))
    allowed = set(AuctionRules.__dataclass_fields__) - {"key"}
    overrides = {name: value for name, value in data.items() if name in allowed and value is not None}
    rules = replace(base, **overrides)
    _check_rules(rules)
    return rules


def _check_rules(rules: AuctionRules) -> None:
    if rules.min_bid_increment <= 0 or rules.high_bid_increment < rules.min_bid_increment:
        raise ValueError("bid increments must be positive and non-decreasing")
    if rules.mandatory_team_size < 1:
        raise ValueError("mandatory_team_size must be at least 1")
    if rules.max_team_size is not None and rules.max_team_size < rules.mandatory_team_size:
        raise ValueError("max_team_size cannot be below mandatory_team_size")
    if rules.min_per_player_reserve < 0 or rules.total_purse <= 0:
        raise ValueError("purse and reserve must be positive")
