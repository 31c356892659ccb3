"""Consistent, read-only view of one auction's state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pyauction.config import AuctionRules, rules_from_mapping

from .ledger import BidLedgerEntry
from .player import BidderRecord, PlayerRecord, PlayerStatus


class AuctionStatus(str, Enum):
    DRAFT = "DRAFT"
    LIVE = "LIVE"
    MOCK_RUN = "MOCK_RUN"
    PAUSED = "PAUSED"
    ENDED = "ENDED"

    @property
    def is_live(self) -> bool:
        return self in (AuctionStatus.LIVE, AuctionStatus.MOCK_RUN)


@dataclass(frozen=True)
class AuctionSnapshot:
    auction_id: str
    status: AuctionStatus
    rules: AuctionRules
    players: Tuple[PlayerRecord, ...]
    bidders: Tuple[BidderRecord, ...]
    ledger: Tuple[BidLedgerEntry, ...] = ()
    current_player_id: Optional[str] = None
    version: int = 0
    name: str = ""
    _players_by_id: Dict[str, PlayerRecord] = field(default_factory=dict, init=False, repr=False, compare=False)
    _bidders_by_id: Dict[str, BidderRecord] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # frozen dataclass: populate lookup caches through object.__setattr__
        object.__setattr__(self, "_players_by_id", {p.player_id: p for p in self.players})
        object.__setattr__(self, "_bidders_by_id", {b.bidder_id: b for b in self.bidders})

    def player(self, player_id: str) -> Optional[PlayerRecord]:
        return self._players_by_id.get(player_id)

    def bidder(self, bidder_id: str) -> Optional[BidderRecord]:
        return self._bidders_by_id.get(bidder_id)

    @property
    def current_player(self) -> Optional[PlayerRecord]:
        if self.current_player_id is None:
            return None
        return self.player(self.current_player_id)

    def bids_for(self, player_id: str) -> List[BidLedgerEntry]:
        """Ledger entries for one player, oldest first."""

        return sorted(
            (entry for entry in self.ledger if entry.player_id == player_id),
            key=lambda entry: entry.sequence,
        )

    def current_bid(self, player_id: str) -> Optional[BidLedgerEntry]:
        bids = self.bids_for(player_id)
        return bids[-1] if bids else None

    def roster(self, bidder_id: str) -> List[PlayerRecord]:
        return [
            player
            for player in self.players
            if player.status is PlayerStatus.SOLD and player.sold_to == bidder_id
        ]

    def roster_count(self, bidder_id: str) -> int:
        return len(self.roster(bidder_id))

    def available_players(self) -> List[PlayerRecord]:
        return [player for player in self.players if player.status is PlayerStatus.AVAILABLE]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuctionSnapshot":
        """Build a snapshot from a plain JSON document (CLI and fixtures)."""

        auction_id = str(data.get("auction_id") or data.get("id") or "")
        if not auction_id:
            raise ValueError("snapshot needs an auction_id")
        ledger: Iterable[Mapping[str, Any]] = data.get("ledger") or []
        entries = []
        for index, raw in enumerate(ledger, start=1):
            payload = dict(raw)
            payload.setdefault("auction_id", auction_id)
            payload.setdefault("sequence", index)
            entries.append(BidLedgerEntry.model_validate(payload))
        return cls(
            auction_id=auction_id,
            name=str(data.get("name") or ""),
            status=AuctionStatus(str(data.get("status", AuctionStatus.LIVE.value)).upper()),
            rules=rules_from_mapping(data.get("rules")),
            players=tuple(PlayerRecord.model_validate(p) for p in data.get("players") or []),
            bidders=tuple(BidderRecord.model_validate(b) for b in data.get("bidders") or []),
            ledger=tuple(entries),
            current_player_id=data.get("current_player_id"),
            version=int(data.get("version") or len(entries)),
        )
