"""Pure bid precondition checks against one auction snapshot.

The service runs these checks inside its serialization point against the
freshly read durable state; they never mutate anything and raise the first
failing rejection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pyauction.models import AuctionSnapshot, BidderRecord, PlayerRecord, PlayerStatus

from .errors import (
    AlreadyHighestBidder,
    AuctionNotLive,
    BelowMinimumIncrement,
    ConcurrencyConflict,
    InsufficientFunds,
    PlayerNotAvailable,
    RosterInfeasible,
    ValidationError,
)


@dataclass(frozen=True)
class ValidatedBid:
    """A bid that passed every check against ``version`` of the auction."""

    auction_id: str
    player: PlayerRecord
    bidder: BidderRecord
    amount: int
    current_bid: int
    minimum_bid: int
    version: int


def reserve_required(snapshot: AuctionSnapshot, roster_size: int) -> int:
    """Purse that must stay untouched after a bid for the open mandatory slots."""

    rules = snapshot.rules
    return max(rules.mandatory_team_size - roster_size - 1, 0) * rules.min_per_player_reserve


def validate_bid(
    snapshot: AuctionSnapshot,
    bidder_id: str,
    amount: int,
    *,
    player_id: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> ValidatedBid:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Bid amount must be a positive integer", details={"amount": amount})
    bidder = snapshot.bidder(bidder_id)
    if bidder is None:
        raise ValidationError(f"Bidder {bidder_id!r} is not registered for this auction", details={"bidder_id": bidder_id})

    if not snapshot.status.is_live:
        raise AuctionNotLive(
            f"Auction is {snapshot.status.value}; bids are only accepted while live",
            details={"status": snapshot.status.value},
        )

    player = snapshot.current_player
    if player is None:
        raise PlayerNotAvailable("No player is currently up for auction")
    if player.status is not PlayerStatus.AVAILABLE:
        raise PlayerNotAvailable(
            f"{player.display_name} is {player.status.value}",
            details={"player_id": player.player_id, "status": player.status.value},
        )
    if player_id is not None and player_id != player.player_id:
        raise PlayerNotAvailable(
            "Bid targets a player that is not on the block",
            details={"player_id": player_id, "current_player_id": player.player_id},
        )

    if expected_version is not None and expected_version != snapshot.version:
        raise ConcurrencyConflict(
            "Auction state changed since it was read; refresh and retry",
            details={"expected_version": expected_version, "version": snapshot.version},
        )

    rules = snapshot.rules
    top = snapshot.current_bid(player.player_id)
    current_bid = top.amount if top is not None else 0
    minimum_bid = rules.minimum_next_bid(current_bid, player.base_price)
    if amount < minimum_bid:
        raise BelowMinimumIncrement(
            f"Bid must be at least {minimum_bid:,}",
            details={"amount": amount, "current_bid": current_bid, "minimum_bid": minimum_bid},
        )
    if amount % rules.unit:
        raise BelowMinimumIncrement(
            f"Bid must be a multiple of {rules.unit:,}",
            details={"amount": amount, "unit": rules.unit},
        )

    if amount > bidder.remaining_purse:
        raise InsufficientFunds(
            f"Bid of {amount:,} exceeds remaining purse {bidder.remaining_purse:,}",
            details={"amount": amount, "remaining_purse": bidder.remaining_purse},
        )

    if top is not None and top.bidder_id == bidder.bidder_id:
        raise AlreadyHighestBidder(
            "You are already the highest bidder",
            details={"current_bid": current_bid},
        )

    roster_size = snapshot.roster_count(bidder.bidder_id)
    if roster_size >= rules.team_cap - 1:
        raise RosterInfeasible(
            f"Squad is full at {roster_size} players",
            details={"roster_size": roster_size, "max_team_size": rules.team_cap},
        )

    reserve = reserve_required(snapshot, roster_size)
    if bidder.remaining_purse - amount < reserve:
        raise RosterInfeasible(
            f"Bid would leave {bidder.remaining_purse - amount:,}, below the {reserve:,} reserve for open slots",
            details={
                "amount": amount,
                "remaining_purse": bidder.remaining_purse,
                "roster_size": roster_size,
                "reserve_required": reserve,
            },
        )

    return ValidatedBid(
        auction_id=snapshot.auction_id,
        player=player,
        bidder=bidder,
        amount=amount,
        current_bid=current_bid,
        minimum_bid=minimum_bid,
        version=snapshot.version,
    )


__all__ = ["ValidatedBid", "reserve_required", "validate_bid"]
