"""Bid transactions: serialize, validate, commit, then publish.

All writes for one auction pass through a bounded per-auction lock and a
version compare-and-swap in the store. Validation always runs against state
read inside that serialization point, so a bid accepted here was checked
against the purse, roster and top bid it is committed on top of.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

from pyauction.config import commit_retries, lock_timeout_seconds
from pyauction.models import (
    AuctionSnapshot,
    AuctionStatus,
    BidderRecord,
    BidLedgerEntry,
    PlayerRecord,
    PlayerStatus,
)
from pyauction.persistence import AuctionStore

from .errors import (
    AuctionNotFound,
    AuctionNotLive,
    BidRejection,
    ConcurrencyConflict,
    InsufficientFunds,
    PlayerNotAvailable,
    ValidationError,
)
from .events import AUCTION_STATUS, NEW_BID, PLAYER_SOLD, PLAYER_UNSOLD, EventPublisher
from .locks import AuctionLocks
from .validator import validate_bid


logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

_STATUS_TRANSITIONS: Dict[AuctionStatus, frozenset] = {
    AuctionStatus.DRAFT: frozenset({AuctionStatus.LIVE, AuctionStatus.MOCK_RUN, AuctionStatus.ENDED}),
    AuctionStatus.LIVE: frozenset({AuctionStatus.PAUSED, AuctionStatus.ENDED}),
    AuctionStatus.MOCK_RUN: frozenset({AuctionStatus.PAUSED, AuctionStatus.ENDED, AuctionStatus.DRAFT}),
    AuctionStatus.PAUSED: frozenset({AuctionStatus.LIVE, AuctionStatus.MOCK_RUN, AuctionStatus.ENDED}),
    AuctionStatus.ENDED: frozenset(),
}


@dataclass(frozen=True)
class BidOutcome:
    ok: bool
    entry: Optional[BidLedgerEntry] = None
    error: Optional[BidRejection] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "entry": self.entry.model_dump(mode="json") if self.entry else None,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class LotResult:
    """Outcome of closing the lot on the block, sold or unsold."""

    auction_id: str
    player: PlayerRecord
    status: PlayerStatus
    winner: Optional[BidderRecord]
    amount: Optional[int]
    next_player_id: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auction_id": self.auction_id,
            "player_id": self.player.player_id,
            "player_name": self.player.display_name,
            "status": self.status.value,
            "winner_id": self.winner.bidder_id if self.winner else None,
            "winner_team": self.winner.team_name if self.winner else None,
            "amount": self.amount,
            "next_player_id": self.next_player_id,
        }


def next_lot(snapshot: AuctionSnapshot, after_player_id: Optional[str]) -> Optional[str]:
    """First AVAILABLE player after ``after_player_id`` in running order, wrapping once."""

    available = [
        player for player in snapshot.players
        if player.status is PlayerStatus.AVAILABLE and player.player_id != after_player_id
    ]
    if not available:
        return None
    current = snapshot.player(after_player_id) if after_player_id else None
    if current is not None:
        for player in available:
            if player.position > current.position:
                return player.player_id
    return available[0].player_id


def _check_version(snapshot: AuctionSnapshot, expected_version: Optional[int]) -> None:
    if expected_version is not None and expected_version != snapshot.version:
        raise ConcurrencyConflict(
            "Auction state changed since it was read; refresh and retry",
            details={"expected_version": expected_version, "version": snapshot.version},
        )


def _lot_on_block(snapshot: AuctionSnapshot) -> PlayerRecord:
    if not snapshot.status.is_live:
        raise AuctionNotLive(
            f"Auction is {snapshot.status.value}; lots can only be closed while live",
            details={"status": snapshot.status.value},
        )
    player = snapshot.current_player
    if player is None or player.status is not PlayerStatus.AVAILABLE:
        raise PlayerNotAvailable("No player is currently up for auction")
    return player


class BidService:
    def __init__(
        self,
        store: AuctionStore,
        *,
        publisher: Optional[EventPublisher] = None,
        lock_timeout: Optional[float] = None,
        retries: Optional[int] = None,
    ) -> None:
        self.store = store
        self.publisher = publisher or EventPublisher()
        self.lock_timeout = lock_timeout if lock_timeout is not None else lock_timeout_seconds()
        self.retries = max(1, retries if retries is not None else commit_retries())
        self._locks = AuctionLocks()

    def close(self) -> None:
        self.publisher.close()

    def _load(self, auction_id: str) -> AuctionSnapshot:
        try:
            return self.store.load_snapshot(auction_id)
        except KeyError as exc:
            raise AuctionNotFound(f"Auction {auction_id} not found", details={"auction_id": auction_id}) from exc

    def _serialized(self, auction_id: str, reason: str, attempt: Callable[[AuctionSnapshot], Optional[T]]) -> T:
        """Run ``attempt`` on fresh state until its commit wins the version race.

        ``attempt`` returns ``None`` when the store's compare-and-swap lost.
        """

        try:
            with self._locks.hold(auction_id, timeout_s=self.lock_timeout, reason=reason):
                for tries in range(1, self.retries + 1):
                    result = attempt(self._load(auction_id))
                    if result is not None:
                        return result
                    logger.info("Auction %s %s lost a version race (attempt %d/%d)", auction_id, reason, tries, self.retries)
                raise ConcurrencyConflict(
                    f"Auction {auction_id} is busy; retry",
                    details={"attempts": self.retries},
                )
        except TimeoutError as exc:
            raise ConcurrencyConflict(
                f"Auction {auction_id} is busy; retry",
                details={"lock_timeout_seconds": self.lock_timeout},
            ) from exc
        except sqlite3.OperationalError as exc:
            logger.warning("Auction %s %s hit a busy database: %s", auction_id, reason, exc)
            raise ConcurrencyConflict(
                f"Auction {auction_id} is busy; retry",
                details={"database": str(exc)},
            ) from exc

    def submit_bid(
        self,
        auction_id: str,
        bidder_id: str,
        amount: int,
        *,
        player_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> BidOutcome:
        """Validate and durably record a bid.

        Rejections are returned in the outcome, never raised, and leave no
        trace in the ledger.
        """

        context: Dict[str, Any] = {}

        def attempt(snapshot: AuctionSnapshot) -> Optional[BidLedgerEntry]:
            bid = validate_bid(
                snapshot,
                bidder_id,
                amount,
                player_id=player_id,
                expected_version=expected_version,
            )
            context["bid"] = bid
            context["rules"] = snapshot.rules
            return self.store.append_bid(
                auction_id,
                expected_version=bid.version,
                player_id=bid.player.player_id,
                bidder_id=bid.bidder.bidder_id,
                amount=bid.amount,
            )

        try:
            entry = self._serialized(auction_id, "bid", attempt)
        except BidRejection as exc:
            logger.debug("Rejected bid %s from %s on auction %s: %s", amount, bidder_id, auction_id, exc.code)
            return BidOutcome(ok=False, error=exc)

        bid = context["bid"]
        logger.info(
            "Auction %s: %s bid %s for %s (seq %d)",
            auction_id,
            bid.bidder.label,
            f"{entry.amount:,}",
            bid.player.display_name,
            entry.sequence,
        )
        self.publisher.publish(
            auction_id,
            NEW_BID,
            {
                "sequence": entry.sequence,
                "player_id": entry.player_id,
                "player_name": bid.player.display_name,
                "bidder_id": entry.bidder_id,
                "team_name": bid.bidder.team_name,
                "amount": entry.amount,
                "previous_bid": bid.current_bid,
                "countdown_seconds": context["rules"].countdown_seconds,
                "created_at": entry.created_at.isoformat(),
            },
        )
        return BidOutcome(ok=True, entry=entry)

    def settle_player(self, auction_id: str, *, expected_version: Optional[int] = None) -> LotResult:
        """Sell the player on the block to the top bidder and advance the lot."""

        def attempt(snapshot: AuctionSnapshot) -> Optional[LotResult]:
            _check_version(snapshot, expected_version)
            player = _lot_on_block(snapshot)
            top = snapshot.current_bid(player.player_id)
            if top is None:
                raise ValidationError(
                    f"{player.display_name} has no bids; close the lot as unsold instead",
                    details={"player_id": player.player_id},
                )
            winner = snapshot.bidder(top.bidder_id)
            if winner is None:
                raise ValidationError("Winning bidder is no longer registered", details={"bidder_id": top.bidder_id})
            if top.amount > winner.remaining_purse:
                raise InsufficientFunds(
                    f"{winner.label} cannot cover {top.amount:,}",
                    details={"amount": top.amount, "remaining_purse": winner.remaining_purse},
                )
            following = next_lot(snapshot, player.player_id)
            committed = self.store.record_sale(
                auction_id,
                expected_version=snapshot.version,
                player_id=player.player_id,
                bidder_id=winner.bidder_id,
                amount=top.amount,
                next_player_id=following,
            )
            if not committed:
                return None
            return LotResult(
                auction_id=auction_id,
                player=player,
                status=PlayerStatus.SOLD,
                winner=winner,
                amount=top.amount,
                next_player_id=following,
            )

        result = self._serialized(auction_id, "sale", attempt)
        logger.info(
            "Auction %s: %s sold to %s for %s",
            auction_id,
            result.player.display_name,
            result.winner.label if result.winner else "?",
            f"{result.amount:,}",
        )
        self.publisher.publish(auction_id, PLAYER_SOLD, result.to_dict())
        return result

    def close_unsold(self, auction_id: str, *, expected_version: Optional[int] = None) -> LotResult:
        """Close the lot on the block without a sale; only allowed with no bids."""

        def attempt(snapshot: AuctionSnapshot) -> Optional[LotResult]:
            _check_version(snapshot, expected_version)
            player = _lot_on_block(snapshot)
            if snapshot.current_bid(player.player_id) is not None:
                raise ValidationError(
                    f"{player.display_name} has bids; sell the player instead",
                    details={"player_id": player.player_id},
                )
            following = next_lot(snapshot, player.player_id)
            committed = self.store.record_unsold(
                auction_id,
                expected_version=snapshot.version,
                player_id=player.player_id,
                next_player_id=following,
            )
            if not committed:
                return None
            return LotResult(
                auction_id=auction_id,
                player=player,
                status=PlayerStatus.UNSOLD,
                winner=None,
                amount=None,
                next_player_id=following,
            )

        result = self._serialized(auction_id, "unsold", attempt)
        logger.info("Auction %s: %s went unsold", auction_id, result.player.display_name)
        self.publisher.publish(auction_id, PLAYER_UNSOLD, result.to_dict())
        return result

    def set_status(
        self,
        auction_id: str,
        status: AuctionStatus,
        *,
        expected_version: Optional[int] = None,
    ) -> AuctionSnapshot:
        def attempt(snapshot: AuctionSnapshot) -> Optional[AuctionStatus]:
            _check_version(snapshot, expected_version)
            if status is snapshot.status:
                return snapshot.status
            if status not in _STATUS_TRANSITIONS[snapshot.status]:
                raise ValidationError(
                    f"Cannot move auction from {snapshot.status.value} to {status.value}",
                    details={"status": snapshot.status.value, "requested": status.value},
                )
            committed = self.store.record_status(auction_id, expected_version=snapshot.version, status=status)
            return snapshot.status if committed else None

        previous = self._serialized(auction_id, "status", attempt)
        if previous is not status:
            logger.info("Auction %s: %s -> %s", auction_id, previous.value, status.value)
            self.publisher.publish(
                auction_id,
                AUCTION_STATUS,
                {"previous": previous.value, "status": status.value},
            )
        return self._load(auction_id)


__all__ = ["BidOutcome", "BidService", "LotResult", "next_lot"]
