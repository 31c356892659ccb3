"""Domain records for players, bidders, the bid ledger and auction snapshots."""

from .auction import AuctionSnapshot, AuctionStatus
from .ledger import BidLedgerEntry
from .player import BidderRecord, PlayerRecord, PlayerStatus

__all__ = [
    "AuctionSnapshot",
    "AuctionStatus",
    "BidLedgerEntry",
    "BidderRecord",
    "PlayerRecord",
    "PlayerStatus",
]
