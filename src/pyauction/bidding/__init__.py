"""Bid validation and transactional bid recording."""

from .errors import (
    AlreadyHighestBidder,
    AuctionNotFound,
    AuctionNotLive,
    BelowMinimumIncrement,
    BidRejection,
    ConcurrencyConflict,
    InsufficientFunds,
    PlayerNotAvailable,
    RosterInfeasible,
    ValidationError,
)
from .events import EventPublisher, LoggingEventSink, MemoryEventSink
from .service import BidOutcome, BidService, LotResult
from .validator import ValidatedBid, reserve_required, validate_bid

__all__ = [
    "AlreadyHighestBidder",
    "AuctionNotFound",
    "AuctionNotLive",
    "BelowMinimumIncrement",
    "BidOutcome",
    "BidRejection",
    "BidService",
    "ConcurrencyConflict",
    "EventPublisher",
    "InsufficientFunds",
    "LoggingEventSink",
    "LotResult",
    "MemoryEventSink",
    "PlayerNotAvailable",
    "RosterInfeasible",
    "ValidatedBid",
    "ValidationError",
    "reserve_required",
    "validate_bid",
]
