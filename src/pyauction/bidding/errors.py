"""Typed bid rejections.

Every rejection is recoverable by the caller: retry with refreshed state or
tell the user. ``code`` is stable and safe to show in clients; ``details``
carries the numbers behind the decision.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BidRejection(Exception):
    code = "BID_REJECTED"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(BidRejection):
    code = "VALIDATION_ERROR"


class AuctionNotFound(ValidationError):
    code = "AUCTION_NOT_FOUND"


class InsufficientFunds(BidRejection):
    code = "INSUFFICIENT_FUNDS"


class BelowMinimumIncrement(BidRejection):
    code = "BELOW_MINIMUM_INCREMENT"


class AlreadyHighestBidder(BidRejection):
    code = "ALREADY_HIGHEST_BIDDER"


class RosterInfeasible(BidRejection):
    code = "ROSTER_INFEASIBLE"


class PlayerNotAvailable(BidRejection):
    code = "PLAYER_NOT_AVAILABLE"


class ConcurrencyConflict(BidRejection):
    code = "CONCURRENCY_CONFLICT"


class AuctionNotLive(BidRejection):
    code = "AUCTION_NOT_LIVE"


__all__ = [
    "AlreadyHighestBidder",
    "AuctionNotFound",
    "AuctionNotLive",
    "BelowMinimumIncrement",
    "BidRejection",
    "ConcurrencyConflict",
    "InsufficientFunds",
    "PlayerNotAvailable",
    "RosterInfeasible",
    "ValidationError",
]
