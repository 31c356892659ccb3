"""Bidder-behaviour prediction and the optional narrative collaborator."""

from .engine import (
    Action,
    AuctionDataError,
    BidPredictionEngine,
    CompetitionLevel,
    LikelyBidder,
    MarketAnalysis,
    NarrativeEnhancer,
    PredictionResult,
    RecommendedAction,
    get_prediction,
)
from .narrative import ChatCompletionsEnhancer, NarrativeClientError
from .upcoming import UpcomingPlayer, rank_upcoming_players

__all__ = [
    "Action",
    "AuctionDataError",
    "BidPredictionEngine",
    "ChatCompletionsEnhancer",
    "CompetitionLevel",
    "LikelyBidder",
    "MarketAnalysis",
    "NarrativeClientError",
    "NarrativeEnhancer",
    "PredictionResult",
    "RecommendedAction",
    "UpcomingPlayer",
    "get_prediction",
    "rank_upcoming_players",
]
