"""Pydantic models for API I/O."""

from .auction import (
    AuctionCreateRequest,
    AuctionResponse,
    AuctionStatusRequest,
    AuctionSummary,
    BidderPayload,
    BidderResponse,
    PlayerPayload,
    PlayerResponse,
)
from .bid import BidEntryResponse, BidRequest, LotRequest, LotResponse
from .prediction import PredictionRequest, PredictionResponse, ValuationRequest, ValuationResponse

__all__ = [
    "AuctionCreateRequest",
    "AuctionResponse",
    "AuctionStatusRequest",
    "AuctionSummary",
    "BidderPayload",
    "BidderResponse",
    "PlayerPayload",
    "PlayerResponse",
    "BidRequest",
    "BidEntryResponse",
    "LotRequest",
    "LotResponse",
    "PredictionRequest",
    "PredictionResponse",
    "ValuationRequest",
    "ValuationResponse",
]
