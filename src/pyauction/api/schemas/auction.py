from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from pyauction.models import AuctionStatus, PlayerStatus


class PlayerPayload(BaseModel):
    player_id: str = Field(..., min_length=1)
    name: str = ""
    base_price: int | None = Field(default=None, ge=0)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    is_icon: bool = False
    position: int | None = None


class BidderPayload(BaseModel):
    bidder_id: str = Field(..., min_length=1)
    name: str = ""
    team_name: str = ""
    purse: int | None = Field(default=None, gt=0)


class AuctionCreateRequest(BaseModel):
    name: str = Field(default="Auction")
    rules_key: str = Field(default="APL")
    rules: Dict[str, Any] | None = None
    status: AuctionStatus = AuctionStatus.DRAFT
    players: List[PlayerPayload] = Field(..., min_length=1)
    bidders: List[BidderPayload] = Field(..., min_length=1)


class AuctionStatusRequest(BaseModel):
    status: AuctionStatus
    expected_version: int | None = None


class PlayerResponse(BaseModel):
    player_id: str
    name: str
    status: PlayerStatus
    base_price: int
    is_icon: bool
    position: int
    sold_price: int | None
    sold_to: str | None


class BidderResponse(BaseModel):
    bidder_id: str
    name: str
    team_name: str
    initial_purse: int
    remaining_purse: int
    roster_size: int


class AuctionResponse(BaseModel):
    auction_id: str
    name: str
    status: AuctionStatus
    version: int
    rules: Dict[str, Any]
    current_player_id: str | None
    current_bid: int | None
    current_bidder_id: str | None
    minimum_next_bid: int | None
    players: List[PlayerResponse]
    bidders: List[BidderResponse]


class AuctionSummary(BaseModel):
    auction_id: str
    name: str
    status: AuctionStatus
    version: int
    updated_at: datetime
