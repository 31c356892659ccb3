from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from pyauction.models import PlayerStatus


class BidRequest(BaseModel):
    bidder_id: str
    amount: int
    player_id: str | None = None
    expected_version: int | None = None


class BidEntryResponse(BaseModel):
    auction_id: str
    sequence: int
    player_id: str
    bidder_id: str
    amount: int
    created_at: datetime


class LotRequest(BaseModel):
    expected_version: int | None = None


class LotResponse(BaseModel):
    auction_id: str
    player_id: str
    player_name: str
    status: PlayerStatus
    winner_id: str | None
    winner_team: str | None
    amount: int | None
    next_player_id: str | None
