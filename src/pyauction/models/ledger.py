"""Append-only bid ledger entries."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class BidLedgerEntry(BaseModel):
    """One accepted bid. ``sequence`` is the per-auction logical timestamp."""

    auction_id: str
    sequence: int = Field(..., ge=1)
    player_id: str
    bidder_id: str
    amount: int = Field(..., gt=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)
