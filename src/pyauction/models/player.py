"""Canonical player and bidder records shared by the read and write paths."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic.config import ConfigDict


class PlayerStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    SOLD = "SOLD"
    UNSOLD = "UNSOLD"
    RETIRED = "RETIRED"


class PlayerRecord(BaseModel):
    """An auction lot: base price plus a free-form attribute bag."""

    player_id: str = Field(..., min_length=1)
    name: str = ""
    status: PlayerStatus = PlayerStatus.AVAILABLE
    base_price: int = Field(default=1_000, ge=0)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    is_icon: bool = False
    position: int = 0
    sold_price: Optional[int] = Field(default=None, ge=0)
    sold_to: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_sale_fields(self) -> "PlayerRecord":
        sold = self.status is PlayerStatus.SOLD
        if sold and (self.sold_to is None or self.sold_price is None):
            raise ValueError("SOLD players need sold_to and sold_price")
        if not sold and (self.sold_to is not None or self.sold_price is not None):
            raise ValueError("only SOLD players carry sale fields")
        return self

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        for key in ("Name", "name"):
            value = self.attributes.get(key)
            if value:
                return str(value)
        return self.player_id


class BidderRecord(BaseModel):
    """A participant with a purse; the roster is derived from sold players."""

    bidder_id: str = Field(..., min_length=1)
    name: str = ""
    team_name: str = ""
    initial_purse: int = Field(..., ge=0)
    remaining_purse: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_purse(self) -> "BidderRecord":
        if self.remaining_purse > self.initial_purse:
            raise ValueError("remaining_purse cannot exceed initial_purse")
        return self

    @property
    def label(self) -> str:
        return self.team_name or self.name or self.bidder_id

    @property
    def spent(self) -> int:
        return self.initial_purse - self.remaining_purse
