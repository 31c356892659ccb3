from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class PredictionRequest(BaseModel):
    focal_bidder_id: str
    player_id: str | None = None
    use_external_enhancement: bool = False
    include_stats_valuation: bool = True


class PredictionResponse(BaseModel):
    auction_id: str
    player_id: str
    focal_bidder_id: str
    likely_bidders: List[Dict[str, Any]]
    recommended_action: Dict[str, Any]
    market_analysis: Dict[str, Any]
    upcoming_high_value_players: List[Dict[str, Any]]
    narrative_source: str


class ValuationRequest(BaseModel):
    attributes: Dict[str, Any] = Field(default_factory=dict)
    base_price: int | None = Field(default=None, ge=0)
    rules_key: str = Field(default="APL")


class ValuationResponse(BaseModel):
    overall_rating: int
    batting_score: int
    bowling_score: int
    experience_score: int
    form_score: int
    allrounder_bonus: int
    keeper_bonus: int
    bonuses: int
    predicted_price: int
    min_price: int
    max_price: int
    role: str
    has_stats: bool
    base_price: int
    stats_summary: str
    reasoning: str
