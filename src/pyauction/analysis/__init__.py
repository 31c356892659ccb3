"""Read-path analysis over an auction snapshot."""

from .pool import AuctionStage, PoolSummary, RoleCount, SupplyImpact, analyze_pool, auction_stage, supply_impact
from .team_needs import BudgetPressure, TeamNeeds, analyze_team_needs, budget_pressure, remaining_slots

__all__ = [
    "AuctionStage",
    "BudgetPressure",
    "PoolSummary",
    "RoleCount",
    "SupplyImpact",
    "TeamNeeds",
    "analyze_pool",
    "analyze_team_needs",
    "auction_stage",
    "budget_pressure",
    "remaining_slots",
    "supply_impact",
]
