"""Configuration helpers for auction rules and model tunables."""

from .rules import AuctionRules, DEFAULT_RULES_KEY, get_rules, iter_rules, rules_from_mapping
from .weights import (
    PredictionWeights,
    ValuationWeights,
    commit_retries,
    lock_timeout_seconds,
    weights_from_mapping,
)

__all__ = [
    "AuctionRules",
    "DEFAULT_RULES_KEY",
    "PredictionWeights",
    "ValuationWeights",
    "commit_retries",
    "get_rules",
    "iter_rules",
    "lock_timeout_seconds",
    "rules_from_mapping",
    "weights_from_mapping",
]
