"""Player valuation from raw performance attributes."""

from .export import export_valuations_to_csv
from .model import (
    Role,
    ValuationScore,
    compute_valuation,
    derive_role,
    normalize_attributes,
    value_players,
)

__all__ = [
    "Role",
    "ValuationScore",
    "compute_valuation",
    "derive_role",
    "export_valuations_to_csv",
    "normalize_attributes",
    "value_players",
]
