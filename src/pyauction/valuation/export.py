"""CSV export helpers for valued player pools."""

from __future__ import annotations

import csv
from io import StringIO
from typing import Sequence

from pyauction.config import AuctionRules, ValuationWeights
from pyauction.models import PlayerRecord

from .model import compute_valuation


VALUATION_HEADERS: tuple[str, ...] = (
    "player_id",
    "name",
    "status",
    "role",
    "overall_rating",
    "batting_score",
    "bowling_score",
    "experience_score",
    "form_score",
    "base_price",
    "min_price",
    "predicted_price",
    "max_price",
    "has_stats",
)


def export_valuations_to_csv(
    players: Sequence[PlayerRecord],
    *,
    rules: AuctionRules | None = None,
    weights: ValuationWeights | None = None,
) -> str:
    """Value every player and render one CSV row each, highest rating first."""

    rows = []
    for player in players:
        score = compute_valuation(player.attributes, player.base_price, rules=rules, weights=weights)
        rows.append((player, score))
    rows.sort(key=lambda item: (-item[1].overall_rating, -item[1].predicted_price, item[0].player_id))

    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(VALUATION_HEADERS)
    for player, score in rows:
        writer.writerow(
            [
                player.player_id,
                player.display_name,
                player.status.value,
                score.role.value,
                score.overall_rating,
                score.batting_score,
                score.bowling_score,
                score.experience_score,
                score.form_score,
                score.base_price,
                score.min_price,
                score.predicted_price,
                score.max_price,
                "yes" if score.has_stats else "no",
            ]
        )
    return buffer.getvalue()


__all__ = ["VALUATION_HEADERS", "export_valuations_to_csv"]
