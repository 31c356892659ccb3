"""Command-line interface for valuing player pools, predicting bids and serving the API."""

from __future__ import annotations

import argparse
import csv
import json
import sys
from pathlib import Path
from typing import Sequence

from pyauction.config import PredictionWeights, ValuationWeights, get_rules, iter_rules
from pyauction.config_loader import WeightsProfile
from pyauction.models import AuctionSnapshot, PlayerRecord
from pyauction.prediction import (
    AuctionDataError,
    BidPredictionEngine,
    ChatCompletionsEnhancer,
)
from pyauction.valuation import export_valuations_to_csv, normalize_attributes


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Player auction valuation, prediction and bidding service")
    parser.add_argument("--weights", type=Path, default=None, help="Load model weights profile JSON")
    parser.add_argument("--save-weights", type=Path, default=None, help="Write the effective weights profile JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--db", type=Path, default=None, help="SQLite database path")

    valuate = subparsers.add_parser("valuate", help="Value every player in a CSV")
    valuate.add_argument("players", type=Path, help="Players CSV (one row per player, stat columns as attributes)")
    valuate.add_argument(
        "--rules",
        default="APL",
        choices=[rules.key for rules in iter_rules()],
        help="Auction rules preset",
    )
    valuate.add_argument("--output", type=Path, default=Path("valuations.csv"), help="Output CSV path")

    predict = subparsers.add_parser("predict", help="Predict bidding for one player from a snapshot JSON")
    predict.add_argument("snapshot", type=Path, help="Auction snapshot JSON")
    predict.add_argument("--bidder", required=True, help="Focal bidder id")
    predict.add_argument("--player", default=None, help="Player id (defaults to the player on the block)")
    predict.add_argument(
        "--no-stats",
        action="store_true",
        help="Anchor prices on base-price multiples instead of the valuation model",
    )
    predict.add_argument(
        "--enhance",
        action="store_true",
        help="Ask the configured narrative service to refine the reasoning",
    )
    predict.add_argument("--output", type=Path, default=None, help="Write prediction JSON here instead of stdout")
    return parser.parse_args(argv)


def _load_weights(args: argparse.Namespace) -> tuple[ValuationWeights, PredictionWeights]:
    if args.weights:
        profile = WeightsProfile.load(args.weights)
        valuation, prediction = profile.valuation_weights(), profile.prediction_weights()
    else:
        valuation, prediction = ValuationWeights(), PredictionWeights()
    if args.save_weights:
        WeightsProfile.from_weights(valuation, prediction).save(args.save_weights)
        print(f"Saved weights profile to {args.save_weights}")
    return valuation, prediction


def load_players_csv(path: Path) -> list[PlayerRecord]:
    """Read a players CSV; every column is kept in the attribute bag."""

    players: list[PlayerRecord] = []
    with path.open(newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        for index, row in enumerate(reader):
            row = {key: value for key, value in row.items() if key}
            stats = normalize_attributes(row)
            player_id = (row.get("player_id") or row.get("id") or "").strip() or f"P{index + 1}"
            base_price = stats.get("base_price")
            fields = {
                "player_id": player_id,
                "name": str(stats.get("name") or ""),
                "attributes": row,
                "position": index,
            }
            if base_price not in (None, ""):
                fields["base_price"] = int(float(str(base_price).replace(",", "")))
            players.append(PlayerRecord(**fields))
    return players


def _serve(args: argparse.Namespace, valuation: ValuationWeights, prediction: PredictionWeights) -> None:
    import uvicorn

    from pyauction.api import create_app

    app = create_app(db_path=args.db, weights=prediction, valuation_weights=valuation)
    uvicorn.run(app, host=args.host, port=args.port)


def _valuate(args: argparse.Namespace, valuation: ValuationWeights) -> None:
    players = load_players_csv(args.players)
    csv_text = export_valuations_to_csv(players, rules=get_rules(args.rules), weights=valuation)
    args.output.write_text(csv_text, encoding="utf-8")
    print(f"Valued {len(players)} players; wrote {args.output}")


def _predict(args: argparse.Namespace, valuation: ValuationWeights, prediction: PredictionWeights) -> int:
    snapshot = AuctionSnapshot.from_dict(json.loads(args.snapshot.read_text(encoding="utf-8")))
    player_id = args.player or snapshot.current_player_id
    if player_id is None:
        print("No player given and none is on the block", file=sys.stderr)
        return 2

    enhancer = ChatCompletionsEnhancer.from_env() if args.enhance else None
    if args.enhance and enhancer is None:
        print("No narrative API key configured; using the local reasoning")
    engine = BidPredictionEngine(weights=prediction, valuation_weights=valuation, enhancer=enhancer)
    try:
        result = engine.predict(
            snapshot,
            player_id,
            args.bidder,
            use_external_enhancement=args.enhance,
            include_stats_valuation=not args.no_stats,
        )
    except AuctionDataError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    finally:
        if enhancer is not None:
            enhancer.close()

    payload = json.dumps(result.to_dict(), indent=2)
    if args.output:
        args.output.write_text(payload, encoding="utf-8")
        print(f"Wrote prediction to {args.output}")
    else:
        print(payload)
    action = result.recommended_action
    print(
        f"{action.action.value.upper()} (suggested {action.suggested_buy_price:,}, confidence {action.confidence:.0%})",
        file=sys.stderr,
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    valuation, prediction = _load_weights(args)

    if args.command == "serve":
        _serve(args, valuation, prediction)
        return 0
    if args.command == "valuate":
        _valuate(args, valuation)
        return 0
    return _predict(args, valuation, prediction)


if __name__ == "__main__":
    sys.exit(main())
