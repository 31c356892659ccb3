"""Lightweight REST client for the pyauction API."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

import httpx


def _print_response(resp: httpx.Response) -> None:
    if resp.status_code >= 400:
        try:
            detail = resp.json().get("detail")
        except ValueError:
            detail = resp.text
        raise SystemExit(f"HTTP {resp.status_code}: {json.dumps(detail, indent=2)}")
    print(json.dumps(resp.json(), indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(description="Interact with the pyauction REST API")
    parser.add_argument("base_url", help="Base URL of the API, e.g. http://localhost:8000")
    parser.add_argument("--create", type=Path, metavar="JSON", help="Create an auction from a JSON payload file")
    parser.add_argument("--list", action="store_true", help="List recent auctions and exit")
    parser.add_argument("--auction", metavar="AUCTION_ID", help="Auction to act on")
    parser.add_argument("--status", help="Move the auction to a status (LIVE, PAUSED, ENDED, ...)")
    parser.add_argument("--bid", nargs=2, metavar=("BIDDER_ID", "AMOUNT"), help="Place a bid on the current player")
    parser.add_argument("--sell", action="store_true", help="Sell the current player to the top bidder")
    parser.add_argument("--unsold", action="store_true", help="Close the current player as unsold")
    parser.add_argument("--predict", metavar="BIDDER_ID", help="Prediction for the current player from this bidder's seat")
    parser.add_argument("--enhance", action="store_true", help="Request narrative enhancement with --predict")
    parser.add_argument("--export-valuations", type=Path, metavar="CSV", help="Download the valuation CSV")
    args = parser.parse_args()

    with httpx.Client(base_url=args.base_url) as client:
        if args.list:
            _print_response(client.get("/auctions"))
            return
        if args.create:
            payload = json.loads(args.create.read_text(encoding="utf-8"))
            _print_response(client.post("/auctions", json=payload))
            return

        if not args.auction:
            raise SystemExit("--auction is required unless using --list/--create")
        base = f"/auctions/{args.auction}"

        if args.status:
            _print_response(client.post(f"{base}/status", json={"status": args.status.upper()}))
        if args.bid:
            bidder_id, amount = args.bid
            _print_response(client.post(f"{base}/bids", json={"bidder_id": bidder_id, "amount": int(amount)}))
        if args.predict:
            _print_response(
                client.post(
                    f"{base}/predict",
                    json={"focal_bidder_id": args.predict, "use_external_enhancement": args.enhance},
                )
            )
        if args.sell:
            _print_response(client.post(f"{base}/sell"))
        if args.unsold:
            _print_response(client.post(f"{base}/unsold"))
        if args.export_valuations:
            resp = client.get(f"{base}/valuations.csv")
            if resp.status_code == 404:
                raise SystemExit(f"auction {args.auction} not found")
            resp.raise_for_status()
            args.export_valuations.write_text(resp.text, encoding="utf-8")
            print(f"CSV export saved to {args.export_valuations}")
        if not any([args.status, args.bid, args.predict, args.sell, args.unsold, args.export_valuations]):
            _print_response(client.get(base))


if __name__ == "__main__":
    main()
