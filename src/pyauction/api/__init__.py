"""REST API for the pyauction engine."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response

from pyauction.api.schemas import (
    AuctionCreateRequest,
    AuctionResponse,
    AuctionStatusRequest,
    AuctionSummary,
    BidderResponse,
    BidEntryResponse,
    BidRequest,
    LotRequest,
    LotResponse,
    PlayerResponse,
    PredictionRequest,
    PredictionResponse,
    ValuationRequest,
    ValuationResponse,
)
from pyauction.bidding import (
    AuctionNotFound,
    BidRejection,
    BidService,
    ConcurrencyConflict,
    EventPublisher,
)
from pyauction.bidding.events import EventSink
from pyauction.config import (
    AuctionRules,
    PredictionWeights,
    ValuationWeights,
    get_rules,
    rules_from_mapping,
)
from pyauction.models import AuctionSnapshot, BidderRecord, BidLedgerEntry, PlayerRecord
from pyauction.persistence import AuctionStore
from pyauction.prediction import (
    AuctionDataError,
    BidPredictionEngine,
    ChatCompletionsEnhancer,
    NarrativeEnhancer,
    get_prediction,
)
from pyauction.valuation import compute_valuation, export_valuations_to_csv


DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent / "pyauction.sqlite"


def _rejection_to_http(exc: BidRejection) -> HTTPException:
    if isinstance(exc, AuctionNotFound):
        status_code = 404
    elif isinstance(exc, ConcurrencyConflict):
        status_code = 409
    else:
        status_code = 400
    return HTTPException(status_code=status_code, detail=exc.to_dict())


def _entry_to_response(entry: BidLedgerEntry) -> BidEntryResponse:
    return BidEntryResponse.model_validate(entry.model_dump())


def _snapshot_to_response(snapshot: AuctionSnapshot) -> AuctionResponse:
    player = snapshot.current_player
    top = snapshot.current_bid(player.player_id) if player is not None else None
    minimum_next_bid = None
    if player is not None:
        minimum_next_bid = snapshot.rules.minimum_next_bid(top.amount if top else 0, player.base_price)
    return AuctionResponse(
        auction_id=snapshot.auction_id,
        name=snapshot.name,
        status=snapshot.status,
        version=snapshot.version,
        rules=snapshot.rules.to_dict(),
        current_player_id=snapshot.current_player_id,
        current_bid=top.amount if top else None,
        current_bidder_id=top.bidder_id if top else None,
        minimum_next_bid=minimum_next_bid,
        players=[
            PlayerResponse(
                player_id=item.player_id,
                name=item.display_name,
                status=item.status,
                base_price=item.base_price,
                is_icon=item.is_icon,
                position=item.position,
                sold_price=item.sold_price,
                sold_to=item.sold_to,
            )
            for item in snapshot.players
        ],
        bidders=[
            BidderResponse(
                bidder_id=bidder.bidder_id,
                name=bidder.name,
                team_name=bidder.team_name,
                initial_purse=bidder.initial_purse,
                remaining_purse=bidder.remaining_purse,
                roster_size=snapshot.roster_count(bidder.bidder_id),
            )
            for bidder in snapshot.bidders
        ],
    )


def _records_from_request(
    payload: AuctionCreateRequest,
    rules: AuctionRules,
) -> tuple[list[PlayerRecord], list[BidderRecord]]:
    player_ids = [item.player_id for item in payload.players]
    if len(set(player_ids)) != len(player_ids):
        raise HTTPException(status_code=400, detail="player_id values must be unique")
    bidder_ids = [item.bidder_id for item in payload.bidders]
    if len(set(bidder_ids)) != len(bidder_ids):
        raise HTTPException(status_code=400, detail="bidder_id values must be unique")

    players: list[PlayerRecord] = []
    for index, item in enumerate(payload.players):
        fields: dict[str, Any] = {
            "player_id": item.player_id,
            "name": item.name,
            "attributes": item.attributes,
            "is_icon": item.is_icon,
            "position": item.position if item.position is not None else index,
        }
        if item.base_price is not None:
            fields["base_price"] = item.base_price
        players.append(PlayerRecord(**fields))

    bidders = []
    for item in payload.bidders:
        purse = item.purse or rules.total_purse
        name = item.name or item.bidder_id
        bidders.append(
            BidderRecord(
                bidder_id=item.bidder_id,
                name=name,
                team_name=item.team_name or name,
                initial_purse=purse,
                remaining_purse=purse,
            )
        )
    return players, bidders


def create_app(
    store: AuctionStore | None = None,
    *,
    db_path: Path | str | None = None,
    enhancer: NarrativeEnhancer | None = None,
    event_sink: EventSink | None = None,
    weights: PredictionWeights | None = None,
    valuation_weights: ValuationWeights | None = None,
) -> FastAPI:
    store = store or AuctionStore(db_path or DEFAULT_DB_PATH)
    external = enhancer if enhancer is not None else ChatCompletionsEnhancer.from_env()
    bid_service = BidService(store, publisher=EventPublisher(event_sink))
    engine = BidPredictionEngine(weights=weights, valuation_weights=valuation_weights, enhancer=external)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        bid_service.close()
        if isinstance(external, ChatCompletionsEnhancer):
            external.close()

    app = FastAPI(title="pyauction", lifespan=lifespan)
    app.state.auction_store = store
    app.state.bid_service = bid_service
    app.state.engine = engine

    def _snapshot_or_404(auction_id: str) -> AuctionSnapshot:
        try:
            return store.load_snapshot(auction_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Auction not found") from exc

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/auctions", response_model=list[AuctionSummary])
    def list_auctions(limit: int = Query(50, ge=1, le=500)):
        return [
            AuctionSummary(
                auction_id=row["id"],
                name=row["name"],
                status=row["status"],
                version=row["version"],
                updated_at=row["updated_at"],
            )
            for row in store.list_auctions(limit=limit)
        ]

    @app.post("/auctions", response_model=AuctionResponse, status_code=201)
    def create_auction(payload: AuctionCreateRequest):
        try:
            rules = rules_from_mapping({**(payload.rules or {}), "key": payload.rules_key})
        except (KeyError, ValueError, TypeError) as exc:
            raise HTTPException(status_code=400, detail=f"Invalid rules: {exc}") from exc
        players, bidders = _records_from_request(payload, rules)
        snapshot = store.create_auction(
            name=payload.name,
            rules=rules,
            players=players,
            bidders=bidders,
            status=payload.status,
        )
        return _snapshot_to_response(snapshot)

    @app.get("/auctions/{auction_id}", response_model=AuctionResponse)
    def get_auction(auction_id: str):
        return _snapshot_to_response(_snapshot_or_404(auction_id))

    @app.post("/auctions/{auction_id}/status", response_model=AuctionResponse)
    def update_status(auction_id: str, payload: AuctionStatusRequest):
        try:
            snapshot = bid_service.set_status(
                auction_id,
                payload.status,
                expected_version=payload.expected_version,
            )
        except BidRejection as exc:
            raise _rejection_to_http(exc) from exc
        return _snapshot_to_response(snapshot)

    @app.post("/auctions/{auction_id}/bids", response_model=BidEntryResponse, status_code=201)
    def submit_bid(auction_id: str, payload: BidRequest):
        outcome = bid_service.submit_bid(
            auction_id,
            payload.bidder_id,
            payload.amount,
            player_id=payload.player_id,
            expected_version=payload.expected_version,
        )
        if not outcome.ok:
            raise _rejection_to_http(outcome.error)
        return _entry_to_response(outcome.entry)

    @app.get("/auctions/{auction_id}/players/{player_id}/bids", response_model=list[BidEntryResponse])
    def player_bids(auction_id: str, player_id: str):
        snapshot = _snapshot_or_404(auction_id)
        if snapshot.player(player_id) is None:
            raise HTTPException(status_code=404, detail="Player not found")
        return [_entry_to_response(entry) for entry in snapshot.bids_for(player_id)]

    @app.post("/auctions/{auction_id}/sell", response_model=LotResponse)
    def sell_player(auction_id: str, payload: LotRequest | None = None):
        try:
            result = bid_service.settle_player(
                auction_id,
                expected_version=payload.expected_version if payload else None,
            )
        except BidRejection as exc:
            raise _rejection_to_http(exc) from exc
        return result.to_dict()

    @app.post("/auctions/{auction_id}/unsold", response_model=LotResponse)
    def mark_unsold(auction_id: str, payload: LotRequest | None = None):
        try:
            result = bid_service.close_unsold(
                auction_id,
                expected_version=payload.expected_version if payload else None,
            )
        except BidRejection as exc:
            raise _rejection_to_http(exc) from exc
        return result.to_dict()

    @app.post("/auctions/{auction_id}/predict", response_model=PredictionResponse)
    def predict(auction_id: str, payload: PredictionRequest):
        player_id = payload.player_id
        if player_id is None:
            player_id = _snapshot_or_404(auction_id).current_player_id
            if player_id is None:
                raise HTTPException(status_code=400, detail="No player is currently up for auction")
        try:
            result = get_prediction(
                store,
                auction_id,
                player_id,
                payload.focal_bidder_id,
                use_external_enhancement=payload.use_external_enhancement,
                include_stats_valuation=payload.include_stats_valuation,
                engine=engine,
            )
        except AuctionDataError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return result.to_dict()

    @app.get("/auctions/{auction_id}/valuations.csv")
    def export_valuations(auction_id: str):
        snapshot = _snapshot_or_404(auction_id)
        csv_text = export_valuations_to_csv(
            snapshot.players,
            rules=snapshot.rules,
            weights=engine.valuation_weights,
        )
        return Response(
            content=csv_text,
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={auction_id}-valuations.csv"},
        )

    @app.post("/valuation", response_model=ValuationResponse)
    def valuation(payload: ValuationRequest):
        try:
            rules = get_rules(payload.rules_key)
        except KeyError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        score = compute_valuation(
            payload.attributes,
            payload.base_price,
            rules=rules,
            weights=engine.valuation_weights,
        )
        return score.to_dict()

    return app
