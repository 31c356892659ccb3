import csv
from io import StringIO

import pytest
from httpx import ASGITransport, AsyncClient

from pyauction.api import create_app
from pyauction.bidding import MemoryEventSink
from pyauction.bidding.events import NEW_BID
from pyauction.persistence import AuctionStore

from tests.factories import KEEPER_ALLROUNDER, SEAM_BOWLER, STAR_BATTER


@pytest.fixture
async def client(tmp_path, monkeypatch):
    for name in ("PYAUCTION_DB_PATH", "PYAUCTION_NARRATIVE_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    sink = MemoryEventSink()
    app = create_app(AuctionStore(tmp_path / "api.sqlite"), event_sink=sink)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        async_client.app = app
        async_client.sink = sink
        yield async_client
    app.state.bid_service.close()


def _auction_payload(**overrides) -> dict:
    payload = {
        "name": "Club auction",
        "players": [
            {"player_id": "p1", "name": "Rohan Mehta", "attributes": STAR_BATTER},
            {"player_id": "p2", "name": "Dev Iyer", "attributes": SEAM_BOWLER},
            {"player_id": "p3", "name": "Kiran Rao", "attributes": KEEPER_ALLROUNDER},
            {"player_id": "p4", "name": "Unlisted", "base_price": 2000},
        ],
        "bidders": [
            {"bidder_id": "b1", "name": "Asha", "team_name": "Falcons"},
            {"bidder_id": "b2", "name": "Ben", "team_name": "Hawks"},
            {"bidder_id": "b3", "name": "Chen", "team_name": "Owls"},
        ],
    }
    payload.update(overrides)
    return payload


async def _create_live(client: AsyncClient) -> str:
    resp = await client.post("/auctions", json=_auction_payload(status="LIVE"))
    assert resp.status_code == 201
    return resp.json()["auction_id"]


@pytest.mark.anyio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.anyio
async def test_create_auction(client: AsyncClient):
    resp = await client.post("/auctions", json=_auction_payload())
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "DRAFT"
    assert body["version"] == 0
    assert body["current_player_id"] == "p1"
    assert body["current_bid"] is None
    assert body["minimum_next_bid"] == 2000
    assert body["rules"]["key"] == "APL"
    assert [player["position"] for player in body["players"]] == [0, 1, 2, 3]
    assert body["bidders"][0]["remaining_purse"] == 100000
    assert body["bidders"][0]["roster_size"] == 0

    listed = await client.get("/auctions")
    assert [item["auction_id"] for item in listed.json()] == [body["auction_id"]]

    fetched = await client.get(f"/auctions/{body['auction_id']}")
    assert fetched.status_code == 200
    assert fetched.json() == body


@pytest.mark.anyio
async def test_create_auction_rejects_bad_input(client: AsyncClient):
    resp = await client.post("/auctions", json=_auction_payload(rules_key="NOPE"))
    assert resp.status_code == 400

    resp = await client.post("/auctions", json=_auction_payload(rules={"min_bid_increment": 0}))
    assert resp.status_code == 400

    duplicate = _auction_payload()
    duplicate["bidders"].append({"bidder_id": "b1"})
    resp = await client.post("/auctions", json=duplicate)
    assert resp.status_code == 400

    resp = await client.post("/auctions", json=_auction_payload(players=[]))
    assert resp.status_code == 422


@pytest.mark.anyio
async def test_missing_auction_is_404(client: AsyncClient):
    assert (await client.get("/auctions/missing")).status_code == 404
    resp = await client.post("/auctions/missing/bids", json={"bidder_id": "b1", "amount": 2000})
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "AUCTION_NOT_FOUND"


@pytest.mark.anyio
async def test_bidding_requires_live_status(client: AsyncClient):
    resp = await client.post("/auctions", json=_auction_payload())
    auction_id = resp.json()["auction_id"]

    resp = await client.post(f"/auctions/{auction_id}/bids", json={"bidder_id": "b1", "amount": 2000})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "AUCTION_NOT_LIVE"

    resp = await client.post(f"/auctions/{auction_id}/status", json={"status": "LIVE"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "LIVE"
    assert resp.json()["version"] == 1

    resp = await client.post(f"/auctions/{auction_id}/bids", json={"bidder_id": "b1", "amount": 2000})
    assert resp.status_code == 201

    await client.post(f"/auctions/{auction_id}/status", json={"status": "ENDED"})
    resp = await client.post(f"/auctions/{auction_id}/status", json={"status": "LIVE"})
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_bid_flow(client: AsyncClient):
    auction_id = await _create_live(client)

    resp = await client.post(f"/auctions/{auction_id}/bids", json={"bidder_id": "b1", "amount": 2000})
    assert resp.status_code == 201
    assert resp.json()["sequence"] == 1
    assert resp.json()["player_id"] == "p1"

    resp = await client.post(f"/auctions/{auction_id}/bids", json={"bidder_id": "b1", "amount": 3000})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "ALREADY_HIGHEST_BIDDER"

    resp = await client.post(f"/auctions/{auction_id}/bids", json={"bidder_id": "b2", "amount": 2500})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "BELOW_MINIMUM_INCREMENT"
    assert resp.json()["detail"]["details"]["minimum_bid"] == 3000

    resp = await client.post(
        f"/auctions/{auction_id}/bids",
        json={"bidder_id": "b2", "amount": 3000, "expected_version": 0},
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "CONCURRENCY_CONFLICT"

    resp = await client.post(
        f"/auctions/{auction_id}/bids",
        json={"bidder_id": "b2", "amount": 3000, "expected_version": 1},
    )
    assert resp.status_code == 201

    auction = (await client.get(f"/auctions/{auction_id}")).json()
    assert auction["current_bid"] == 3000
    assert auction["current_bidder_id"] == "b2"
    assert auction["minimum_next_bid"] == 4000

    resp = await client.get(f"/auctions/{auction_id}/players/p1/bids")
    assert [(item["bidder_id"], item["amount"]) for item in resp.json()] == [("b1", 2000), ("b2", 3000)]
    assert (await client.get(f"/auctions/{auction_id}/players/zz/bids")).status_code == 404

    client.app.state.bid_service.publisher.flush()
    assert [event["amount"] for event in client.sink.named(NEW_BID)] == [2000, 3000]


@pytest.mark.anyio
async def test_sell_and_unsold(client: AsyncClient):
    auction_id = await _create_live(client)

    resp = await client.post(f"/auctions/{auction_id}/unsold")
    assert resp.status_code == 200
    assert resp.json()["status"] == "UNSOLD"
    assert resp.json()["next_player_id"] == "p2"

    resp = await client.post(f"/auctions/{auction_id}/sell")
    assert resp.status_code == 400

    await client.post(f"/auctions/{auction_id}/bids", json={"bidder_id": "b3", "amount": 2000})
    resp = await client.post(f"/auctions/{auction_id}/sell", json={"expected_version": 2})
    assert resp.status_code == 200
    body = resp.json()
    assert body["player_id"] == "p2"
    assert body["winner_id"] == "b3"
    assert body["winner_team"] == "Owls"
    assert body["amount"] == 2000
    assert body["next_player_id"] == "p3"

    auction = (await client.get(f"/auctions/{auction_id}")).json()
    owls = next(item for item in auction["bidders"] if item["bidder_id"] == "b3")
    assert owls["remaining_purse"] == 98000
    assert owls["roster_size"] == 1


@pytest.mark.anyio
async def test_predict_endpoint(client: AsyncClient):
    auction_id = await _create_live(client)
    await client.post(f"/auctions/{auction_id}/bids", json={"bidder_id": "b2", "amount": 2000})

    resp = await client.post(f"/auctions/{auction_id}/predict", json={"focal_bidder_id": "b1"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["player_id"] == "p1"
    assert body["narrative_source"] == "local"
    assert body["market_analysis"]["current_bid"] == 2000
    assert body["market_analysis"]["minimum_next_bid"] == 3000
    assert body["recommended_action"]["action"] in {"bid", "pass", "wait"}
    assert {item["bidder_id"] for item in body["likely_bidders"]} <= {"b1", "b2", "b3"}

    resp = await client.post(
        f"/auctions/{auction_id}/predict",
        json={"focal_bidder_id": "nobody", "player_id": "p1"},
    )
    assert resp.status_code == 404


@pytest.mark.anyio
async def test_valuation_endpoint(client: AsyncClient):
    resp = await client.post("/valuation", json={"attributes": STAR_BATTER})
    assert resp.status_code == 200
    body = resp.json()
    assert body["role"] == "BATTER"
    assert body["overall_rating"] == 46
    assert body["predicted_price"] == 6000
    assert body["has_stats"] is True

    resp = await client.post("/valuation", json={"attributes": {}, "rules_key": "NOPE"})
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_valuations_csv_export(client: AsyncClient):
    auction_id = await _create_live(client)
    resp = await client.get(f"/auctions/{auction_id}/valuations.csv")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    rows = list(csv.DictReader(StringIO(resp.text)))
    assert [row["player_id"] for row in rows][0] == "p3"
    assert {row["player_id"] for row in rows} == {"p1", "p2", "p3", "p4"}
    batter = next(row for row in rows if row["player_id"] == "p1")
    assert batter["predicted_price"] == "6000"
