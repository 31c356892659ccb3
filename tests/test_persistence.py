import pytest

from pyauction.config import rules_from_mapping
from pyauction.models import AuctionStatus, PlayerStatus
from pyauction.persistence import AuctionStore

from tests.factories import sample_bidders, sample_players


@pytest.fixture
def store(tmp_path, monkeypatch):
    monkeypatch.delenv("PYAUCTION_DB_PATH", raising=False)
    return AuctionStore(tmp_path / "auction.sqlite")


def _create(store: AuctionStore, **kwargs):
    players = sample_players()[::-1]
    return store.create_auction(
        name="Spring auction",
        rules=rules_from_mapping({"key": "SMALL_LEAGUE", "countdown_seconds": 12}),
        players=players,
        bidders=sample_bidders(50_000),
        **kwargs,
    )


def test_create_and_load_round_trip(store):
    created = _create(store, status=AuctionStatus.LIVE, auction_id="spring")
    loaded = store.load_snapshot("spring")

    assert created == loaded
    assert loaded.name == "Spring auction"
    assert loaded.status is AuctionStatus.LIVE
    assert loaded.rules.key == "SMALL_LEAGUE"
    assert loaded.rules.countdown_seconds == 12
    assert [player.player_id for player in loaded.players] == ["p1", "p2", "p3", "p4"]
    assert loaded.current_player_id == "p1"
    assert loaded.version == 0
    assert loaded.player("p3").attributes["Is Keeper"] == "Yes"
    assert loaded.bidder("b2").remaining_purse == 50_000


def test_load_missing_auction_raises_key_error(store):
    with pytest.raises(KeyError):
        store.load_snapshot("nope")


def test_append_bid_requires_current_version(store):
    snapshot = _create(store)

    entry = store.append_bid(snapshot.auction_id, expected_version=0, player_id="p1", bidder_id="b1", amount=1_000)
    assert entry.sequence == 1
    stale = store.append_bid(snapshot.auction_id, expected_version=0, player_id="p1", bidder_id="b2", amount=1_500)
    assert stale is None

    second = store.append_bid(snapshot.auction_id, expected_version=1, player_id="p1", bidder_id="b2", amount=1_500)
    assert second.sequence == 2

    loaded = store.load_snapshot(snapshot.auction_id)
    assert loaded.version == 2
    assert [(entry.bidder_id, entry.amount) for entry in loaded.ledger] == [("b1", 1_000), ("b2", 1_500)]
    assert [entry.sequence for entry in store.list_bids(snapshot.auction_id, "p1")] == [1, 2]


def test_record_sale_charges_winner_and_advances(store):
    snapshot = _create(store)
    store.append_bid(snapshot.auction_id, expected_version=0, player_id="p1", bidder_id="b3", amount=4_000)

    assert not store.record_sale(
        snapshot.auction_id, expected_version=0, player_id="p1", bidder_id="b3", amount=4_000, next_player_id="p2"
    )
    assert store.record_sale(
        snapshot.auction_id, expected_version=1, player_id="p1", bidder_id="b3", amount=4_000, next_player_id="p2"
    )

    loaded = store.load_snapshot(snapshot.auction_id)
    player = loaded.player("p1")
    assert player.status is PlayerStatus.SOLD
    assert (player.sold_to, player.sold_price) == ("b3", 4_000)
    assert loaded.bidder("b3").remaining_purse == 46_000
    assert loaded.current_player_id == "p2"
    assert loaded.version == 2


def test_record_unsold_and_status(store):
    snapshot = _create(store)
    assert store.record_unsold(snapshot.auction_id, expected_version=0, player_id="p1", next_player_id="p2")
    assert store.record_status(snapshot.auction_id, expected_version=1, status=AuctionStatus.PAUSED)

    loaded = store.load_snapshot(snapshot.auction_id)
    assert loaded.player("p1").status is PlayerStatus.UNSOLD
    assert loaded.status is AuctionStatus.PAUSED
    assert loaded.version == 2


def test_list_auctions(store):
    snapshot = _create(store)
    rows = store.list_auctions()
    assert [row["id"] for row in rows] == [snapshot.auction_id]
    assert rows[0]["status"] == "DRAFT"


def test_db_path_environment_override(tmp_path, monkeypatch):
    target = tmp_path / "env" / "override.sqlite"
    monkeypatch.setenv("PYAUCTION_DB_PATH", str(target))
    store = AuctionStore(tmp_path / "ignored.sqlite")
    assert store.db_path == target
    assert target.exists()
