import sqlite3
import threading

import pytest

from pyauction.bidding import (
    AuctionNotLive,
    BidService,
    ConcurrencyConflict,
    EventPublisher,
    MemoryEventSink,
    PlayerNotAvailable,
    ValidationError,
)
from pyauction.bidding.events import AUCTION_STATUS, NEW_BID, PLAYER_SOLD, PLAYER_UNSOLD
from pyauction.bidding.service import next_lot
from pyauction.config import get_rules
from pyauction.models import AuctionStatus, BidderRecord, PlayerStatus
from pyauction.persistence import AuctionStore

from tests.factories import make_snapshot, sample_bidders, sample_players, sold


@pytest.fixture
def store(tmp_path, monkeypatch):
    monkeypatch.delenv("PYAUCTION_DB_PATH", raising=False)
    return AuctionStore(tmp_path / "auction.sqlite")


@pytest.fixture
def sink():
    return MemoryEventSink()


@pytest.fixture
def service(store, sink):
    service = BidService(store, publisher=EventPublisher(sink))
    yield service
    service.close()


def _live_auction(store, bidders=None, status=AuctionStatus.LIVE):
    return store.create_auction(
        name="Test",
        rules=get_rules("APL"),
        players=sample_players(),
        bidders=bidders or sample_bidders(),
        status=status,
    ).auction_id


def test_accepted_bid_is_recorded_and_published(store, service, sink):
    auction_id = _live_auction(store)
    outcome = service.submit_bid(auction_id, "b1", 2_000)

    assert outcome.ok
    assert outcome.entry.sequence == 1
    snapshot = store.load_snapshot(auction_id)
    assert snapshot.version == 1
    assert snapshot.current_bid("p1").bidder_id == "b1"

    service.publisher.flush()
    events = sink.named(NEW_BID)
    assert len(events) == 1
    assert events[0]["amount"] == 2_000
    assert events[0]["countdown_seconds"] == 30
    assert events[0]["team_name"] == "Falcons"


def test_rejected_bid_leaves_no_trace(store, service, sink):
    auction_id = _live_auction(store)
    service.submit_bid(auction_id, "b1", 2_000)
    outcome = service.submit_bid(auction_id, "b1", 3_000)

    assert not outcome.ok
    assert outcome.error.code == "ALREADY_HIGHEST_BIDDER"
    assert outcome.to_dict()["error"]["code"] == "ALREADY_HIGHEST_BIDDER"
    assert len(store.list_bids(auction_id)) == 1
    assert store.load_snapshot(auction_id).version == 1
    service.publisher.flush()
    assert len(sink.named(NEW_BID)) == 1


def test_unknown_auction_is_reported(service):
    outcome = service.submit_bid("missing", "b1", 2_000)
    assert not outcome.ok
    assert outcome.error.code == "AUCTION_NOT_FOUND"


def test_concurrent_equal_bids_accept_exactly_one(store, service):
    bidders = [
        BidderRecord(bidder_id=f"b{index}", name=f"B{index}", initial_purse=100_000, remaining_purse=100_000)
        for index in range(8)
    ]
    auction_id = _live_auction(store, bidders=bidders)
    barrier = threading.Barrier(len(bidders))
    outcomes = []
    outcomes_lock = threading.Lock()

    def place(bidder_id):
        barrier.wait()
        outcome = service.submit_bid(auction_id, bidder_id, 2_000)
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=place, args=(item.bidder_id,)) for item in bidders]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    accepted = [outcome for outcome in outcomes if outcome.ok]
    assert len(accepted) == 1
    assert {outcome.error.code for outcome in outcomes if not outcome.ok} <= {
        "BELOW_MINIMUM_INCREMENT",
        "CONCURRENCY_CONFLICT",
    }
    assert len(store.list_bids(auction_id)) == 1


def test_concurrent_escalating_bids_keep_ledger_monotonic(store, service):
    bidders = [
        BidderRecord(bidder_id=f"b{index}", name=f"B{index}", initial_purse=100_000, remaining_purse=100_000)
        for index in range(6)
    ]
    auction_id = _live_auction(store, bidders=bidders)
    barrier = threading.Barrier(len(bidders))

    def place(index, bidder_id):
        barrier.wait()
        for step in range(5):
            service.submit_bid(auction_id, bidder_id, 2_000 + 1_000 * (index + step * len(bidders)))

    threads = [
        threading.Thread(target=place, args=(index, item.bidder_id)) for index, item in enumerate(bidders)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    entries = store.list_bids(auction_id, "p1")
    assert entries
    assert [entry.sequence for entry in entries] == list(range(1, len(entries) + 1))
    amounts = [entry.amount for entry in entries]
    assert amounts == sorted(set(amounts))
    for previous, current in zip(entries, entries[1:]):
        assert previous.bidder_id != current.bidder_id
    assert store.load_snapshot(auction_id).version == len(entries)


def test_lost_version_race_is_retried_then_reported(store, sink):
    class AlwaysStaleStore(AuctionStore):
        attempts = 0

        def append_bid(self, auction_id, **kwargs):
            AlwaysStaleStore.attempts += 1
            return None

    stale_store = AlwaysStaleStore(store.db_path)
    auction_id = _live_auction(stale_store)
    service = BidService(stale_store, publisher=EventPublisher(sink), retries=3)
    outcome = service.submit_bid(auction_id, "b1", 2_000)
    service.close()

    assert not outcome.ok
    assert isinstance(outcome.error, ConcurrencyConflict)
    assert AlwaysStaleStore.attempts == 3


def test_lock_timeout_is_a_conflict(store, sink):
    auction_id = _live_auction(store)
    service = BidService(store, publisher=EventPublisher(sink), lock_timeout=0.05)
    with service._locks.hold(auction_id, timeout_s=1.0):
        outcome = service.submit_bid(auction_id, "b1", 2_000)
    service.close()

    assert outcome.error.code == "CONCURRENCY_CONFLICT"
    assert store.list_bids(auction_id) == []


def test_locked_database_is_a_conflict(tmp_path, sink, monkeypatch):
    monkeypatch.delenv("PYAUCTION_DB_PATH", raising=False)
    store = AuctionStore(tmp_path / "locked.sqlite", busy_timeout=0.05)
    auction_id = _live_auction(store)
    service = BidService(store, publisher=EventPublisher(sink))

    other = sqlite3.connect(store.db_path, isolation_level=None)
    other.execute("BEGIN EXCLUSIVE")
    try:
        outcome = service.submit_bid(auction_id, "b1", 2_000)
    finally:
        other.execute("ROLLBACK")
        other.close()
    service.close()

    assert not outcome.ok
    assert outcome.error.code == "CONCURRENCY_CONFLICT"
    assert "database" in outcome.error.details
    assert store.list_bids(auction_id) == []


def test_bid_after_publisher_close_is_still_committed(store, sink):
    auction_id = _live_auction(store)
    service = BidService(store, publisher=EventPublisher(sink))
    service.close()

    outcome = service.submit_bid(auction_id, "b1", 2_000)

    assert outcome.ok
    assert [entry.amount for entry in store.list_bids(auction_id)] == [2_000]
    assert sink.named(NEW_BID) == []


def test_settle_player_sells_to_top_bidder(store, service, sink):
    auction_id = _live_auction(store)
    service.submit_bid(auction_id, "b1", 2_000)
    service.submit_bid(auction_id, "b2", 3_000)

    result = service.settle_player(auction_id)

    assert result.status is PlayerStatus.SOLD
    assert result.winner.bidder_id == "b2"
    assert result.amount == 3_000
    assert result.next_player_id == "p2"
    snapshot = store.load_snapshot(auction_id)
    assert snapshot.player("p1").status is PlayerStatus.SOLD
    assert snapshot.bidder("b2").remaining_purse == 97_000
    assert snapshot.current_player_id == "p2"

    outcome = service.submit_bid(auction_id, "b1", 2_000)
    assert outcome.ok
    assert outcome.entry.player_id == "p2"
    assert outcome.entry.sequence == 3

    service.publisher.flush()
    assert sink.named(PLAYER_SOLD)[0]["winner_id"] == "b2"


def test_settle_requires_a_bid(store, service):
    auction_id = _live_auction(store)
    with pytest.raises(ValidationError):
        service.settle_player(auction_id)


def test_close_unsold(store, service, sink):
    auction_id = _live_auction(store)
    result = service.close_unsold(auction_id)
    assert result.status is PlayerStatus.UNSOLD
    assert result.next_player_id == "p2"

    service.submit_bid(auction_id, "b1", 2_000)
    with pytest.raises(ValidationError):
        service.close_unsold(auction_id)

    service.publisher.flush()
    assert sink.named(PLAYER_UNSOLD)[0]["player_id"] == "p1"


def test_settlement_shrinks_what_the_winner_can_bid(store, service):
    bidders = [
        BidderRecord(bidder_id="b1", name="Tight", initial_purse=13_000, remaining_purse=13_000),
        BidderRecord(bidder_id="b2", name="Rich", initial_purse=100_000, remaining_purse=100_000),
    ]
    auction_id = _live_auction(store, bidders=bidders)
    assert service.submit_bid(auction_id, "b1", 2_000).ok
    service.settle_player(auction_id)

    outcome = service.submit_bid(auction_id, "b1", 2_000)
    assert outcome.error.code == "ROSTER_INFEASIBLE"
    assert outcome.error.details["reserve_required"] == 10_000


def test_status_transitions(store, service, sink):
    auction_id = _live_auction(store, status=AuctionStatus.DRAFT)
    assert service.submit_bid(auction_id, "b1", 2_000).error.code == "AUCTION_NOT_LIVE"

    snapshot = service.set_status(auction_id, AuctionStatus.LIVE)
    assert snapshot.status is AuctionStatus.LIVE
    assert service.set_status(auction_id, AuctionStatus.PAUSED).status is AuctionStatus.PAUSED
    with pytest.raises(AuctionNotLive):
        service.settle_player(auction_id)

    service.set_status(auction_id, AuctionStatus.ENDED)
    with pytest.raises(ValidationError):
        service.set_status(auction_id, AuctionStatus.LIVE)

    service.publisher.flush()
    assert [event["status"] for event in sink.named(AUCTION_STATUS)] == ["LIVE", "PAUSED", "ENDED"]


def test_stale_expected_version_on_settlement(store, service):
    auction_id = _live_auction(store)
    service.submit_bid(auction_id, "b1", 2_000)
    with pytest.raises(ConcurrencyConflict):
        service.settle_player(auction_id, expected_version=0)


def test_closing_with_no_player_on_block(store, service):
    auction_id = _live_auction(store)
    for _ in range(4):
        service.close_unsold(auction_id)
    assert store.load_snapshot(auction_id).current_player_id is None
    with pytest.raises(PlayerNotAvailable):
        service.close_unsold(auction_id)


def test_next_lot_wraps_to_earlier_players():
    players = sample_players()
    players[3] = sold(players[3], "b1", 3_000)
    snapshot = make_snapshot(players=players, current="p3")
    assert next_lot(snapshot, "p3") == "p1"

    players = sample_players()
    assert next_lot(make_snapshot(players=players, current="p2"), "p2") == "p3"
    assert next_lot(make_snapshot(players=players[:1]), "p1") is None
