"""SQLite persistence for auctions and their append-only bid ledger.

Every write goes through ``BEGIN IMMEDIATE`` and a compare-and-swap on the
auction's ``version`` column, so two writers that read the same version can
never both commit. Reads load a whole snapshot inside one transaction.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence
from uuid import uuid4

from pyauction.config import AuctionRules, rules_from_mapping
from pyauction.models import (
    AuctionSnapshot,
    AuctionStatus,
    BidderRecord,
    BidLedgerEntry,
    PlayerRecord,
    PlayerStatus,
)


logger = logging.getLogger(__name__)

_DB_PATH_ENV = "PYAUCTION_DB_PATH"
_BUSY_TIMEOUT_SECONDS = 5.0


class AuctionStore:
    """SQLite-backed store for auction aggregates."""

    def __init__(self, db_path: Path | str, *, busy_timeout: float = _BUSY_TIMEOUT_SECONDS):
        self._use_uri = False
        self.busy_timeout = busy_timeout
        env_db = os.getenv(_DB_PATH_ENV)
        target: Path | str = env_db or db_path
        if isinstance(target, str) and target.startswith("file:"):
            self.db_path: Path | str = target
            self._use_uri = True
        else:
            self.db_path = Path(target)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.db_path,
            uri=self._use_uri,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, mode: str = "IMMEDIATE") -> Iterator[sqlite3.Connection]:
        with closing(self._connect()) as conn:
            conn.execute(f"BEGIN {mode}")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _ensure_schema(self) -> None:
        with closing(self._connect()) as conn:
            self._create_schema(conn)

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS auctions (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                rules_json TEXT NOT NULL,
                current_player_id TEXT,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS players (
                auction_id TEXT NOT NULL,
                id TEXT NOT NULL,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                base_price INTEGER NOT NULL,
                attributes_json TEXT NOT NULL,
                is_icon INTEGER NOT NULL DEFAULT 0,
                position INTEGER NOT NULL DEFAULT 0,
                sold_price INTEGER,
                sold_to TEXT,
                PRIMARY KEY (auction_id, id)
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS bidders (
                auction_id TEXT NOT NULL,
                id TEXT NOT NULL,
                name TEXT NOT NULL,
                team_name TEXT NOT NULL,
                initial_purse INTEGER NOT NULL,
                remaining_purse INTEGER NOT NULL CHECK (remaining_purse >= 0),
                PRIMARY KEY (auction_id, id)
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS bids (
                auction_id TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                player_id TEXT NOT NULL,
                bidder_id TEXT NOT NULL,
                amount INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (auction_id, sequence)
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS bids_by_player ON bids (auction_id, player_id, sequence)")

    def create_auction(
        self,
        *,
        name: str,
        rules: AuctionRules,
        players: Sequence[PlayerRecord],
        bidders: Sequence[BidderRecord],
        status: AuctionStatus = AuctionStatus.DRAFT,
        auction_id: Optional[str] = None,
    ) -> AuctionSnapshot:
        auction_id = auction_id or uuid4().hex
        ordered = sorted(enumerate(players), key=lambda item: (item[1].position, item[0]))
        current_player_id = next(
            (player.player_id for _, player in ordered if player.status is PlayerStatus.AVAILABLE),
            None,
        )
        now = datetime.now(timezone.utc).isoformat()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO auctions (
                    id, name, status, rules_json, current_player_id, version, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (auction_id, name, status.value, json.dumps(rules.to_dict()), current_player_id, now, now),
            )
            conn.executemany(
                """
                INSERT INTO players (
                    auction_id, id, name, status, base_price, attributes_json,
                    is_icon, position, sold_price, sold_to
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        auction_id,
                        player.player_id,
                        player.name,
                        player.status.value,
                        player.base_price,
                        json.dumps(player.attributes),
                        int(player.is_icon),
                        index,
                        player.sold_price,
                        player.sold_to,
                    )
                    for index, (_, player) in enumerate(ordered)
                ],
            )
            conn.executemany(
                """
                INSERT INTO bidders (
                    auction_id, id, name, team_name, initial_purse, remaining_purse
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        auction_id,
                        bidder.bidder_id,
                        bidder.name,
                        bidder.team_name,
                        bidder.initial_purse,
                        bidder.remaining_purse,
                    )
                    for bidder in bidders
                ],
            )
        logger.info("Created auction %s with %d players and %d bidders", auction_id, len(players), len(bidders))
        return self.load_snapshot(auction_id)

    def load_snapshot(self, auction_id: str) -> AuctionSnapshot:
        """Read one consistent view of the auction; raises KeyError if missing."""

        with self._transaction("DEFERRED") as conn:
            row = conn.execute("SELECT * FROM auctions WHERE id = ?", (auction_id,)).fetchone()
            if row is None:
                raise KeyError(f"Auction {auction_id} not found")
            player_rows = conn.execute(
                "SELECT * FROM players WHERE auction_id = ? ORDER BY position, id",
                (auction_id,),
            ).fetchall()
            bidder_rows = conn.execute(
                "SELECT * FROM bidders WHERE auction_id = ? ORDER BY id",
                (auction_id,),
            ).fetchall()
            bid_rows = conn.execute(
                "SELECT * FROM bids WHERE auction_id = ? ORDER BY sequence",
                (auction_id,),
            ).fetchall()
        return AuctionSnapshot(
            auction_id=row["id"],
            name=row["name"],
            status=AuctionStatus(row["status"]),
            rules=rules_from_mapping(json.loads(row["rules_json"])),
            current_player_id=row["current_player_id"],
            version=row["version"],
            players=tuple(self._row_to_player(item) for item in player_rows),
            bidders=tuple(self._row_to_bidder(item) for item in bidder_rows),
            ledger=tuple(self._row_to_bid(item) for item in bid_rows),
        )

    def list_auctions(self, limit: int = 50) -> List[dict]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT id, name, status, version, updated_at FROM auctions ORDER BY datetime(updated_at) DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]

    def list_bids(self, auction_id: str, player_id: Optional[str] = None) -> List[BidLedgerEntry]:
        query = "SELECT * FROM bids WHERE auction_id = ?"
        params: list[str] = [auction_id]
        if player_id:
            query += " AND player_id = ?"
            params.append(player_id)
        query += " ORDER BY sequence"
        with closing(self._connect()) as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_bid(row) for row in rows]

    def _claim_version(self, conn: sqlite3.Connection, auction_id: str, expected_version: int) -> bool:
        cursor = conn.execute(
            "UPDATE auctions SET version = version + 1, updated_at = ? WHERE id = ? AND version = ?",
            (datetime.now(timezone.utc).isoformat(), auction_id, expected_version),
        )
        return cursor.rowcount == 1

    def append_bid(
        self,
        auction_id: str,
        *,
        expected_version: int,
        player_id: str,
        bidder_id: str,
        amount: int,
    ) -> Optional[BidLedgerEntry]:
        """Append a ledger entry if the auction is still at ``expected_version``.

        Returns ``None`` when another writer committed first.
        """

        created_at = datetime.now(timezone.utc)
        with self._transaction() as conn:
            if not self._claim_version(conn, auction_id, expected_version):
                return None
            row = conn.execute(
                "SELECT COALESCE(MAX(sequence), 0) + 1 AS next_sequence FROM bids WHERE auction_id = ?",
                (auction_id,),
            ).fetchone()
            sequence = row["next_sequence"]
            conn.execute(
                """
                INSERT INTO bids (auction_id, sequence, player_id, bidder_id, amount, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (auction_id, sequence, player_id, bidder_id, amount, created_at.isoformat()),
            )
        return BidLedgerEntry(
            auction_id=auction_id,
            sequence=sequence,
            player_id=player_id,
            bidder_id=bidder_id,
            amount=amount,
            created_at=created_at,
        )

    def record_sale(
        self,
        auction_id: str,
        *,
        expected_version: int,
        player_id: str,
        bidder_id: str,
        amount: int,
        next_player_id: Optional[str],
    ) -> bool:
        """Mark a player SOLD, charge the winner and advance the lot."""

        with self._transaction() as conn:
            if not self._claim_version(conn, auction_id, expected_version):
                return False
            conn.execute(
                """
                UPDATE players SET status = ?, sold_price = ?, sold_to = ?
                WHERE auction_id = ? AND id = ? AND status = ?
                """,
                (PlayerStatus.SOLD.value, amount, bidder_id, auction_id, player_id, PlayerStatus.AVAILABLE.value),
            )
            conn.execute(
                """
                UPDATE bidders SET remaining_purse = remaining_purse - ?
                WHERE auction_id = ? AND id = ?
                """,
                (amount, auction_id, bidder_id),
            )
            conn.execute(
                "UPDATE auctions SET current_player_id = ? WHERE id = ?",
                (next_player_id, auction_id),
            )
        return True

    def record_unsold(
        self,
        auction_id: str,
        *,
        expected_version: int,
        player_id: str,
        next_player_id: Optional[str],
    ) -> bool:
        with self._transaction() as conn:
            if not self._claim_version(conn, auction_id, expected_version):
                return False
            conn.execute(
                "UPDATE players SET status = ? WHERE auction_id = ? AND id = ? AND status = ?",
                (PlayerStatus.UNSOLD.value, auction_id, player_id, PlayerStatus.AVAILABLE.value),
            )
            conn.execute(
                "UPDATE auctions SET current_player_id = ? WHERE id = ?",
                (next_player_id, auction_id),
            )
        return True

    def record_status(self, auction_id: str, *, expected_version: int, status: AuctionStatus) -> bool:
        with self._transaction() as conn:
            if not self._claim_version(conn, auction_id, expected_version):
                return False
            conn.execute("UPDATE auctions SET status = ? WHERE id = ?", (status.value, auction_id))
        return True

    def _row_to_player(self, row: sqlite3.Row) -> PlayerRecord:
        return PlayerRecord(
            player_id=row["id"],
            name=row["name"],
            status=PlayerStatus(row["status"]),
            base_price=row["base_price"],
            attributes=json.loads(row["attributes_json"]),
            is_icon=bool(row["is_icon"]),
            position=row["position"],
            sold_price=row["sold_price"],
            sold_to=row["sold_to"],
        )

    def _row_to_bidder(self, row: sqlite3.Row) -> BidderRecord:
        return BidderRecord(
            bidder_id=row["id"],
            name=row["name"],
            team_name=row["team_name"],
            initial_purse=row["initial_purse"],
            remaining_purse=row["remaining_purse"],
        )

    def _row_to_bid(self, row: sqlite3.Row) -> BidLedgerEntry:
        return BidLedgerEntry(
            auction_id=row["auction_id"],
            sequence=row["sequence"],
            player_id=row["player_id"],
            bidder_id=row["bidder_id"],
            amount=row["amount"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


__all__ = ["AuctionStore"]
