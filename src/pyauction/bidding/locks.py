"""Process-local, per-auction serialization locks.

Different auctions never contend. The SQLite version check still guards
against writers in other processes; these locks only keep writers in this
process from racing each other into retries.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class AuctionLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, auction_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(auction_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[auction_id] = lock
            return lock

    @contextmanager
    def hold(self, auction_id: str, *, timeout_s: float, reason: str = "") -> Iterator[None]:
        """Hold the auction's lock, waiting at most ``timeout_s`` seconds.

        Raises:
            TimeoutError: the lock was not acquired in time.
        """

        lock = self._lock_for(auction_id)
        if not lock.acquire(timeout=max(0.0, float(timeout_s))):
            msg = f"auction {auction_id} lock timeout (timeout_s={timeout_s})"
            if reason:
                msg += f": {reason}"
            raise TimeoutError(msg)
        try:
            yield
        finally:
            lock.release()


__all__ = ["AuctionLocks"]
