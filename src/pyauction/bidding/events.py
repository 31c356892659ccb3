"""Post-commit domain events.

Events are handed to a single background worker so that a slow or failing
sink never delays or undoes a committed bid. Sink failures are logged.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Mapping, Protocol, Tuple


logger = logging.getLogger(__name__)

NEW_BID = "new-bid"
PLAYER_SOLD = "player-sold"
PLAYER_UNSOLD = "player-unsold"
AUCTION_STATUS = "auction-status"


class EventSink(Protocol):
    def publish(self, auction_id: str, event: str, payload: Mapping[str, Any]) -> None:
        ...


class LoggingEventSink:
    """Default sink: records every event in the application log."""

    def publish(self, auction_id: str, event: str, payload: Mapping[str, Any]) -> None:
        logger.info("Auction %s event %s: %s", auction_id, event, dict(payload))


class MemoryEventSink:
    """Keeps published events in memory, for tests and local tooling."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    def publish(self, auction_id: str, event: str, payload: Mapping[str, Any]) -> None:
        with self._lock:
            self.events.append((auction_id, event, dict(payload)))

    def named(self, event: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [payload for _, name, payload in self.events if name == event]


class EventPublisher:
    def __init__(self, sink: EventSink | None = None) -> None:
        self.sink = sink or LoggingEventSink()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pyauction-events")
        self._pending: List[Future] = []
        self._lock = threading.Lock()
        self._closed = False

    def publish(self, auction_id: str, event: str, payload: Mapping[str, Any]) -> None:
        """Queue an event; returns immediately. Events after ``close`` are dropped."""

        with self._lock:
            if self._closed:
                logger.warning("Publisher closed; dropping %s for auction %s", event, auction_id)
                return
            future = self._executor.submit(self._deliver, auction_id, event, dict(payload))
            self._pending = [item for item in self._pending if not item.done()]
            self._pending.append(future)

    def _deliver(self, auction_id: str, event: str, payload: Dict[str, Any]) -> None:
        try:
            self.sink.publish(auction_id, event, payload)
        except Exception:  # sink errors must not reach the bid path
            logger.exception("Failed to publish %s for auction %s", event, auction_id)

    def flush(self, timeout: float | None = 5.0) -> None:
        """Wait for queued events to be delivered."""

        with self._lock:
            pending = list(self._pending)
        for future in pending:
            future.result(timeout=timeout)

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)


__all__ = [
    "AUCTION_STATUS",
    "EventPublisher",
    "EventSink",
    "LoggingEventSink",
    "MemoryEventSink",
    "NEW_BID",
    "PLAYER_SOLD",
    "PLAYER_UNSOLD",
]
