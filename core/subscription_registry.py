"""
Subscription registry for the Pump Log Relay.

The single shared mutation point for downstream connection <-> topic
relationships. Both the ConnectionHandler tasks and the Broadcaster go
through this class; nothing else touches the underlying maps.

Two indexes are kept in step:
    topic      -> set of connections
    connection -> set of topics   (reverse index, so removal on disconnect
                                   only visits that connection's topics)

Empty topic entries are dropped as soon as their last subscriber leaves.

Usage:
    registry = SubscriptionRegistry()
    registry.subscribe(mint, websocket)
    targets = registry.snapshot_for(mint)
    registry.remove_connection(websocket)
"""

from __future__ import annotations

import threading
from typing import Any, Hashable, Optional

from config.loader import get_config
from relay_logging.logger_manager import setup_module_logger
from shared.constants import DEFAULT_TOPIC_LENGTH, ELIGIBILITY_SUFFIX

# Any hashable duplex channel (websockets ServerConnection in production)
Connection = Hashable


class SubscriptionRegistry:
    """Thread-safe topic index; every public method holds the internal lock."""

    def __init__(
        self,
        topic_length: Optional[int] = None,
        eligibility_suffix: Optional[str] = None,
    ) -> None:
        topics_cfg = get_config().get_downstream_config().get("topics", {})
        self._topic_length: int = (
            topic_length if topic_length is not None else topics_cfg.get("length", DEFAULT_TOPIC_LENGTH)
        )
        self._eligibility_suffix: str = (
            eligibility_suffix
            if eligibility_suffix is not None
            else topics_cfg.get("eligibility_suffix", ELIGIBILITY_SUFFIX)
        )

        self._lock = threading.Lock()
        self._subscribers: dict[str, set[Connection]] = {}
        self._connections: dict[Connection, set[str]] = {}

        self._logger = setup_module_logger("registry", "registry.log", module_folder="Registry_Logs")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def is_valid_topic(self, topic: Any) -> bool:
        return (
            isinstance(topic, str)
            and len(topic) == self._topic_length
            and self._eligibility_suffix in topic
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def register(self, connection: Connection) -> None:
        """Track an accepted connection that has no topics yet."""
        with self._lock:
            self._connections.setdefault(connection, set())

    def subscribe(self, topic: str, connection: Connection) -> bool:
        """
        Add ``connection`` under ``topic``. Idempotent.

        Returns False (and changes nothing) when the topic fails the format check.
        """
        if not self.is_valid_topic(topic):
            return False
        with self._lock:
            self._subscribers.setdefault(topic, set()).add(connection)
            self._connections.setdefault(connection, set()).add(topic)
            count = len(self._subscribers[topic])
        self._logger.info("Subscribed to %s (%d subscriber(s))", topic, count)
        return True

    def unsubscribe(self, topic: str, connection: Connection) -> None:
        with self._lock:
            self._discard(topic, connection)
            topics = self._connections.get(connection)
            if topics is not None:
                topics.discard(topic)

    def remove_connection(self, connection: Connection) -> None:
        """Forget ``connection`` entirely; called on disconnect or send failure."""
        with self._lock:
            topics = self._connections.pop(connection, None)
            if topics is None:
                return
            for topic in topics:
                self._discard(topic, connection)
        self._logger.info("Removed connection from %d topic(s)", len(topics))

    def _discard(self, topic: str, connection: Connection) -> None:
        # Caller holds the lock
        subscribers = self._subscribers.get(topic)
        if subscribers is None:
            return
        subscribers.discard(connection)
        if not subscribers:
            del self._subscribers[topic]

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot_for(self, topic: str) -> frozenset[Connection]:
        """Point-in-time copy of the subscribers of ``topic``."""
        with self._lock:
            return frozenset(self._subscribers.get(topic, ()))

    def snapshot_all(self) -> frozenset[Connection]:
        """Point-in-time copy of every registered connection."""
        with self._lock:
            return frozenset(self._connections)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def topics(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._subscribers)

    def topics_for(self, connection: Connection) -> frozenset[str]:
        with self._lock:
            return frozenset(self._connections.get(connection, ()))

    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, topic: object) -> bool:
        with self._lock:
            return topic in self._subscribers
