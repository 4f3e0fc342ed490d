"""
Fan-out of classified events to downstream WebSocket clients.

Drains the event queue filled by the upstream subscriber and pushes each
event to the registry snapshot that matches it. Every send is isolated
with its own timeout, so one wedged client cannot hold up the others; a
client whose send fails or times out is closed and deregistered while
the rest of the fan-out continues. Delivery is at most once per client
per event (no retries).

Usage:
    broadcaster = Broadcaster(registry, event_queue)
    asyncio.create_task(broadcaster.run())
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Optional

from config.loader import get_config
from relay_logging.logger_manager import log_event_flow, setup_module_logger
from shared.constants import (
    BROADCAST_MODE_ALL,
    BROADCAST_MODE_TOPIC,
    DEFAULT_SEND_TIMEOUT_SECONDS,
    MESSAGE_FORMAT_CLASSIFIED,
    MESSAGE_FORMAT_RAW,
)
from shared.serialization_utils import serialize_classified_event
from shared.types import ClassifiedEvent

if TYPE_CHECKING:
    from core.subscription_registry import SubscriptionRegistry


class Broadcaster:
    """
    Queue consumer that delivers events to subscribed connections.

    Modes:
        broadcast_mode  "topic" - subscribers of the event's mint address
                        "all"   - every registered connection
        message_format  "raw"        - upstream notification text as received
                        "classified" - compact JSON summary of the event
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        event_queue: asyncio.Queue,
        send_timeout: Optional[float] = None,
        broadcast_mode: Optional[str] = None,
        message_format: Optional[str] = None,
    ) -> None:
        self._registry = registry
        self._event_queue = event_queue

        fanout_cfg = get_config().get_downstream_config().get("fanout", {})
        self._send_timeout: float = float(
            send_timeout
            if send_timeout is not None
            else fanout_cfg.get("send_timeout_seconds", DEFAULT_SEND_TIMEOUT_SECONDS)
        )
        self._broadcast_mode: str = broadcast_mode or fanout_cfg.get(
            "broadcast_mode", BROADCAST_MODE_ALL
        )
        self._message_format: str = message_format or fanout_cfg.get(
            "message_format", MESSAGE_FORMAT_RAW
        )
        if self._broadcast_mode not in (BROADCAST_MODE_TOPIC, BROADCAST_MODE_ALL):
            raise ValueError(f"Unknown broadcast mode: {self._broadcast_mode!r}")
        if self._message_format not in (MESSAGE_FORMAT_RAW, MESSAGE_FORMAT_CLASSIFIED):
            raise ValueError(f"Unknown message format: {self._message_format!r}")

        self._running: bool = False
        self._logger = setup_module_logger(
            "broadcaster", "broadcaster.log", module_folder="Broadcaster_Logs"
        )

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Drain the event queue until stopped; designed to run as an asyncio.Task."""
        self._running = True
        self._logger.info(
            "Broadcaster started (mode=%s, format=%s, send_timeout=%.1fs)",
            self._broadcast_mode,
            self._message_format,
            self._send_timeout,
        )
        try:
            while self._running:
                event = await self._event_queue.get()
                try:
                    await self.broadcast(event)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._logger.error("Broadcast failed for %s: %s", event.signature or "-", exc)
                finally:
                    self._event_queue.task_done()
        finally:
            self._running = False
            self._logger.info("Broadcaster stopped")

    def stop(self) -> None:
        self._running = False

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def broadcast(self, event: ClassifiedEvent) -> int:
        """
        Send ``event`` to every target connection.

        Returns:
            Number of connections that received the message.
        """
        targets = self._targets_for(event)
        if not targets:
            self._logger.debug(
                "No subscribers for %s %s", event.kind.value, event.payload.mint_address
            )
            return 0

        message = self.serialize(event)
        results = await asyncio.gather(*(self._send(conn, message) for conn in targets))
        delivered = sum(1 for ok in results if ok)

        log_event_flow(
            "DELIVERED",
            "broadcaster",
            f"{event.kind.value} fan-out",
            {
                "mint": event.payload.mint_address,
                "targets": len(targets),
                "delivered": delivered,
            },
            signature=event.signature,
        )
        return delivered

    def serialize(self, event: ClassifiedEvent) -> str:
        if self._message_format == MESSAGE_FORMAT_CLASSIFIED:
            return serialize_classified_event(event)
        return event.raw

    def _targets_for(self, event: ClassifiedEvent) -> frozenset[Any]:
        if self._broadcast_mode == BROADCAST_MODE_ALL:
            return self._registry.snapshot_all()
        return self._registry.snapshot_for(event.payload.mint_address)

    async def _send(self, connection: Any, message: str) -> bool:
        try:
            await asyncio.wait_for(connection.send(message), timeout=self._send_timeout)
            return True
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            self._logger.warning("Send timed out after %.1fs; dropping client", self._send_timeout)
        except Exception as exc:
            self._logger.warning("Error sending message to client: %s", exc)

        await self._drop(connection)
        return False

    async def _drop(self, connection: Any) -> None:
        self._registry.remove_connection(connection)
        try:
            await asyncio.wait_for(connection.close(), timeout=self._send_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.debug("Close after failed send raised: %s", exc)
