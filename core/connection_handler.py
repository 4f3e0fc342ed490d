"""
Per-connection handler for downstream WebSocket clients.

Client protocol (one JSON document per text message):

    "<topic>"                                   subscribe to topic
    {"subscriptionType": "subscribe",   "address": "<topic>"}
    {"subscriptionType": "unsubscribe", "address": "<topic>"}

A topic is a 32-character address containing the pump eligibility
suffix. Replies are plain text. A message that is not valid JSON ends the
session, as does a subscription confirmation that cannot be delivered.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any, Optional

from websockets.exceptions import ConnectionClosed

from config.loader import get_config
from relay_logging.logger_manager import setup_module_logger
from shared.constants import DEFAULT_SEND_TIMEOUT_SECONDS

if TYPE_CHECKING:
    from core.subscription_registry import SubscriptionRegistry

SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"


def _peer_name(connection: Any) -> str:
    address = getattr(connection, "remote_address", None)
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address) if address else "unknown"


class ConnectionHandler:
    """Serves one downstream session per ``handle`` call."""

    def __init__(self, registry: SubscriptionRegistry, reply_timeout: Optional[float] = None) -> None:
        self._registry = registry
        fanout_cfg = get_config().get_downstream_config().get("fanout", {})
        self._reply_timeout: float = float(
            reply_timeout
            if reply_timeout is not None
            else fanout_cfg.get("send_timeout_seconds", DEFAULT_SEND_TIMEOUT_SECONDS)
        )
        self._logger = setup_module_logger(
            "connections", "connections.log", module_folder="Connection_Logs"
        )

    async def handle(self, connection: Any) -> None:
        """Read declarations until the client leaves; always deregisters and closes."""
        peer = _peer_name(connection)
        self._registry.register(connection)
        self._logger.info(
            "Client connected from %s (%d total)", peer, self._registry.connection_count()
        )
        try:
            async for message in connection:
                try:
                    request = json.loads(message)
                except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as exc:
                    self._logger.info("Client %s disconnected: invalid message (%s)", peer, exc)
                    break
                if not await self._dispatch(connection, request, peer):
                    break
        except ConnectionClosed as exc:
            self._logger.info("Client %s connection closed: %s", peer, exc)
        finally:
            self._registry.remove_connection(connection)
            await connection.close()
            self._logger.info(
                "Client %s removed (%d remaining)", peer, self._registry.connection_count()
            )

    # ------------------------------------------------------------------
    # Request dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, connection: Any, request: Any, peer: str) -> bool:
        """Handle one decoded request. Returns False when the session must end."""
        if isinstance(request, str):
            return await self._subscribe(connection, request, peer)

        if isinstance(request, dict):
            action = request.get("subscriptionType", SUBSCRIBE)
            topic = request.get("address")
            if action == SUBSCRIBE:
                return await self._subscribe(connection, topic, peer)
            if action == UNSUBSCRIBE:
                return await self._unsubscribe(connection, topic)
            return await self._reply(connection, f"Unsupported subscriptionType: {action}")

        return await self._reply(connection, "Unsupported message; send a subscription address")

    async def _subscribe(self, connection: Any, topic: Any, peer: str) -> bool:
        if not self._registry.subscribe(topic, connection):
            self._logger.info("Client %s sent invalid subscription address %r", peer, topic)
            return await self._reply(connection, f"Invalid subscription address: {topic}")

        if await self._reply(connection, f"Successfully subscribed to {topic}"):
            return True
        self._registry.unsubscribe(topic, connection)
        return False

    async def _unsubscribe(self, connection: Any, topic: Any) -> bool:
        if not isinstance(topic, str) or topic not in self._registry.topics_for(connection):
            return await self._reply(connection, f"Not subscribed to {topic}")
        self._registry.unsubscribe(topic, connection)
        return await self._reply(connection, f"Successfully unsubscribed from {topic}")

    async def _reply(self, connection: Any, text: str) -> bool:
        try:
            await asyncio.wait_for(connection.send(text), timeout=self._reply_timeout)
            return True
        except asyncio.CancelledError:
            raise
        except (ConnectionClosed, OSError, asyncio.TimeoutError) as exc:
            self._logger.warning("Error sending message to client: %s", exc)
            return False
