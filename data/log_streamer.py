"""
Solana Log Streamer - Upstream logsSubscribe Listener

Purpose:
    Connect to a Solana RPC node over WebSocket, subscribe to the program
    logs that mention the pump.fun program, classify every notification
    and queue CREATE / BUY / SELL events for the broadcaster.

Connection state machine (runs for the lifetime of the process):

    DISCONNECTED -> CONNECTING -> SUBSCRIBED -> READING -> DISCONNECTED ...

    - connect failure      : wait connect_retry_delay (fixed) and dial again
    - read failure / close : close, wait reconnect_delay (fixed), dial again
    - invalid JSON message : skipped, connection kept

Backoff is fixed rather than exponential; the relay has one upstream
connection and a low request rate.

Keep-alive:
    The websockets client answers server pings from its own background
    protocol task, independent of this read loop. When no message arrives
    for message_timeout seconds the loop also pings the node itself and
    reconnects if no pong comes back.

Backpressure:
    The event queue is bounded. A full queue blocks this reader (await
    put) rather than dropping events; a warning is logged when the queue
    crosses its high-water mark.
"""

from __future__ import annotations

import asyncio
import json
import traceback
from typing import Any, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from config.loader import get_config
from core.event_classifier import classify_notification
from relay_logging.logger_manager import log_event_flow, setup_module_logger
from shared.constants import (
    DEFAULT_COMMITMENT,
    DEFAULT_CONNECT_RETRY_DELAY_SECONDS,
    DEFAULT_ENCODING,
    DEFAULT_MESSAGE_TIMEOUT_SECONDS,
    DEFAULT_PONG_TIMEOUT_SECONDS,
    DEFAULT_QUEUE_HIGH_WATER_RATIO,
    DEFAULT_RECONNECT_DELAY_SECONDS,
    PUMP_FUN_PROGRAM,
    SUBSCRIPTION_REQUEST_ID,
)
from shared.types import ClassifiedEvent, UpstreamState


class UpstreamSubscriberError(Exception):
    """Raised when the node rejects the subscription request."""


# ============================================================================
# REQUEST BUILDERS
# ============================================================================


def build_subscription_request(
    program_address: str = PUMP_FUN_PROGRAM,
    commitment: str = DEFAULT_COMMITMENT,
    encoding: str = DEFAULT_ENCODING,
) -> Dict[str, Any]:
    """
    Build the logsSubscribe JSON-RPC payload.

    Returns:
        JSON-RPC request dict watching every transaction that mentions
        ``program_address``.
    """
    return {
        "jsonrpc": "2.0",
        "id": SUBSCRIPTION_REQUEST_ID,
        "method": "logsSubscribe",
        "params": [
            {"mentions": [program_address]},
            {"commitment": commitment, "encoding": encoding},
        ],
    }


def build_upstream_url(base_url: str, api_key: str) -> str:
    return f"{base_url}{api_key}"


def redact_url(url: str) -> str:
    base, sep, key = url.partition("api-key=")
    if not sep:
        return url
    return f"{base}{sep}{key[:4]}..."


# ============================================================================
# SUBSCRIBER
# ============================================================================


class UpstreamSubscriber:
    """
    Owns the single upstream connection and its reconnect loop.

    Args:
        url: Full WebSocket URL including the credential.
        event_queue: Bounded queue shared with the Broadcaster.
        connect: Connection factory, ``websockets.connect`` by default.
    """

    def __init__(
        self,
        url: str,
        event_queue: asyncio.Queue,
        connect: Callable[..., Any] = websockets.connect,
        connect_retry_delay: Optional[float] = None,
        reconnect_delay: Optional[float] = None,
        message_timeout: Optional[float] = None,
    ) -> None:
        self._url = url
        self._event_queue = event_queue
        self._connect = connect

        cfg = get_config()
        upstream_cfg = cfg.get_upstream_config()
        reconnect_cfg = upstream_cfg.get("reconnection", {})
        keepalive_cfg = upstream_cfg.get("keepalive", {})
        pipeline_cfg = cfg.get_pipeline_config().get("event_queue", {})

        self._connect_retry_delay: float = (
            connect_retry_delay
            if connect_retry_delay is not None
            else reconnect_cfg.get("connect_retry_delay_seconds", DEFAULT_CONNECT_RETRY_DELAY_SECONDS)
        )
        self._reconnect_delay: float = (
            reconnect_delay
            if reconnect_delay is not None
            else reconnect_cfg.get("reconnect_delay_seconds", DEFAULT_RECONNECT_DELAY_SECONDS)
        )
        self._message_timeout: float = (
            message_timeout
            if message_timeout is not None
            else keepalive_cfg.get("message_timeout_seconds", DEFAULT_MESSAGE_TIMEOUT_SECONDS)
        )
        self._pong_timeout: float = keepalive_cfg.get(
            "pong_timeout_seconds", DEFAULT_PONG_TIMEOUT_SECONDS
        )
        self._connect_options: Dict[str, Any] = {
            "ping_interval": keepalive_cfg.get("ping_interval_seconds", 20),
            "ping_timeout": keepalive_cfg.get("ping_timeout_seconds", 20),
            "close_timeout": keepalive_cfg.get("close_timeout_seconds", 10),
            "max_size": upstream_cfg.get("max_message_bytes", 10 * 1024 * 1024),
        }

        # Built once so every reconnect sends the identical request
        self._subscription_request: str = json.dumps(
            build_subscription_request(
                upstream_cfg.get("program_address", PUMP_FUN_PROGRAM),
                upstream_cfg.get("commitment", DEFAULT_COMMITMENT),
                upstream_cfg.get("encoding", DEFAULT_ENCODING),
            )
        )

        maxsize = event_queue.maxsize
        ratio = pipeline_cfg.get("high_water_ratio", DEFAULT_QUEUE_HIGH_WATER_RATIO)
        self._high_water: int = max(1, int(maxsize * ratio)) if maxsize > 0 else 0
        self._above_high_water: bool = False

        # Mutable state
        self._running: bool = False
        self._ws: Optional[Any] = None
        self.state: UpstreamState = UpstreamState.DISCONNECTED
        self.state_history: List[UpstreamState] = [UpstreamState.DISCONNECTED]
        self.connection_count: int = 0
        self.events_enqueued: int = 0
        self.subscription_id: Optional[Any] = None

        self._logger = setup_module_logger("upstream", "upstream.log", module_folder="Upstream_Logs")

    @property
    def subscription_request(self) -> str:
        return self._subscription_request

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Connect, subscribe and read forever; designed to run as an asyncio.Task."""
        self._running = True
        self._logger.info("Upstream subscriber started for %s", redact_url(self._url))
        try:
            while self._running:
                connected = False
                self._set_state(UpstreamState.CONNECTING)
                try:
                    async with self._connect(self._url, **self._connect_options) as ws:
                        connected = True
                        self._ws = ws
                        self.connection_count += 1
                        await self._subscribe(ws)
                        await self._read_loop(ws)
                except asyncio.CancelledError:
                    raise
                except ConnectionClosed as exc:
                    self._logger.warning("Error reading from upstream: %s", exc)
                except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                    if connected:
                        self._logger.warning("Upstream connection failed: %s", exc)
                    else:
                        self._logger.warning("Error connecting to upstream: %s", exc)
                except UpstreamSubscriberError as exc:
                    self._logger.error("Subscription rejected: %s", exc)
                except Exception as exc:
                    self._logger.error(
                        "Unexpected upstream error: %s\n%s", exc, traceback.format_exc()
                    )
                finally:
                    self._ws = None
                    self._set_state(UpstreamState.DISCONNECTED)

                if not self._running:
                    break
                delay = self._reconnect_delay if connected else self._connect_retry_delay
                self._logger.info("Disconnected from upstream, reconnecting in %.1fs...", delay)
                await asyncio.sleep(delay)
        finally:
            self._running = False
            self._logger.info("Upstream subscriber stopped")

    def stop(self) -> None:
        """Request cooperative exit after the current message."""
        self._running = False

    async def close(self) -> None:
        """Stop the loop and close the live upstream connection, if any."""
        self.stop()
        ws = self._ws
        if ws is not None:
            await ws.close()

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _set_state(self, state: UpstreamState) -> None:
        if state is self.state:
            return
        self._logger.debug("Upstream state %s -> %s", self.state.value, state.value)
        self.state = state
        self.state_history.append(state)

    async def _subscribe(self, ws: Any) -> None:
        await ws.send(self._subscription_request)
        self._set_state(UpstreamState.SUBSCRIBED)
        self._logger.info("Connected to upstream, logsSubscribe sent")

    async def _read_loop(self, ws: Any) -> None:
        self._set_state(UpstreamState.READING)
        while self._running:
            try:
                raw_message = await asyncio.wait_for(ws.recv(), timeout=self._message_timeout)
            except asyncio.TimeoutError:
                self._logger.debug("No message received, checking connection...")
                if not await self._is_alive(ws):
                    self._logger.warning("Ping failed, reconnecting...")
                    return
                continue

            await self._handle_message(raw_message)

    async def _is_alive(self, ws: Any) -> bool:
        try:
            pong_waiter = await ws.ping()
            await asyncio.wait_for(pong_waiter, timeout=self._pong_timeout)
            return True
        except asyncio.CancelledError:
            raise
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    async def _handle_message(self, raw_message: Any) -> Optional[ClassifiedEvent]:
        if isinstance(raw_message, bytes):
            raw_message = raw_message.decode("utf-8", errors="replace")
        try:
            message = json.loads(raw_message)
        except json.JSONDecodeError as exc:
            self._logger.debug("Skipping invalid JSON message: %s", exc)
            return None
        if not isinstance(message, dict):
            return None

        if "error" in message:
            raise UpstreamSubscriberError(message["error"])
        if message.get("id") == SUBSCRIPTION_REQUEST_ID and "result" in message:
            self.subscription_id = message["result"]
            self._logger.info("Subscribed. Subscription ID: %s", self.subscription_id)
            return None

        event = classify_notification(message, raw_message)
        if event is None:
            return None

        self._check_high_water()
        await self._event_queue.put(event)
        self.events_enqueued += 1
        log_event_flow(
            "ENQUEUED",
            "upstream",
            f"{event.kind.value} event",
            {
                "mint": event.payload.mint_address,
                "destination": event.payload.destination_address,
                "amount_sol": event.payload.amount_sol,
            },
            signature=event.signature,
            next_stage="broadcaster",
        )
        return event

    def _check_high_water(self) -> None:
        if not self._high_water:
            return
        size = self._event_queue.qsize()
        if size >= self._high_water and not self._above_high_water:
            self._above_high_water = True
            self._logger.warning(
                "Event queue above high-water mark (%d/%d); upstream reads will block when full",
                size,
                self._event_queue.maxsize,
            )
        elif size < self._high_water and self._above_high_water:
            self._above_high_water = False
            self._logger.info("Event queue back below high-water mark (%d)", size)
