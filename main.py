"""
Pump Log Relay - Main Entrypoint.

Single-process asyncio runner:
    1. UpstreamSubscriber - logsSubscribe reader, classifies and enqueues events
    2. Broadcaster        - drains the event queue, fans out to subscribers
    3. websockets server  - accept loop, one ConnectionHandler per client

The upstream reader and the broadcaster communicate through a bounded
asyncio.Queue; downstream handlers and the broadcaster share the
SubscriptionRegistry.

Usage:
    HELIUS_KEY=... python main.py
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from http import HTTPStatus
from typing import Any, Callable

import websockets
from dotenv import load_dotenv

from config.loader import get_config, get_env_var
from config.validate import ConfigValidationError, check_topic_routing, validate_all_configs
from relay_logging.logger_manager import create_module_log_directories, setup_module_logger
from shared.constants import (
    DEFAULT_EVENT_QUEUE_MAXSIZE,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_UPSTREAM_WS_URL,
    DEFAULT_WS_PATH,
    MIN_API_KEY_LENGTH,
)

# ---------------------------------------------------------------------------
# Module logger
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs")


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(
    host: str,
    port: int,
    path: str,
    upstream_url: str,
    broadcast_mode: str,
    message_format: str,
    queue_size: int,
) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("Pump Log Relay starting")
    _logger.info("=" * 60)
    _logger.info("  listen          : ws://%s:%d%s", host, port, path)
    _logger.info("  upstream        : %s", upstream_url)
    _logger.info("  broadcast_mode  : %s", broadcast_mode)
    _logger.info("  message_format  : %s", message_format)
    _logger.info("  event_queue     : %d", queue_size)
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Downstream endpoint
# ---------------------------------------------------------------------------


def make_path_filter(path: str) -> Callable[[Any, Any], Any]:
    """Build a websockets ``process_request`` hook rejecting every other path with 404."""

    def process_request(connection: Any, request: Any) -> Any:
        request_path = request.path.split("?", 1)[0]
        if request_path != path:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")
        return None

    return process_request


async def _close_downstream(connections: Any) -> None:
    if connections:
        await asyncio.gather(*(conn.close() for conn in connections), return_exceptions=True)


# ---------------------------------------------------------------------------
# Task done callback - detect unhandled exceptions
# ---------------------------------------------------------------------------


def _task_done_callback(
    task: asyncio.Task[None],
    shutdown_event: asyncio.Event,
) -> None:
    """Called when a core task finishes (normally or with error)."""
    try:
        exc = task.exception()
    except asyncio.CancelledError:
        _logger.info("Task %s cancelled", task.get_name())
        return

    if exc is not None:
        _logger.critical(
            "Task %s failed with unhandled exception: %s",
            task.get_name(),
            exc,
            exc_info=exc,
        )
    shutdown_event.set()


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run() -> None:
    """Wire all components, serve downstream clients, run until signalled."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        sys.exit(1)

    cfg = get_config()
    upstream_cfg = cfg.get_upstream_config()
    downstream_cfg = cfg.get_downstream_config()
    fanout_cfg = downstream_cfg.get("fanout", {})
    queue_cfg = cfg.get_pipeline_config().get("event_queue", {})

    api_key: str = os.getenv("HELIUS_KEY", "")
    if len(api_key) < MIN_API_KEY_LENGTH:
        _logger.critical("HELIUS_KEY missing or too short in environment")
        sys.exit(1)

    host: str = get_env_var("HOST", downstream_cfg.get("host", DEFAULT_HOST), str)
    port: int = get_env_var("PORT", downstream_cfg.get("port", DEFAULT_PORT), int)
    path: str = downstream_cfg.get("path", DEFAULT_WS_PATH)
    base_url: str = get_env_var(
        "UPSTREAM_WS_URL", upstream_cfg.get("ws_url", DEFAULT_UPSTREAM_WS_URL), str
    )
    broadcast_mode: str = get_env_var("BROADCAST_MODE", fanout_cfg.get("broadcast_mode"), str)
    message_format: str = get_env_var("MESSAGE_FORMAT", fanout_cfg.get("message_format"), str)
    queue_size: int = queue_cfg.get("maxsize", DEFAULT_EVENT_QUEUE_MAXSIZE)

    # BROADCAST_MODE may override the validated file value
    routing_errors = check_topic_routing(broadcast_mode, downstream_cfg["topics"]["length"])
    if routing_errors:
        _logger.critical("Invalid fan-out settings: %s", "; ".join(routing_errors))
        sys.exit(1)

    # ------------------------------------------------------------------
    # 2. Initialize shared instances (dependency order)
    # ------------------------------------------------------------------
    from core.broadcaster import Broadcaster
    from core.connection_handler import ConnectionHandler
    from core.subscription_registry import SubscriptionRegistry
    from data.log_streamer import UpstreamSubscriber, build_upstream_url, redact_url

    upstream_url = build_upstream_url(base_url, api_key)
    _log_banner(host, port, path, redact_url(upstream_url), broadcast_mode, message_format, queue_size)

    event_queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
    registry = SubscriptionRegistry()
    try:
        broadcaster = Broadcaster(
            registry,
            event_queue,
            broadcast_mode=broadcast_mode,
            message_format=message_format,
        )
    except ValueError as exc:
        _logger.critical("Invalid fan-out settings: %s", exc)
        sys.exit(1)
    subscriber = UpstreamSubscriber(upstream_url, event_queue)
    handler = ConnectionHandler(registry)

    # ------------------------------------------------------------------
    # 3. Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s - initiating graceful shutdown", sig.name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    # ------------------------------------------------------------------
    # 4. Start the downstream server and the two pipeline tasks
    # ------------------------------------------------------------------
    server = await websockets.serve(
        handler.handle,
        host,
        port,
        process_request=make_path_filter(path),
    )
    _logger.info("WebSocket server listening on %s:%d%s", host, port, path)

    task_upstream = asyncio.create_task(subscriber.run(), name="upstream_subscriber")
    task_broadcast = asyncio.create_task(broadcaster.run(), name="broadcaster")
    tasks = [task_upstream, task_broadcast]

    for t in tasks:
        t.add_done_callback(lambda done_task: _task_done_callback(done_task, shutdown_event))

    # ------------------------------------------------------------------
    # 5. Wait for shutdown signal, then tear everything down
    # ------------------------------------------------------------------
    try:
        await shutdown_event.wait()
    finally:
        _logger.info("Shutting down - closing upstream and downstream connections")

        broadcaster.stop()
        await subscriber.close()

        for t in tasks:
            if not t.done():
                t.cancel()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for t, result in zip(tasks, results):
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _logger.error("Task %s exited with error: %s", t.get_name(), result)

        await _close_downstream(registry.snapshot_all())
        server.close()
        await server.wait_closed()
        _logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    """Synchronous entry point."""
    create_module_log_directories()
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
