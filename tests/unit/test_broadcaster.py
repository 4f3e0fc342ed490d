"""
Unit tests for core/broadcaster.py and shared/serialization_utils.py.

Tests cover topic routing, unfiltered mode, partial send failure,
slow-client isolation via the send timeout, wire formats, and the
queue-draining run loop.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from core.broadcaster import Broadcaster
from core.event_classifier import classify_logs
from shared.serialization_utils import (
    EventEncoder,
    classified_event_to_dict,
    serialize_classified_event,
)
from shared.types import EventKind
from tests.conftest import (
    DEST_ADDRESS,
    PUMP_MINT,
    SAMPLE_SIGNATURE,
    FakeConnection,
    buy_logs,
    make_notification,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _buy_event():
    logs = buy_logs()
    return classify_logs(logs, raw=make_notification(logs), signature=SAMPLE_SIGNATURE)


def _make_broadcaster(registry, queue=None, **kwargs):
    kwargs.setdefault("send_timeout", 0.2)
    kwargs.setdefault("broadcast_mode", "topic")
    kwargs.setdefault("message_format", "raw")
    return Broadcaster(registry, queue or asyncio.Queue(), **kwargs)


class _RecordingRegistry:
    """Registry stub that accepts any topic, used where mint length != 32."""

    def __init__(self, conns):
        self.conns = set(conns)
        self.removed = []

    def snapshot_for(self, topic):
        return frozenset(self.conns) if topic == PUMP_MINT else frozenset()

    def snapshot_all(self):
        return frozenset(self.conns)

    def remove_connection(self, conn):
        self.removed.append(conn)
        self.conns.discard(conn)


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


class TestRouting:
    @pytest.mark.asyncio
    async def test_topic_mode_targets_mint_subscribers(self):
        conn = FakeConnection()
        registry = _RecordingRegistry([conn])
        broadcaster = _make_broadcaster(registry)
        event = _buy_event()

        assert await broadcaster.broadcast(event) == 1
        assert conn.sent == [event.raw]

    @pytest.mark.asyncio
    async def test_no_subscribers_sends_nothing(self, registry):
        registered = FakeConnection()
        registry.register(registered)
        broadcaster = _make_broadcaster(registry)

        assert await broadcaster.broadcast(_buy_event()) == 0
        assert registered.sent == []

    @pytest.mark.asyncio
    async def test_all_mode_reaches_every_registered_connection(self, registry):
        a, b = FakeConnection(), FakeConnection()
        registry.register(a)
        registry.register(b)
        broadcaster = _make_broadcaster(registry, broadcast_mode="all")

        assert await broadcaster.broadcast(_buy_event()) == 2
        assert len(a.sent) == len(b.sent) == 1


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_fanout(self, registry):
        good = [FakeConnection() for _ in range(3)]
        bad = FakeConnection(fail_send=True)
        for conn in [*good, bad]:
            registry.register(conn)
        broadcaster = _make_broadcaster(registry, broadcast_mode="all")

        delivered = await broadcaster.broadcast(_buy_event())

        assert delivered == 3
        assert all(len(conn.sent) == 1 for conn in good)
        assert bad.closed
        assert bad not in registry.snapshot_all()
        assert registry.connection_count() == 3

    @pytest.mark.asyncio
    async def test_failed_subscriber_is_deregistered(self):
        good, bad = FakeConnection(), FakeConnection(fail_send=True)
        registry = _RecordingRegistry([good, bad])
        broadcaster = _make_broadcaster(registry)

        assert await broadcaster.broadcast(_buy_event()) == 1
        assert registry.removed == [bad]

    @pytest.mark.asyncio
    async def test_slow_client_times_out_without_blocking_others(self, registry):
        fast = FakeConnection()
        slow = FakeConnection(send_delay=5.0)
        registry.register(fast)
        registry.register(slow)
        broadcaster = _make_broadcaster(registry, broadcast_mode="all", send_timeout=0.05)

        delivered = await asyncio.wait_for(broadcaster.broadcast(_buy_event()), timeout=2.0)

        assert delivered == 1
        assert len(fast.sent) == 1
        assert slow.closed
        assert slow not in registry.snapshot_all()

    @pytest.mark.asyncio
    async def test_failed_client_not_retried(self, registry):
        bad = FakeConnection(fail_send=True)
        registry.register(bad)
        broadcaster = _make_broadcaster(registry, broadcast_mode="all")

        await broadcaster.broadcast(_buy_event())
        assert await broadcaster.broadcast(_buy_event()) == 0


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------


class TestWireFormat:
    def test_raw_forwards_upstream_text(self, registry):
        event = _buy_event()
        assert _make_broadcaster(registry).serialize(event) == event.raw

    def test_classified_document(self, registry):
        event = _buy_event()
        broadcaster = _make_broadcaster(registry, message_format="classified")
        doc = json.loads(broadcaster.serialize(event))
        assert doc == {
            "type": "buy",
            "signature": SAMPLE_SIGNATURE,
            "mint": PUMP_MINT,
            "destination": DEST_ADDRESS,
            "amount": 5,
            "amount_lamports": 5_000_000_000,
        }

    def test_serializer_helpers_agree(self):
        event = _buy_event()
        assert json.loads(serialize_classified_event(event))["mint"] == (
            classified_event_to_dict(event)["mint"]
        )

    def test_encoder_emits_enum_values(self):
        assert json.dumps({"type": EventKind.SELL}, cls=EventEncoder) == '{"type": "sell"}'

    def test_encoder_rejects_other_objects(self):
        with pytest.raises(TypeError):
            json.dumps({"payload": _buy_event().payload}, cls=EventEncoder)

    def test_unknown_mode_rejected(self, registry):
        with pytest.raises(ValueError):
            _make_broadcaster(registry, broadcast_mode="sometimes")

    def test_unknown_format_rejected(self, registry):
        with pytest.raises(ValueError):
            _make_broadcaster(registry, message_format="xml")


# ---------------------------------------------------------------------------
# Run loop
# ---------------------------------------------------------------------------


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_drains_queue_in_order(self, event_queue):
        conn = FakeConnection()
        registry = _RecordingRegistry([conn])
        broadcaster = _make_broadcaster(registry, queue=event_queue)

        first, second = _buy_event(), _buy_event()
        await event_queue.put(first)
        await event_queue.put(second)

        task = asyncio.create_task(broadcaster.run())
        await asyncio.wait_for(event_queue.join(), timeout=2.0)
        broadcaster.stop()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert conn.sent == [first.raw, second.raw]
