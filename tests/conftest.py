"""
Shared pytest configuration and fixtures for Pump Log Relay tests.

Provides payload builders and an in-memory stand-in for a downstream
WebSocket connection, used across both unit and integration suites.
"""

from __future__ import annotations

import asyncio
import base64
import json
import struct
from typing import Any, Iterable

import base58
import pytest
from websockets.exceptions import ConnectionClosedError

from shared.constants import LAMPORTS_PER_SOL

# ---------------------------------------------------------------------------
# Addresses
# ---------------------------------------------------------------------------

# 44 base58 chars starting with "2" decode to exactly 32 bytes
PUMP_MINT = "2" + "A" * 39 + "pump"
PUMP_MINT_BYTES = base58.b58decode(PUMP_MINT)

PLAIN_MINT_BYTES = b"\x07" * 32
PLAIN_MINT = base58.b58encode(PLAIN_MINT_BYTES).decode("ascii")

DEST_BYTES = bytes(range(1, 33))
DEST_ADDRESS = base58.b58encode(DEST_BYTES).decode("ascii")

# 32-character downstream topic carrying the eligibility suffix
VALID_TOPIC = "B" * 28 + "pump"

SAMPLE_SIGNATURE = "5" * 88


# ---------------------------------------------------------------------------
# Payload / notification builders
# ---------------------------------------------------------------------------


def make_payload(
    amount_lamports: int = 5 * LAMPORTS_PER_SOL,
    mint: bytes = PUMP_MINT_BYTES,
    destination: bytes = DEST_BYTES,
    extra: bytes = b"",
) -> bytes:
    return struct.pack("<Q", amount_lamports) + mint + destination + extra


def make_program_data_line(payload: bytes | None = None, **kwargs: Any) -> str:
    if payload is None:
        payload = make_payload(**kwargs)
    return "Program data: " + base64.b64encode(payload).decode("ascii")


def make_notification(logs: Iterable[str], signature: str = SAMPLE_SIGNATURE) -> str:
    return json.dumps(
        {
            "jsonrpc": "2.0",
            "method": "logsNotification",
            "params": {
                "result": {
                    "context": {"slot": 301_000_000},
                    "value": {"signature": signature, "err": None, "logs": list(logs)},
                },
                "subscription": 42,
            },
        }
    )


def buy_logs(**kwargs: Any) -> list[str]:
    return [
        "Program 6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P invoke [1]",
        "Program log: Instruction: Buy",
        make_program_data_line(**kwargs),
        "Program 6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P success",
    ]


# ---------------------------------------------------------------------------
# Downstream connection double
# ---------------------------------------------------------------------------


class FakeConnection:
    """
    In-memory duplex connection.

    ``incoming`` items are yielded by async iteration; an exception
    instance in the list is raised at that point instead.
    """

    def __init__(
        self,
        incoming: Iterable[Any] = (),
        fail_send: bool = False,
        send_delay: float = 0.0,
        remote_address: Any = ("127.0.0.1", 50000),
    ) -> None:
        self.incoming = list(incoming)
        self.fail_send = fail_send
        self.send_delay = send_delay
        self.remote_address = remote_address
        self.sent: list[str] = []
        self.closed = False

    async def send(self, message: str) -> None:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.fail_send:
            raise ConnectionClosedError(None, None)
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self.incoming:
            if isinstance(item, BaseException):
                raise item
            yield item


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def event_queue():
    """Bounded queue shared between subscriber and broadcaster."""
    return asyncio.Queue(maxsize=100)


@pytest.fixture
def registry():
    from core.subscription_registry import SubscriptionRegistry

    return SubscriptionRegistry(topic_length=32, eligibility_suffix="pump")
