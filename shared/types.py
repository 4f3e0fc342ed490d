"""
Shared data types for the Pump Log Relay.

Centralized dataclasses and enums used across all modules.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from shared.constants import LAMPORTS_PER_SOL

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventKind(Enum):
    CREATE = "create"  # InitializeMint present, non-empty mint
    BUY = "buy"  # Buy marker, eligible mint, no create
    SELL = "sell"  # Sell marker, eligible mint, no create


class UpstreamState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    READING = "reading"


# ---------------------------------------------------------------------------
# Event Types
# ---------------------------------------------------------------------------

# Ordered log lines of one upstream notification
LogBundle = list[str]


@dataclass(frozen=True)
class DecodedPayload:
    """Fields of a 72-byte ``Program data:`` buffer."""

    amount_lamports: int  # uint64 LE, bytes [0:8]
    mint_address: str  # base58, bytes [8:40]
    destination_address: str  # base58, bytes [40:72]

    @property
    def amount_sol(self) -> int:
        """Whole SOL; the fractional remainder is truncated."""
        return self.amount_lamports // LAMPORTS_PER_SOL


@dataclass(frozen=True)
class ClassifiedEvent:
    kind: EventKind
    payload: DecodedPayload
    raw: str  # original upstream message text
    signature: str = ""
