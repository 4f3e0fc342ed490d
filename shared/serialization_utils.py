"""
Serialization utilities for the Pump Log Relay.

Provides JSON encoding for enum members and the compact "classified"
wire form pushed to downstream clients.

Usage:
    from shared.serialization_utils import serialize_classified_event
    text = serialize_classified_event(event)
"""

import json
from enum import Enum
from json import JSONEncoder
from typing import Any, Dict

from shared.types import ClassifiedEvent


class EventEncoder(JSONEncoder):
    """Custom JSON encoder emitting Enum members by value."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def classified_event_to_dict(event: ClassifiedEvent) -> Dict[str, Any]:
    """Flatten a ClassifiedEvent into the downstream "classified" document."""
    payload = event.payload
    return {
        "type": event.kind,
        "signature": event.signature,
        "mint": payload.mint_address,
        "destination": payload.destination_address,
        "amount": payload.amount_sol,
        "amount_lamports": payload.amount_lamports,
    }


def serialize_classified_event(event: ClassifiedEvent) -> str:
    """Encode a ClassifiedEvent as compact JSON text."""
    return json.dumps(classified_event_to_dict(event), cls=EventEncoder, separators=(",", ":"))
