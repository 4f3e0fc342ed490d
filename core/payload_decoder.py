"""
Program-data payload decoder for the Pump Log Relay.

Extracts the fixed 72-byte event payload that pump.fun emits as a
base64 ``Program data:`` log line:

    bytes [0:8]   uint64 little-endian amount (lamports)
    bytes [8:40]  mint pubkey        -> base58
    bytes [40:72] destination pubkey -> base58

Most log lines are not payload carriers, so every failure mode returns
``None`` instead of raising.

Usage:
    from core.payload_decoder import decode_program_data

    payload = decode_program_data(log_line)
    if payload is not None:
        print(payload.mint_address, payload.amount_sol)
"""

from __future__ import annotations

import base64
import binascii
import struct

import base58

from shared.constants import (
    AMOUNT_SLICE,
    DESTINATION_SLICE,
    MINT_SLICE,
    PAYLOAD_MIN_LENGTH,
    PROGRAM_DATA_MARKER,
)
from shared.types import DecodedPayload

_UINT64_LE = struct.Struct("<Q")


def is_program_data_line(log_line: str) -> bool:
    return PROGRAM_DATA_MARKER in log_line


def decode_payload_bytes(data: bytes) -> DecodedPayload | None:
    """Parse a raw payload buffer. Returns None for buffers under 72 bytes."""
    if len(data) < PAYLOAD_MIN_LENGTH:
        return None

    (amount,) = _UINT64_LE.unpack(data[AMOUNT_SLICE])
    return DecodedPayload(
        amount_lamports=amount,
        mint_address=base58.b58encode(data[MINT_SLICE]).decode("ascii"),
        destination_address=base58.b58encode(data[DESTINATION_SLICE]).decode("ascii"),
    )


def decode_program_data(log_line: str) -> DecodedPayload | None:
    """
    Decode the payload carried by a ``Program data:`` log line.

    Returns None when the marker is absent, the remainder is not valid
    base64, or the decoded buffer is shorter than 72 bytes.
    """
    _, marker, encoded = log_line.partition(PROGRAM_DATA_MARKER)
    if not marker:
        return None

    try:
        data = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError):
        return None

    return decode_payload_bytes(data)
