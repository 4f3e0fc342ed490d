"""
Event classifier for the Pump Log Relay.

Turns the log lines of one ``logsNotification`` into a ClassifiedEvent
(CREATE / BUY / SELL) or None. A single pass collects three signals:

    trade marker  - "Buy" / "Sell" (the last one seen wins)
    create flag   - "InitializeMint"
    payload       - first "Program data:" line that decodes

and a decision table picks the kind:

    create | marker | mint set | eligible mint -> kind
    -------+--------+----------+---------------------
    yes    |   -    |   yes    |      -        -> CREATE
    no     |  Buy   |   yes    |     yes       -> BUY
    no     |  Sell  |   yes    |     yes       -> SELL
    otherwise                                  -> None

Marker matching skips ``Program data:`` lines; base64 text can contain
"Buy" or "Sell" by accident.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from core.payload_decoder import decode_program_data, is_program_data_line
from relay_logging.logger_manager import setup_module_logger
from shared.constants import BUY_MARKER, CREATE_MARKER, ELIGIBILITY_SUFFIX, SELL_MARKER
from shared.types import ClassifiedEvent, DecodedPayload, EventKind, LogBundle

_logger = setup_module_logger("classifier", "classifier.log", module_folder="Classifier_Logs")


@dataclass
class _ScanSignals:
    trade_kind: Optional[EventKind] = None
    create: bool = False
    payload: Optional[DecodedPayload] = None

    @property
    def complete(self) -> bool:
        return self.trade_kind is not None and self.create and self.payload is not None


def is_eligible_mint(mint_address: str) -> bool:
    return ELIGIBILITY_SUFFIX in mint_address


def _scan(logs: LogBundle) -> _ScanSignals:
    signals = _ScanSignals()
    for line in logs:
        if is_program_data_line(line):
            if signals.payload is None:
                signals.payload = decode_program_data(line)
        else:
            if BUY_MARKER in line:
                signals.trade_kind = EventKind.BUY
            if SELL_MARKER in line:
                signals.trade_kind = EventKind.SELL
            if CREATE_MARKER in line:
                signals.create = True

        if signals.complete:
            break
    return signals


def _decide(signals: _ScanSignals) -> Optional[EventKind]:
    payload = signals.payload
    if payload is None or not payload.mint_address:
        return None
    if signals.create:
        return EventKind.CREATE
    if signals.trade_kind is not None and is_eligible_mint(payload.mint_address):
        return signals.trade_kind
    return None


def classify_logs(
    logs: LogBundle,
    raw: str = "",
    signature: str = "",
) -> Optional[ClassifiedEvent]:
    """
    Classify the log lines of one transaction.

    Args:
        logs: Ordered log lines of one transaction.
        raw: Original upstream message text, carried through for forwarding.
        signature: Transaction signature, if known.

    Returns:
        ClassifiedEvent, or None when the bundle matches no row of the table.
    """
    signals = _scan(logs)
    kind = _decide(signals)
    if kind is None:
        return None

    payload = signals.payload
    _logger.debug(
        "Classified %s mint=%s dest=%s amount=%d SOL sig=%s",
        kind.value,
        payload.mint_address,
        payload.destination_address,
        payload.amount_sol,
        signature or "-",
    )
    return ClassifiedEvent(kind=kind, payload=payload, raw=raw, signature=signature)


def classify_notification(message: dict[str, Any], raw: str) -> Optional[ClassifiedEvent]:
    """Classify a parsed ``logsNotification``; anything without a log list yields None."""
    params = message.get("params")
    if not isinstance(params, dict):
        return None
    result = params.get("result")
    if not isinstance(result, dict):
        return None
    value = result.get("value")
    if not isinstance(value, dict):
        return None

    logs = value.get("logs")
    if not isinstance(logs, list):
        return None

    lines: LogBundle = [line for line in logs if isinstance(line, str)]
    signature = value.get("signature") or ""
    return classify_logs(lines, raw=raw, signature=signature)
