from core.broadcaster import Broadcaster
from core.connection_handler import ConnectionHandler
from core.event_classifier import classify_logs, classify_notification
from core.payload_decoder import decode_payload_bytes, decode_program_data
from core.subscription_registry import SubscriptionRegistry

__all__ = [
    "Broadcaster",
    "ConnectionHandler",
    "SubscriptionRegistry",
    "classify_logs",
    "classify_notification",
    "decode_payload_bytes",
    "decode_program_data",
]
