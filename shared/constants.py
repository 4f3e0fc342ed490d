"""
Shared constants for the Pump Log Relay.

Program addresses, log markers, payload layout and default values used
across all modules.
"""

# ---------------------------------------------------------------------------
# Numeric Constants
# ---------------------------------------------------------------------------

LAMPORTS_PER_SOL = 1_000_000_000  # 1e9 (lamports -> SOL)

# ---------------------------------------------------------------------------
# Program Data Payload Layout (little-endian)
# ---------------------------------------------------------------------------

PAYLOAD_MIN_LENGTH = 72
AMOUNT_SLICE = slice(0, 8)  # uint64 LE
MINT_SLICE = slice(8, 40)  # 32-byte pubkey
DESTINATION_SLICE = slice(40, 72)  # 32-byte pubkey

# base58 length of a 32-byte pubkey (no leading zero bytes)
MINT_ADDRESS_LENGTHS = (43, 44)

# ---------------------------------------------------------------------------
# Log Markers
# ---------------------------------------------------------------------------

PROGRAM_DATA_MARKER = "Program data:"
CREATE_MARKER = "InitializeMint"
BUY_MARKER = "Buy"
SELL_MARKER = "Sell"

# Substring marking a mint as belonging to the pump.fun family
ELIGIBILITY_SUFFIX = "pump"

# ---------------------------------------------------------------------------
# Solana Infrastructure
# ---------------------------------------------------------------------------

PUMP_FUN_PROGRAM = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
DEFAULT_UPSTREAM_WS_URL = "wss://mainnet.helius-rpc.com/?api-key="
DEFAULT_COMMITMENT = "finalized"
DEFAULT_ENCODING = "jsonParsed"
SUBSCRIPTION_REQUEST_ID = 1
MIN_API_KEY_LENGTH = 8

# ---------------------------------------------------------------------------
# Downstream Defaults
# ---------------------------------------------------------------------------

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_WS_PATH = "/ws"
DEFAULT_TOPIC_LENGTH = 32
DEFAULT_SEND_TIMEOUT_SECONDS = 5.0
BROADCAST_MODE_TOPIC = "topic"
BROADCAST_MODE_ALL = "all"
MESSAGE_FORMAT_RAW = "raw"
MESSAGE_FORMAT_CLASSIFIED = "classified"

# ---------------------------------------------------------------------------
# Upstream Timing Defaults (fixed backoff, not exponential)
# ---------------------------------------------------------------------------

DEFAULT_CONNECT_RETRY_DELAY_SECONDS = 5.0
DEFAULT_RECONNECT_DELAY_SECONDS = 2.0
DEFAULT_PONG_TIMEOUT_SECONDS = 5.0
DEFAULT_MESSAGE_TIMEOUT_SECONDS = 60.0

# ---------------------------------------------------------------------------
# Pipeline Defaults
# ---------------------------------------------------------------------------

DEFAULT_EVENT_QUEUE_MAXSIZE = 10_000
DEFAULT_QUEUE_HIGH_WATER_RATIO = 0.8
