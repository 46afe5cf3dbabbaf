"""
Shared constants for the Ethereum Event Engine.

Channel defaults, protocol field names and default values used across all modules.
"""

# ---------------------------------------------------------------------------
# Redis channel defaults (overridable in config/redis_channels.json)
# ---------------------------------------------------------------------------

DEFAULT_SUBSCRIBE_CHANNEL = "eth-engine-sub"
DEFAULT_UNSUBSCRIBE_CHANNEL = "eth-engine-unsub"
DEFAULT_EVENTS_CHANNEL = "eth-engine-events"
DEFAULT_REGISTRY_PREFIX = "eth-engine:registry"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"

# ---------------------------------------------------------------------------
# Command payload fields
# ---------------------------------------------------------------------------

FIELD_ADDRESS = "address"
FIELD_ABI = "abi"
FIELD_TYPE = "type"
FIELD_TRIGGER_VALUE = "triggerValue"
FIELD_LABEL = "label"

REQUIRED_PAYLOAD_FIELDS = (
    FIELD_ADDRESS,
    FIELD_ABI,
    FIELD_TYPE,
    FIELD_TRIGGER_VALUE,
    FIELD_LABEL,
)

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

MEMORY_REGISTRY_ID = 0
REDIS_REGISTRY_ID = 2

# ---------------------------------------------------------------------------
# Connection defaults
# ---------------------------------------------------------------------------

DEFAULT_REQUEST_TIMEOUT_SECONDS = 15.0
DEFAULT_MAX_CONNECTION_ATTEMPTS = 10
DEFAULT_RECONNECT_BASE_DELAY = 2
DEFAULT_RECONNECT_MAX_DELAY = 60
DEFAULT_JITTER_MAX = 1.0
MAX_WS_MESSAGE_SIZE = 10 * 1024 * 1024  # 10MB

# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------

DEFAULT_CALLBACK_DRAIN_TIMEOUT = 5.0
