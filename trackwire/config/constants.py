"""
Configuration constants for trackwire.

Centralizes static operational constants. Values that deployments tune
(endpoints, intervals, sizes) live in trackwire/settings.py and default to
the constants below.
"""

from types import MappingProxyType

# ==============================================================================
# PLATFORM IDENTITY
# ==============================================================================

PLATFORM_NAME = "trackwire"
PLATFORM_VERSION = "1.0.0"


# ==============================================================================
# STORAGE KEYS (one slot per persisted resource, replaced wholesale)
# ==============================================================================

QUEUE_STORAGE_KEY = "trackwire_tracking_queue"
TOKEN_STORAGE_KEY = "trackwire_tokens"
CLIENT_FINGERPRINT_KEY = "trackwire_client"
VISITOR_ID_KEY = "trackwire_visitor_id"
CONSENT_STORAGE_KEY = "trackwire_consent"


# ==============================================================================
# RATE LIMITING (minimum interval between events of a type, ms)
# ==============================================================================

# Critical events (FORM_SUBMIT, ADD_TO_CART, PAGE_VIEW, ...) have no rule.
DEFAULT_THROTTLE_RULES = MappingProxyType({
    "SCROLL": 100,
    "MOUSE_MOVE": 50,
    "HOVER": 200,
    "MOUSE_ENTER": 200,
    "MOUSE_LEAVE": 200,
    "RESIZE": 300,
})


# ==============================================================================
# AGGREGATION
# ==============================================================================

# High-frequency, low-information event types eligible for merging
AGGREGABLE_EVENT_TYPES = frozenset({
    "SCROLL",
    "MOUSE_MOVE",
    "HOVER",
    "MOUSE_ENTER",
    "MOUSE_LEAVE",
    "RESIZE",
    "FOCUS",
    "BLUR",
})

DEFAULT_AGGREGATION_WINDOW_MS = 1000
DEFAULT_AGGREGATION_MAX_BUCKETS = 1000


# ==============================================================================
# QUEUE AND DISPATCH
# ==============================================================================

DEFAULT_QUEUE_MAX_SIZE = 10000
DEFAULT_QUEUE_PERSIST_EVERY = 10
DEFAULT_BATCH_SIZE = 500
MAX_BATCH_SIZE = 500
DEFAULT_DISPATCH_INTERVAL_SECONDS = 5.0


# ==============================================================================
# TOKENS
# ==============================================================================

TOKEN_SAFETY_MARGIN_SECONDS = 30
TOKEN_MAX_ATTEMPTS = 3
TOKEN_RETRY_DELAY_SECONDS = 1.0
TOKEN_REQUEST_TIMEOUT_SECONDS = 10.0


# ==============================================================================
# CONNECTION AND PRESENCE
# ==============================================================================

TOKEN_CHECK_INTERVAL_SECONDS = 30.0
AUTH_ERROR_RETRY_DELAY_SECONDS = 2.0
INACTIVITY_THRESHOLD_SECONDS = 300.0
PRESENCE_MIN_INTERVAL_SECONDS = 1.0

# Socket event names
EVENT_AUTH_ERROR = "auth_error"
EVENT_CONNECT = "connect"
EVENT_DISCONNECT = "disconnect"
EVENT_USER_STATUS = "user_status"
EVENT_USER_ACTIVE = "user_active"
EVENT_USER_INACTIVE = "user_inactive"
EVENT_TRACKING_BATCH = "tracking:batch"


# ==============================================================================
# ERROR HANDLING
# ==============================================================================

SEND_MAX_RETRIES = 3
SEND_RETRY_DELAY_SECONDS = 1.0
ERROR_SNIPPET_MAX_LENGTH = 200
