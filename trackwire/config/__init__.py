"""Configuration package for trackwire.

Config ownership map:
  settings.py   - environment-driven settings (endpoints, intervals, sizes)
  constants.py  - static constants (storage keys, default rules, event names)
"""

from trackwire.config.constants import (
    # Storage keys
    QUEUE_STORAGE_KEY,
    TOKEN_STORAGE_KEY,
    CLIENT_FINGERPRINT_KEY,
    VISITOR_ID_KEY,
    CONSENT_STORAGE_KEY,
    # Pipeline defaults
    DEFAULT_THROTTLE_RULES,
    AGGREGABLE_EVENT_TYPES,
    DEFAULT_AGGREGATION_WINDOW_MS,
    DEFAULT_AGGREGATION_MAX_BUCKETS,
    DEFAULT_QUEUE_MAX_SIZE,
    DEFAULT_QUEUE_PERSIST_EVERY,
    DEFAULT_BATCH_SIZE,
    MAX_BATCH_SIZE,
    # Tokens
    TOKEN_SAFETY_MARGIN_SECONDS,
)

__all__ = [
    "QUEUE_STORAGE_KEY",
    "TOKEN_STORAGE_KEY",
    "CLIENT_FINGERPRINT_KEY",
    "VISITOR_ID_KEY",
    "CONSENT_STORAGE_KEY",
    "DEFAULT_THROTTLE_RULES",
    "AGGREGABLE_EVENT_TYPES",
    "DEFAULT_AGGREGATION_WINDOW_MS",
    "DEFAULT_AGGREGATION_MAX_BUCKETS",
    "DEFAULT_QUEUE_MAX_SIZE",
    "DEFAULT_QUEUE_PERSIST_EVERY",
    "DEFAULT_BATCH_SIZE",
    "MAX_BATCH_SIZE",
    "TOKEN_SAFETY_MARGIN_SECONDS",
]
