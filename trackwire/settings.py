"""Environment-driven settings for trackwire.

Every field can be overridden with a TRACKWIRE_-prefixed environment
variable (e.g. TRACKWIRE_API_ENDPOINT, TRACKWIRE_QUEUE_MAX_SIZE) or an
entry in a local .env file. Settings are built once by the composition root
(trackwire/bootstrap.py) and injected; nothing reads them at call time.
"""

import re
from typing import Dict, Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from trackwire.config import constants

_HTTP_URL_PATTERN = re.compile(r'^https?://[^\s/$.?#].[^\s]*$', re.IGNORECASE)
_WS_URL_PATTERN = re.compile(r'^wss?://[^\s/$.?#].[^\s]*$', re.IGNORECASE)


class Settings(BaseSettings):
    """Trackwire settings."""

    # =========================================================================
    # ENDPOINTS
    # =========================================================================
    api_endpoint: str = "http://localhost:3000/pixel"
    ws_endpoint: str = "ws://localhost:3000/tracking"

    # =========================================================================
    # STORAGE
    # =========================================================================
    # None keeps snapshots in memory only (no persistence across restarts)
    storage_dir: Optional[str] = None
    storage_quota_bytes: Optional[int] = Field(default=None, ge=1)

    # =========================================================================
    # LOGGING
    # =========================================================================
    log_level: str = "INFO"
    log_json: bool = True

    # =========================================================================
    # RATE LIMITING
    # =========================================================================
    throttle_enabled: bool = True
    throttle_rules: Dict[str, int] = Field(
        default_factory=lambda: dict(constants.DEFAULT_THROTTLE_RULES)
    )

    # =========================================================================
    # AGGREGATION
    # =========================================================================
    aggregation_enabled: bool = True
    aggregation_window_ms: int = Field(
        default=constants.DEFAULT_AGGREGATION_WINDOW_MS, ge=10, le=60000
    )
    aggregation_max_buckets: int = Field(
        default=constants.DEFAULT_AGGREGATION_MAX_BUCKETS, ge=1, le=100000
    )

    # =========================================================================
    # QUEUE AND DISPATCH
    # =========================================================================
    queue_max_size: int = Field(default=constants.DEFAULT_QUEUE_MAX_SIZE, ge=1)
    queue_persist_every: int = Field(
        default=constants.DEFAULT_QUEUE_PERSIST_EVERY, ge=1, le=10000
    )
    batch_size: int = Field(
        default=constants.DEFAULT_BATCH_SIZE, ge=1, le=constants.MAX_BATCH_SIZE
    )
    dispatch_interval_seconds: float = Field(
        default=constants.DEFAULT_DISPATCH_INTERVAL_SECONDS, gt=0.0, le=3600.0
    )
    transport: Literal["socket", "http"] = "socket"
    send_max_retries: int = Field(default=constants.SEND_MAX_RETRIES, ge=0, le=10)
    send_retry_delay_seconds: float = Field(
        default=constants.SEND_RETRY_DELAY_SECONDS, ge=0.0, le=60.0
    )

    # =========================================================================
    # TOKENS
    # =========================================================================
    token_safety_margin_seconds: int = Field(
        default=constants.TOKEN_SAFETY_MARGIN_SECONDS, ge=0, le=3600
    )
    token_max_attempts: int = Field(default=constants.TOKEN_MAX_ATTEMPTS, ge=1, le=10)
    token_retry_delay_seconds: float = Field(
        default=constants.TOKEN_RETRY_DELAY_SECONDS, ge=0.0, le=60.0
    )
    token_request_timeout: float = Field(
        default=constants.TOKEN_REQUEST_TIMEOUT_SECONDS, gt=0.0, le=120.0
    )

    # =========================================================================
    # CONNECTION AND PRESENCE
    # =========================================================================
    auto_reconnect: bool = True
    token_check_interval_seconds: float = Field(
        default=constants.TOKEN_CHECK_INTERVAL_SECONDS, gt=0.0, le=3600.0
    )
    auth_error_delay_seconds: float = Field(
        default=constants.AUTH_ERROR_RETRY_DELAY_SECONDS, ge=0.0, le=60.0
    )
    inactivity_threshold_seconds: float = Field(
        default=constants.INACTIVITY_THRESHOLD_SECONDS, gt=0.0, le=86400.0
    )
    presence_min_interval_seconds: float = Field(
        default=constants.PRESENCE_MIN_INTERVAL_SECONDS, ge=0.0, le=60.0
    )

    # =========================================================================
    # CONSENT
    # =========================================================================
    # Status used until the visitor records a decision
    consent_default_status: Literal["pending", "granted", "denied"] = "pending"
    # False tracks everything except an explicit denial
    consent_wait_for_consent: bool = True

    # =========================================================================
    # VALIDATORS
    # =========================================================================
    @field_validator('api_endpoint', mode='after')
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """Validate that the API endpoint is an HTTP/HTTPS URL."""
        if not _HTTP_URL_PATTERN.match(v):
            raise ValueError(f"Invalid URL format: {v}. Must be http:// or https://")
        return v.rstrip("/")

    @field_validator('ws_endpoint', mode='after')
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate that the socket endpoint is a WS/WSS URL."""
        if not _WS_URL_PATTERN.match(v):
            raise ValueError(f"Invalid WebSocket URL: {v}. Must be ws:// or wss://")
        return v

    @field_validator('throttle_rules', mode='after')
    @classmethod
    def validate_throttle_rules(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Intervals must be non-negative milliseconds."""
        for event_type, interval in v.items():
            if interval < 0:
                raise ValueError(f"Negative throttle interval for {event_type}: {interval}")
        return v

    @model_validator(mode='after')
    def validate_batch_fits_queue(self) -> 'Settings':
        """A batch larger than the queue could never be filled."""
        if self.batch_size > self.queue_max_size:
            raise ValueError(
                f"batch_size ({self.batch_size}) must not exceed "
                f"queue_max_size ({self.queue_max_size})"
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="TRACKWIRE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def log_config(self, logger) -> None:
        """Log the effective delivery configuration."""
        logger.info(
            "trackwire_config",
            api_endpoint=self.api_endpoint,
            ws_endpoint=self.ws_endpoint,
            transport=self.transport,
            persistent=self.storage_dir is not None,
            throttle_enabled=self.throttle_enabled,
            aggregation_enabled=self.aggregation_enabled,
            consent_default_status=self.consent_default_status,
            consent_wait_for_consent=self.consent_wait_for_consent,
            queue_max_size=self.queue_max_size,
            batch_size=self.batch_size,
        )


__all__ = ["Settings"]
