"""Exception taxonomy.

TrackwireError
 ├── ConfigurationError       integration mistakes; raised eagerly
 ├── StorageError             snapshot storage failed
 │    └── StorageQuotaExceededError
 ├── TransportError           network failure talking to the backend
 │    └── AuthenticationError credential rejected
 └── TokenUnavailableError    no valid credential could be obtained
"""

from typing import Optional


class TrackwireError(Exception):
    """Base class for all trackwire errors."""


class ConfigurationError(TrackwireError):
    """Raised when trackwire is wired up incorrectly."""


class StorageError(TrackwireError):
    """Raised when a snapshot cannot be written."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Storage write failed for {key!r}: {message}")


class StorageQuotaExceededError(StorageError):
    """Raised when a write would exceed the storage quota."""

    def __init__(self, key: str, size: int, quota: int):
        self.size = size
        self.quota = quota
        super().__init__(key, f"{size} bytes exceeds quota of {quota} bytes")


class TransportError(TrackwireError):
    """Raised for network-level failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """Network errors and 5xx responses are worth retrying."""
        return self.status_code is None or self.status_code >= 500


class AuthenticationError(TransportError):
    """Raised when the server rejects the presented credential."""


class TokenUnavailableError(TrackwireError):
    """Raised when no valid access token can be obtained."""


__all__ = [
    "TrackwireError",
    "ConfigurationError",
    "StorageError",
    "StorageQuotaExceededError",
    "TransportError",
    "AuthenticationError",
    "TokenUnavailableError",
]
