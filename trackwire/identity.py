"""Client identity: fingerprint, visitor id and session id.

The client fingerprint keys token issuance; the visitor id identifies the
browser/device across runs; the session id identifies a single run. The
first two are persisted to storage and reused; malformed stored values are
replaced.
"""

import hashlib
import platform
import uuid
from typing import Callable, Optional

from trackwire.config.constants import CLIENT_FINGERPRINT_KEY, VISITOR_ID_KEY
from trackwire.protocols import LoggerProtocol, StorageProtocol
from trackwire.utils.logging import get_component_logger


def compute_fingerprint() -> str:
    """Derive a stable fingerprint from host characteristics."""
    parts = [
        platform.system(),
        platform.machine(),
        platform.node(),
        platform.python_implementation(),
        str(uuid.getnode()),
    ]
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return str(int(digest[:8], 16))


def _load_or_create(
    storage: StorageProtocol,
    key: str,
    factory: Callable[[], str],
    logger: LoggerProtocol,
) -> str:
    stored = storage.get_item(key)
    if isinstance(stored, str) and stored.strip():
        return stored.strip()

    value = factory()
    try:
        storage.set_item(key, value)
    except Exception as e:
        # Identity still works for this run; it just won't survive a restart.
        logger.warning("identity_persist_failed", key=key, error=str(e))
    return value


class ClientIdentity:
    """Persisted client fingerprint and visitor id."""

    def __init__(
        self,
        storage: StorageProtocol,
        fingerprint_factory: Callable[[], str] = compute_fingerprint,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._storage = storage
        self._fingerprint_factory = fingerprint_factory
        self._logger = get_component_logger("ClientIdentity", logger)
        self._fingerprint: Optional[str] = None
        self._visitor_id: Optional[str] = None

    def get_client_fingerprint(self) -> str:
        if self._fingerprint is None:
            self._fingerprint = _load_or_create(
                self._storage, CLIENT_FINGERPRINT_KEY, self._fingerprint_factory, self._logger
            )
        return self._fingerprint

    def get_visitor_id(self) -> str:
        if self._visitor_id is None:
            self._visitor_id = _load_or_create(
                self._storage, VISITOR_ID_KEY, lambda: str(uuid.uuid4()), self._logger
            )
        return self._visitor_id


def new_session_id() -> str:
    return str(uuid.uuid4())


__all__ = [
    "ClientIdentity",
    "compute_fingerprint",
    "new_session_id",
]
