"""AppContext - Unified application context for dependency injection.

One composition root (trackwire/bootstrap.py) builds one AppContext;
every component gets its settings, logger, clock, storage and shared
services from there instead of from module-level singletons.

Usage:
    from trackwire.context import AppContext

    app_context = create_app_context()
    lifecycle = app_context.registry.get_or_create(
        "tokens", settings.api_endpoint, lambda: TokenLifecycle(...)
    )
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple, TYPE_CHECKING

from trackwire.protocols import (
    ClockProtocol,
    LoggerProtocol,
    StorageProtocol,
)

if TYPE_CHECKING:
    from trackwire.settings import Settings


class SystemClock:
    """Default system clock implementation.

    Implements ClockProtocol for real wall-clock time.
    Replaced with a fake clock in tests.
    """

    def now(self) -> datetime:
        """Get current UTC datetime with timezone info."""
        return datetime.now(timezone.utc)

    def time(self) -> float:
        """Get current epoch time in seconds."""
        return time.time()


def isoformat(moment: datetime) -> str:
    """ISO-8601 with millisecond precision and a Z suffix."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ServiceRegistry:
    """Endpoint-keyed instance registry scoped to the host application.

    Replaces per-endpoint process-wide factories: one instance per
    (kind, endpoint), created lazily, removable explicitly.
    """

    def __init__(self) -> None:
        self._instances: Dict[Tuple[str, str], Any] = {}
        self._aliases: Dict[str, Tuple[str, str]] = {}

    def get_or_create(
        self,
        kind: str,
        endpoint: str,
        factory: Callable[[], Any],
        alias: Optional[str] = None,
    ) -> Any:
        """Return the instance for (kind, endpoint), creating it if needed."""
        key = (kind, endpoint)
        if key not in self._instances:
            self._instances[key] = factory()
            self._aliases[alias or endpoint] = key
        return self._instances[key]

    def get(self, kind: str, endpoint: str) -> Optional[Any]:
        return self._instances.get((kind, endpoint))

    def get_by_alias(self, alias: str) -> Optional[Any]:
        key = self._aliases.get(alias)
        return self._instances.get(key) if key else None

    def remove(self, kind: str, endpoint: str) -> None:
        key = (kind, endpoint)
        self._instances.pop(key, None)
        for alias, target in list(self._aliases.items()):
            if target == key:
                del self._aliases[alias]

    def clear(self) -> None:
        self._instances.clear()
        self._aliases.clear()

    def __len__(self) -> int:
        return len(self._instances)


@dataclass
class AppContext:
    """Concrete application context for dependency injection.

    Attributes:
        settings: Trackwire settings
        logger: Root logger (implements LoggerProtocol)
        storage: Snapshot storage (implements StorageProtocol)
        clock: Time provider (implements ClockProtocol)
        registry: Endpoint-keyed shared services (token lifecycles, channels)
        visitor_id: Persisted visitor identity
        session_id: Identity of the current run
    """

    settings: "Settings"
    logger: LoggerProtocol
    storage: StorageProtocol
    clock: ClockProtocol = field(default_factory=SystemClock)
    registry: ServiceRegistry = field(default_factory=ServiceRegistry)
    visitor_id: Optional[str] = None
    session_id: Optional[str] = None

    def get_bound_logger(self, component: str, **extra: Any) -> LoggerProtocol:
        """Get a logger bound to this context and component."""
        bindings = {"component": component}
        if self.visitor_id:
            bindings["visitor_id"] = self.visitor_id
        if self.session_id:
            bindings["session_id"] = self.session_id
        bindings.update(extra)
        return self.logger.bind(**bindings)


__all__ = [
    "AppContext",
    "ServiceRegistry",
    "SystemClock",
    "isoformat",
]
