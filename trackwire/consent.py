"""ConsentGate - the tracking-allowed predicate.

Consent UI lives outside trackwire; it records the visitor's decision here.
The Tracker consults is_tracking_allowed() before any event enters the
pipeline. By default only an explicit grant allows tracking. A host that does
not gate on consent sets wait_for_consent=False, and then only an explicit
denial blocks it. Without a stored decision the gate starts at
default_status.
"""

import json
from typing import Callable, List, Optional

from trackwire.config.constants import CONSENT_STORAGE_KEY
from trackwire.protocols import ClockProtocol, ConsentStatus, LoggerProtocol, StorageProtocol
from trackwire.utils.logging import get_component_logger

ConsentListener = Callable[[ConsentStatus], None]


class ConsentGate:
    """Persisted consent state with change listeners."""

    def __init__(
        self,
        storage: StorageProtocol,
        clock: ClockProtocol,
        default_status: ConsentStatus = ConsentStatus.PENDING,
        wait_for_consent: bool = True,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._storage = storage
        self._clock = clock
        self._default_status = ConsentStatus(default_status)
        self._wait_for_consent = wait_for_consent
        self._logger = get_component_logger("ConsentGate", logger)
        self._listeners: List[ConsentListener] = []
        self._status = self._load()

    @property
    def status(self) -> ConsentStatus:
        return self._status

    @property
    def wait_for_consent(self) -> bool:
        return self._wait_for_consent

    def is_tracking_allowed(self) -> bool:
        if self._wait_for_consent:
            return self._status is ConsentStatus.GRANTED
        return self._status is not ConsentStatus.DENIED

    def grant(self) -> None:
        self._set(ConsentStatus.GRANTED)

    def deny(self) -> None:
        self._set(ConsentStatus.DENIED)

    def revoke(self) -> None:
        """Withdraw a previous grant. Equivalent to deny."""
        self._set(ConsentStatus.DENIED)

    def reset(self) -> None:
        """Forget the decision and fall back to the default status."""
        self._set(self._default_status)

    def subscribe(self, listener: ConsentListener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, status: ConsentStatus) -> None:
        if status is self._status:
            return
        self._status = status
        record = {"status": status.value, "updatedAt": self._clock.time()}
        try:
            self._storage.set_item(CONSENT_STORAGE_KEY, json.dumps(record))
        except Exception as e:
            self._logger.warning("consent_persist_failed", error=str(e))
        self._logger.info("consent_changed", status=status.value)

        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                self._logger.error("consent_listener_error", error=str(e))

    def _load(self) -> ConsentStatus:
        raw = self._storage.get_item(CONSENT_STORAGE_KEY)
        if not raw:
            return self._default_status
        try:
            return ConsentStatus(json.loads(raw)["status"])
        except (ValueError, KeyError, TypeError):
            self._logger.warning("consent_state_malformed")
            return self._default_status


__all__ = ["ConsentGate", "ConsentListener"]
