"""
Circuit Breaker — Global emergency pause for every guarded operation.

While paused, ``require_active`` denies every guarded call regardless of
remaining rate-limit quota or collected approvals. Only holders of
EMERGENCY_ROLE may trigger or resolve.

Lifecycle:
    active --trigger--> paused --resolve--> active

Triggering while already paused refreshes the reason and timestamp.
Resolving while active raises NotPaused.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from backr_guard.events.log import EventLog
from backr_guard.policy.errors import CircuitOpen, NotPaused
from backr_guard.policy.roles import RoleRegistry
from backr_guard.policy.schema import (
    EMERGENCY_ROLE,
    CircuitBreakerState,
    EventName,
    normalize_address,
)

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Single global pause switch."""

    def __init__(
        self,
        roles: RoleRegistry,
        events: EventLog | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.roles = roles
        self.events = events
        self.clock = clock
        self._state = CircuitBreakerState()
        self._lock = threading.RLock()

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self._state.paused

    @property
    def state(self) -> CircuitBreakerState:
        with self._lock:
            return self._state.model_copy()

    def trigger(self, reason: str, caller: str) -> CircuitBreakerState:
        """
        Pause every guarded operation.

        Raises:
            Unauthorized: caller lacks EMERGENCY_ROLE.
        """
        self.roles.require_role(EMERGENCY_ROLE, caller)
        now = self.clock()
        with self._lock:
            already_paused = self._state.paused
            self._state = CircuitBreakerState(
                paused=True,
                reason=reason,
                triggered_at=now,
                triggered_by=normalize_address(caller),
            )
            snapshot = self._state.model_copy()

        logger.critical(
            "EMERGENCY TRIGGERED: reason=%s by=%s already_paused=%s",
            reason[:200], caller, already_paused,
        )
        self._emit(
            EventName.EMERGENCY_TRIGGERED,
            timestamp=now,
            reason=reason,
            triggered_by=normalize_address(caller),
            already_paused=already_paused,
        )
        return snapshot

    def resolve(self, caller: str) -> CircuitBreakerState:
        """
        Resume guarded operations.

        Raises:
            Unauthorized: caller lacks EMERGENCY_ROLE.
            NotPaused: the breaker is not currently paused.
        """
        self.roles.require_role(EMERGENCY_ROLE, caller)
        now = self.clock()
        with self._lock:
            if not self._state.paused:
                raise NotPaused("Circuit breaker is not paused")
            previous = self._state
            self._state = CircuitBreakerState()

        logger.info(
            "Emergency resolved: by=%s paused_for=%.0fs reason=%s",
            caller, now - (previous.triggered_at or now), previous.reason[:200],
        )
        self._emit(
            EventName.EMERGENCY_RESOLVED,
            timestamp=now,
            resolved_by=normalize_address(caller),
            reason=previous.reason,
        )
        return self.state

    def require_active(self) -> None:
        """Raise CircuitOpen while paused."""
        with self._lock:
            if not self._state.paused:
                return
            reason = self._state.reason
            triggered_at = self._state.triggered_at
        raise CircuitOpen(
            f"Circuit breaker is open: {reason}",
            reason=reason,
            triggered_at=triggered_at,
        )

    def _emit(self, event_name: EventName, timestamp: float, **args: object) -> None:
        if self.events is not None:
            self.events.emit(event_name, timestamp=timestamp, **args)
