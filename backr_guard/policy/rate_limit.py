"""
Rate Limiter — Fixed-window admission counters per operation.

Each configured operation gets a counter that resets at discrete window
boundaries. The window starts at the first admission after the previous
window expired, not at a wall-clock multiple of the window length.

A burst of ``limit`` calls at the end of one window followed by ``limit``
more right after the reset is admitted. Sliding-window or token-bucket
behaviour must not be substituted here; collaborators depend on the exact
reset semantics.

``check_and_consume`` is not idempotent: every admitted call spends one unit.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from pydantic import ValidationError

from backr_guard.events.log import EventLog
from backr_guard.policy.errors import InvalidConfig, RateLimitExceeded
from backr_guard.policy.kinds import OperationKinds
from backr_guard.policy.locks import KeyedLocks
from backr_guard.policy.roles import RoleRegistry
from backr_guard.policy.schema import (
    ADMIN_ROLE,
    EventName,
    PolicyKind,
    RateLimitCounter,
    RateLimitPolicy,
    RateLimitScope,
    normalize_address,
)

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Owns every RateLimitPolicy and RateLimitCounter.

    With GLOBAL scope (default) there is one counter per operation shared by
    all callers. With PER_CALLER scope each caller gets its own counter under
    the same policy.
    """

    def __init__(
        self,
        roles: RoleRegistry,
        events: EventLog | None = None,
        clock: Callable[[], float] = time.time,
        scope: RateLimitScope = RateLimitScope.GLOBAL,
        kinds: OperationKinds | None = None,
    ) -> None:
        self.roles = roles
        self.events = events
        self.clock = clock
        self.scope = RateLimitScope(scope)
        self.kinds = kinds if kinds is not None else OperationKinds()
        self._policies: dict[str, RateLimitPolicy] = {}
        self._counters: dict[str, dict[str | None, RateLimitCounter]] = {}
        self._locks = KeyedLocks()
        self._config_lock = threading.RLock()

    def configure_rate_limit(
        self,
        operation: str,
        limit: int,
        window_seconds: int,
        caller: str,
    ) -> RateLimitPolicy:
        """
        Set or overwrite the policy for ``operation`` and reset its counters.

        Raises:
            Unauthorized: caller lacks ADMIN_ROLE.
            InvalidConfig: limit or window_seconds is not a positive integer,
                or the operation is already approval-gated.
        """
        self.roles.require_role(ADMIN_ROLE, caller)
        try:
            policy = RateLimitPolicy(
                operation=operation, limit=limit, window_seconds=window_seconds,
            )
        except ValidationError as e:
            raise InvalidConfig(
                f"Invalid rate limit for {operation[:10]}: limit={limit} "
                f"window_seconds={window_seconds}",
                operation=operation,
            ) from e

        with self._locks(operation):
            with self._config_lock:
                self.kinds.claim(operation, PolicyKind.RATE_LIMIT)
                self._policies[operation] = policy
                self._counters.pop(operation, None)

        logger.info(
            "Rate limit configured: operation=%s limit=%d window=%ds",
            operation[:10], limit, window_seconds,
        )
        self._emit(
            EventName.RATE_LIMIT_CONFIGURED,
            operation=operation, limit=limit, window_seconds=window_seconds,
        )
        return policy

    def remove_rate_limit(self, operation: str, caller: str) -> bool:
        """Drop the policy so the operation becomes unguarded. Admin only."""
        self.roles.require_role(ADMIN_ROLE, caller)
        with self._locks(operation):
            with self._config_lock:
                removed = self._policies.pop(operation, None)
                self.kinds.release(operation, PolicyKind.RATE_LIMIT)
                self._counters.pop(operation, None)
        if removed is None:
            return False
        logger.info("Rate limit removed: operation=%s", operation[:10])
        self._emit(EventName.RATE_LIMIT_REMOVED, operation=operation)
        return True

    def check_and_consume(
        self,
        operation: str,
        now: float | None = None,
        caller: str | None = None,
    ) -> None:
        """
        Admit and consume one unit of quota, or raise.

        Call exactly once per guarded action attempt, immediately before the
        action executes. Operations without a policy are admitted without
        touching any state.

        Raises:
            RateLimitExceeded: the window's quota is used up. The counter is
                left unchanged.
        """
        if now is None:
            now = self.clock()
        account = self._scoped(caller)

        with self._locks(operation):
            policy = self.get_policy(operation)
            if policy is None:
                return
            counters = self._counters.setdefault(operation, {})
            counter = counters.get(account)
            if counter is None:
                counter = RateLimitCounter(
                    operation=operation, window_start=now, count=0, caller=account,
                )
                counters[account] = counter
            elif now - counter.window_start >= policy.window_seconds:
                counter.window_start = now
                counter.count = 0

            if counter.count < policy.limit:
                counter.count += 1
                return
            window_start = counter.window_start

        logger.warning(
            "Rate limit exceeded: operation=%s limit=%d window_start=%s",
            operation[:10], policy.limit, window_start,
        )
        self._emit(
            EventName.RATE_LIMIT_EXCEEDED,
            operation=operation,
            limit=policy.limit,
            window_start=window_start,
            caller=account,
        )
        raise RateLimitExceeded(
            f"Rate limit of {policy.limit} per {policy.window_seconds}s "
            f"exceeded for operation {operation[:10]}",
            operation=operation,
            retry_after=window_start + policy.window_seconds - now,
        )

    def remaining(
        self,
        operation: str,
        now: float | None = None,
        caller: str | None = None,
    ) -> int | None:
        """Admissions left in the current window; None when unguarded."""
        policy = self.get_policy(operation)
        if policy is None:
            return None
        if now is None:
            now = self.clock()
        with self._locks(operation):
            counter = self._counters.get(operation, {}).get(self._scoped(caller))
            if counter is None or now - counter.window_start >= policy.window_seconds:
                return policy.limit
            return policy.limit - counter.count

    def get_policy(self, operation: str) -> RateLimitPolicy | None:
        with self._config_lock:
            return self._policies.get(operation)

    def get_counter(
        self,
        operation: str,
        caller: str | None = None,
    ) -> RateLimitCounter | None:
        """Snapshot of the counter, or None if no call has been admitted yet."""
        with self._locks(operation):
            counter = self._counters.get(operation, {}).get(self._scoped(caller))
            return counter.model_copy() if counter is not None else None

    def has_policy(self, operation: str) -> bool:
        return self.get_policy(operation) is not None

    def _scoped(self, caller: str | None) -> str | None:
        if self.scope == RateLimitScope.PER_CALLER and caller is not None:
            return normalize_address(caller)
        return None

    def _emit(self, event_name: EventName, **args: object) -> None:
        if self.events is not None:
            self.events.emit(event_name, timestamp=self.clock(), **args)
