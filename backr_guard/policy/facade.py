"""
Policy Facade — Ordered guard chain for collaborator entry points.

Every sensitive entry point a collaborator exposes runs the same chain:

1. ``CircuitBreaker.require_active``: short-circuits everything while paused
2. exactly one of
   - ``RateLimiter.check_and_consume`` for quota-gated operations, or
   - ``ApprovalRegistry.require_approved`` for approval-gated operations
3. the collaborator's own logic

A denied guard aborts the whole call. Nothing is retried; the caller
resubmits after the window resets, more approvals arrive or the breaker
resolves.

Usage:
    facade = PolicyFacade(roles, limiter, approvals, breaker)
    facade.configure_rate_limit(WITHDRAWAL, 10, 86400, caller=admin)

    @facade.guarded(WITHDRAWAL)
    def withdraw(amount, caller):
        ...
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Callable, Iterable, TypeVar

from backr_guard.policy.approvals import ApprovalRegistry
from backr_guard.policy.circuit_breaker import CircuitBreaker
from backr_guard.policy.errors import InsufficientApprovals
from backr_guard.policy.rate_limit import RateLimiter
from backr_guard.policy.roles import RoleRegistry
from backr_guard.policy.schema import (
    MultiSigPolicy,
    PolicyKind,
    RateLimitPolicy,
)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class PolicyFacade:
    """
    Composes the breaker, rate limiter and approval registry.

    The facade reads component state and invokes their guards; it never
    writes into a component's maps directly.
    """

    def __init__(
        self,
        roles: RoleRegistry,
        limiter: RateLimiter,
        approvals: ApprovalRegistry,
        breaker: CircuitBreaker,
    ) -> None:
        if limiter.kinds is not approvals.kinds:
            raise ValueError("limiter and approvals must share one OperationKinds")
        self.roles = roles
        self.limiter = limiter
        self.approvals = approvals
        self.breaker = breaker

    # ── Configuration ───────────────────────────────────────────

    def configure_rate_limit(
        self,
        operation: str,
        limit: int,
        window_seconds: int,
        caller: str,
    ) -> RateLimitPolicy:
        """Configure a quota-gated operation. Rejects approval-gated ones."""
        return self.limiter.configure_rate_limit(operation, limit, window_seconds, caller)

    def configure_multisig(
        self,
        operation: str,
        threshold: int,
        approvers: Iterable[str],
        caller: str,
    ) -> MultiSigPolicy:
        """Configure an approval-gated operation. Rejects quota-gated ones."""
        return self.approvals.configure_multisig(operation, threshold, approvers, caller)

    def policy_kind(self, operation: str) -> PolicyKind | None:
        """Which guard protects ``operation``, or None when unguarded."""
        if self.limiter.has_policy(operation):
            return PolicyKind.RATE_LIMIT
        if self.approvals.has_policy(operation):
            return PolicyKind.MULTISIG
        return None

    # ── Guards ──────────────────────────────────────────────────

    def guard(
        self,
        operation: str,
        action_hash: str | None = None,
        caller: str | None = None,
        now: float | None = None,
    ) -> None:
        """
        Run the ordered guard chain for one action attempt.

        Raises:
            CircuitOpen: the breaker is paused.
            RateLimitExceeded: quota-gated and the window is used up.
            InsufficientApprovals: approval-gated and the instance is not
                approved (or no action hash was given).
        """
        self.breaker.require_active()

        kind = self.policy_kind(operation)
        if kind == PolicyKind.RATE_LIMIT:
            self.limiter.check_and_consume(operation, now=now, caller=caller)
        elif kind == PolicyKind.MULTISIG:
            if action_hash is None:
                raise InsufficientApprovals(
                    f"Operation {operation[:10]} requires an action hash",
                    operation=operation,
                )
            self.approvals.require_approved(operation, action_hash)

        logger.debug(
            "Guard admitted: operation=%s kind=%s",
            operation[:10], kind.value if kind else "unguarded",
        )

    def guarded(
        self,
        operation: str,
        action_hash_arg: str = "action_hash",
        caller_arg: str = "caller",
    ) -> Callable[[F], F]:
        """
        Decorator wrapping a handler with ``guard``.

        The action hash and caller are read from the handler's arguments named
        ``action_hash_arg`` and ``caller_arg`` when it declares them.
        """
        def decorator(handler: F) -> F:
            signature = inspect.signature(handler)

            @functools.wraps(handler)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                bound = signature.bind_partial(*args, **kwargs)
                self.guard(
                    operation,
                    action_hash=bound.arguments.get(action_hash_arg),
                    caller=bound.arguments.get(caller_arg),
                )
                return handler(*args, **kwargs)

            return wrapper  # type: ignore[return-value]

        return decorator
