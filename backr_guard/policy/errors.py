"""
Policy Errors — the engine's denial taxonomy.

Every denial is local, synchronous and final for the current call. Nothing
here is retried internally; the caller resubmits once the underlying
condition changes (time passes, approvals arrive, the breaker resolves).
"""

from __future__ import annotations


class PolicyError(Exception):
    """Base class for every admission-control failure."""

    code = "policy_error"

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.context = context


class Unauthorized(PolicyError):
    """Caller lacks the role the call requires."""

    code = "unauthorized"


class InvalidConfig(PolicyError):
    """Policy parameters are malformed or conflict with an existing policy."""

    code = "invalid_config"


class RateLimitExceeded(PolicyError):
    """The operation's quota for the current window is used up."""

    code = "rate_limit_exceeded"


class NotAnApprover(PolicyError):
    """Caller is not in the configured approver set for the operation."""

    code = "not_an_approver"


class InsufficientApprovals(PolicyError):
    """The action instance has not reached its approval threshold."""

    code = "insufficient_approvals"


class ActionAlreadyExecuted(InsufficientApprovals):
    """The action instance's approvals were already spent by a guarded call."""

    code = "action_already_executed"


class CircuitOpen(PolicyError):
    """The emergency circuit breaker is paused."""

    code = "circuit_open"


class NotPaused(PolicyError):
    """Resolve was requested while the breaker was not paused."""

    code = "not_paused"
