"""
backr-guard — Policy engine wiring.

Builds the role registry, rate limiter, approval registry and circuit breaker
around one shared event log and clock, and exposes the guard facade that
collaborators wrap their entry points with.

State is process-wide and lives as long as the engine. Initialization
bootstraps the deployer as administrator; there is no implicit teardown.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

import structlog

from backr_guard.config import GuardSettings, settings
from backr_guard.events.log import EventLog
from backr_guard.policy.approvals import ApprovalRegistry
from backr_guard.policy.circuit_breaker import CircuitBreaker
from backr_guard.policy.facade import PolicyFacade
from backr_guard.policy.kinds import OperationKinds
from backr_guard.policy.rate_limit import RateLimiter
from backr_guard.policy.roles import RoleRegistry
from backr_guard.policy.schema import RateLimitScope

logger = logging.getLogger(__name__)


def configure_logging(config: GuardSettings = settings) -> None:
    """Configure structured logging."""
    logging.basicConfig(level=logging.getLevelName(config.log_level))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if config.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class PolicyEngine:
    """
    The assembled operational-safety engine.

    Usage:
        engine = PolicyEngine(deployer=admin)
        engine.roles.grant_role(EMERGENCY_ROLE, guardian, caller=admin)
        engine.facade.configure_rate_limit(WITHDRAWAL, 10, 86400, caller=admin)
        engine.facade.guard(WITHDRAWAL)
    """

    def __init__(
        self,
        deployer: str,
        clock: Callable[[], float] = time.time,
        rate_limit_scope: RateLimitScope = RateLimitScope.GLOBAL,
        single_use_approvals: bool = True,
        events: EventLog | None = None,
        event_log_path: str | None = None,
    ) -> None:
        self.clock = clock
        self.events = events if events is not None else EventLog()
        self.event_log_path = event_log_path

        self.roles = RoleRegistry(deployer, events=self.events, clock=clock)
        self.kinds = OperationKinds()
        self.limiter = RateLimiter(
            self.roles, events=self.events, clock=clock, scope=rate_limit_scope,
            kinds=self.kinds,
        )
        self.approvals = ApprovalRegistry(
            self.roles, events=self.events, clock=clock, single_use=single_use_approvals,
            kinds=self.kinds,
        )
        self.breaker = CircuitBreaker(self.roles, events=self.events, clock=clock)
        self.facade = PolicyFacade(self.roles, self.limiter, self.approvals, self.breaker)

        structlog.get_logger().info(
            "backr_guard.engine.initialized",
            deployer=deployer,
            rate_limit_scope=self.limiter.scope.value,
            single_use_approvals=single_use_approvals,
        )

    @classmethod
    def from_settings(
        cls,
        config: GuardSettings = settings,
        clock: Callable[[], float] = time.time,
    ) -> PolicyEngine:
        """Build an engine from environment configuration."""
        return cls(
            deployer=config.deployer_address,
            clock=clock,
            rate_limit_scope=config.rate_limit_scope,
            single_use_approvals=config.single_use_approvals,
            event_log_path=config.event_log_path,
        )

    def snapshot(self, path: str | Path | None = None) -> int:
        """
        Dump the event log for off-process auditing.

        Returns:
            Number of events written.
        """
        target = path or self.event_log_path
        if target is None:
            raise ValueError("No event log path given or configured")
        count = self.events.dump(target)
        logger.info("Engine snapshot written: path=%s events=%d", target, count)
        return count
