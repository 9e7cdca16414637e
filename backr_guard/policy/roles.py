"""
Role Registry — Capability-based authorization for the policy engine.

Every privileged call in the engine, and every privileged call a collaborator
exposes, checks this registry first. Roles are opaque identifiers (see
``make_id``); principals are addresses.

Only a holder of ADMIN_ROLE may grant or revoke roles. The deployer passed at
construction is the bootstrap admin.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from backr_guard.events.log import EventLog
from backr_guard.policy.errors import Unauthorized
from backr_guard.policy.schema import (
    ADMIN_ROLE,
    ROLE_NAMES,
    EventName,
    normalize_address,
)

logger = logging.getLogger(__name__)


def role_label(role: str) -> str:
    """Readable name for a well-known role, otherwise a shortened hash."""
    return ROLE_NAMES.get(role, role[:10])


class RoleRegistry:
    """
    Process-wide role assignments.

    Collaborators never write here directly; they only query ``has_role`` or
    ``require_role``.
    """

    def __init__(
        self,
        deployer: str,
        events: EventLog | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize and grant ADMIN_ROLE to the deployer.

        Args:
            deployer: Address that becomes the bootstrap administrator.
            events: Event log receiving RoleGranted/RoleRevoked.
            clock: Source of event timestamps.
        """
        self._assignments: dict[str, set[str]] = {}
        self._lock = threading.RLock()
        self.events = events
        self.clock = clock
        self._grant(ADMIN_ROLE, deployer, sender=deployer)

    def has_role(self, role: str, principal: str) -> bool:
        with self._lock:
            return normalize_address(principal) in self._assignments.get(role, ())

    def require_role(self, role: str, principal: str) -> None:
        """Raise Unauthorized unless ``principal`` holds ``role``."""
        if not self.has_role(role, principal):
            logger.warning(
                "Unauthorized: account=%s missing role=%s",
                principal, role_label(role),
            )
            raise Unauthorized(
                f"Account {principal} is missing role {role_label(role)}",
                role=role,
                account=principal,
            )

    def grant_role(self, role: str, principal: str, caller: str) -> bool:
        """
        Grant ``role`` to ``principal``. Admin only, idempotent.

        Returns:
            True if the assignment changed, False if it was already held.
        """
        self.require_role(ADMIN_ROLE, caller)
        return self._grant(role, principal, sender=caller)

    def revoke_role(self, role: str, principal: str, caller: str) -> bool:
        """
        Revoke ``role`` from ``principal``. Admin only, idempotent.

        Returns:
            True if the assignment changed, False if it was not held.
        """
        self.require_role(ADMIN_ROLE, caller)
        account = normalize_address(principal)
        with self._lock:
            holders = self._assignments.get(role)
            if not holders or account not in holders:
                return False
            holders.discard(account)

        logger.info("Role revoked: role=%s account=%s by=%s", role_label(role), account, caller)
        self._emit(EventName.ROLE_REVOKED, role=role, account=account, sender=normalize_address(caller))
        return True

    def members(self, role: str) -> frozenset[str]:
        """All principals currently holding ``role``."""
        with self._lock:
            return frozenset(self._assignments.get(role, ()))

    def roles_of(self, principal: str) -> set[str]:
        """All roles currently held by ``principal``."""
        account = normalize_address(principal)
        with self._lock:
            return {role for role, holders in self._assignments.items() if account in holders}

    def _grant(self, role: str, principal: str, sender: str) -> bool:
        account = normalize_address(principal)
        with self._lock:
            holders = self._assignments.setdefault(role, set())
            if account in holders:
                return False
            holders.add(account)

        logger.info("Role granted: role=%s account=%s by=%s", role_label(role), account, sender)
        self._emit(EventName.ROLE_GRANTED, role=role, account=account, sender=normalize_address(sender))
        return True

    def _emit(self, event_name: EventName, **args: object) -> None:
        if self.events is not None:
            self.events.emit(event_name, timestamp=self.clock(), **args)
