"""
Operation Kinds — Which guard owns each operation.

An operation is either quota-gated or approval-gated, never both. The rate
limiter and the approval registry share one OperationKinds instance and
claim an operation before storing its policy.
"""

from __future__ import annotations

import threading

from backr_guard.policy.errors import InvalidConfig
from backr_guard.policy.schema import PolicyKind


class OperationKinds:
    """Shared claim table keyed by operation."""

    def __init__(self) -> None:
        self._kinds: dict[str, PolicyKind] = {}
        self._lock = threading.RLock()

    def claim(self, operation: str, kind: PolicyKind) -> None:
        """
        Record ``kind`` for ``operation``. Re-claiming the same kind is allowed.

        Raises:
            InvalidConfig: the operation is already claimed by the other kind.
        """
        with self._lock:
            existing = self._kinds.get(operation)
            if existing is not None and existing != kind:
                raise InvalidConfig(
                    f"Operation {operation[:10]} is already configured as "
                    f"{existing.value}; cannot also configure {kind.value}",
                    operation=operation,
                )
            self._kinds[operation] = kind

    def release(self, operation: str, kind: PolicyKind) -> None:
        with self._lock:
            if self._kinds.get(operation) == kind:
                del self._kinds[operation]

    def kind_of(self, operation: str) -> PolicyKind | None:
        with self._lock:
            return self._kinds.get(operation)
