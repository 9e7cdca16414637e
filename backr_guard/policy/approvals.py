"""
Approval Registry — Multi-party threshold approval for high-risk actions.

Approvals are scoped to an action instance: the pair (operation,
action_hash), where ``action_hash`` is an opaque identifier the collaborator
derives from the concrete request (recipient, amount, nonce...). Approvals
for one instance never count toward another.

Approval records are single-use by default: the first guarded call that
passes ``require_approved`` consumes the record, and the same action hash
cannot authorize a second effect. Reconfiguring an operation keeps
outstanding records; only approvals from the currently configured approvers
count toward the threshold.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable

from pydantic import ValidationError

from backr_guard.events.log import EventLog
from backr_guard.policy.errors import (
    ActionAlreadyExecuted,
    InsufficientApprovals,
    InvalidConfig,
    NotAnApprover,
)
from backr_guard.policy.kinds import OperationKinds
from backr_guard.policy.locks import KeyedLocks
from backr_guard.policy.roles import RoleRegistry
from backr_guard.policy.schema import (
    ADMIN_ROLE,
    ApprovalRecord,
    EventName,
    MultiSigPolicy,
    PolicyKind,
    normalize_address,
)

logger = logging.getLogger(__name__)


class ApprovalRegistry:
    """Owns every MultiSigPolicy and ApprovalRecord."""

    def __init__(
        self,
        roles: RoleRegistry,
        events: EventLog | None = None,
        clock: Callable[[], float] = time.time,
        single_use: bool = True,
        kinds: OperationKinds | None = None,
    ) -> None:
        self.roles = roles
        self.events = events
        self.clock = clock
        self.single_use = single_use
        self.kinds = kinds if kinds is not None else OperationKinds()
        self._policies: dict[str, MultiSigPolicy] = {}
        self._records: dict[str, dict[str, ApprovalRecord]] = {}
        self._locks = KeyedLocks()
        self._config_lock = threading.RLock()

    def configure_multisig(
        self,
        operation: str,
        threshold: int,
        approvers: Iterable[str],
        caller: str,
    ) -> MultiSigPolicy:
        """
        Set or overwrite the approval policy for ``operation``.

        Outstanding records are kept, minus approvals from addresses that are
        no longer approvers.

        Raises:
            Unauthorized: caller lacks ADMIN_ROLE.
            InvalidConfig: threshold is zero or exceeds the approver count,
                or the operation is already quota-gated.
        """
        self.roles.require_role(ADMIN_ROLE, caller)
        approvers = list(approvers)
        try:
            policy = MultiSigPolicy(
                operation=operation, threshold=threshold, approvers=approvers,
            )
        except ValidationError as e:
            raise InvalidConfig(
                f"Invalid multisig for {operation[:10]}: threshold={threshold} "
                f"approvers={len(set(approvers))}",
                operation=operation,
            ) from e

        with self._locks(operation):
            with self._config_lock:
                self.kinds.claim(operation, PolicyKind.MULTISIG)
                self._policies[operation] = policy
            for record in self._records.get(operation, {}).values():
                record.approved_by &= policy.approvers

        logger.info(
            "Multisig configured: operation=%s threshold=%d approvers=%d",
            operation[:10], threshold, len(policy.approvers),
        )
        self._emit(
            EventName.MULTISIG_CONFIGURED,
            operation=operation,
            threshold=threshold,
            approvers=sorted(policy.approvers),
        )
        return policy

    def approve(self, operation: str, action_hash: str, caller: str) -> ApprovalRecord:
        """
        Record ``caller``'s approval of one action instance.

        A repeated approval from the same caller is accepted silently and
        does not change the count.

        Raises:
            NotAnApprover: no policy exists or caller is not a listed approver.
            ActionAlreadyExecuted: the instance was already consumed.
        """
        account = normalize_address(caller)
        with self._locks(operation):
            policy = self.get_policy(operation)
            if policy is None or account not in policy.approvers:
                logger.warning(
                    "Approval rejected: operation=%s account=%s not an approver",
                    operation[:10], account,
                )
                raise NotAnApprover(
                    f"Account {caller} is not an approver for operation {operation[:10]}",
                    operation=operation,
                    account=caller,
                )

            record = self._records.setdefault(operation, {}).get(action_hash)
            if record is None:
                record = ApprovalRecord(operation=operation, action_hash=action_hash)
                self._records[operation][action_hash] = record
            if record.consumed:
                raise ActionAlreadyExecuted(
                    f"Action {action_hash[:10]} for operation {operation[:10]} "
                    f"was already executed",
                    operation=operation,
                    action_hash=action_hash,
                )
            if account in record.approved_by:
                return record.model_copy(deep=True)

            was_approved = record.approved_count >= policy.threshold
            record.approved_by.add(account)
            count = record.approved_count
            snapshot = record.model_copy(deep=True)

        logger.info(
            "Approval recorded: operation=%s action=%s account=%s count=%d/%d",
            operation[:10], action_hash[:10], account, count, policy.threshold,
        )
        self._emit(
            EventName.APPROVAL_RECORDED,
            operation=operation,
            action_hash=action_hash,
            approver=account,
            approved_count=count,
        )
        if not was_approved and count >= policy.threshold:
            self._emit(
                EventName.APPROVAL_THRESHOLD_REACHED,
                operation=operation,
                action_hash=action_hash,
                approved_count=count,
                threshold=policy.threshold,
            )
        return snapshot

    def is_approved(self, operation: str, action_hash: str) -> bool:
        """True when unguarded, or the instance met its threshold and is unspent."""
        with self._locks(operation):
            policy = self.get_policy(operation)
            if policy is None:
                return True
            record = self._records.get(operation, {}).get(action_hash)
            if record is None or record.consumed:
                return False
            return record.approved_count >= policy.threshold

    def require_approved(
        self,
        operation: str,
        action_hash: str,
        consume: bool | None = None,
    ) -> None:
        """
        Guard for an approval-gated entry point.

        When ``consume`` (default: the registry's ``single_use``) is set, a
        passing check marks the record consumed in the same critical section.

        Raises:
            ActionAlreadyExecuted: the record was consumed by an earlier call.
            InsufficientApprovals: the threshold is not met.
        """
        if consume is None:
            consume = self.single_use
        with self._locks(operation):
            policy = self.get_policy(operation)
            if policy is None:
                return
            record = self._records.get(operation, {}).get(action_hash)
            count = record.approved_count if record is not None else 0
            if record is not None and record.consumed:
                logger.warning(
                    "Replay rejected: operation=%s action=%s already executed",
                    operation[:10], action_hash[:10],
                )
                raise ActionAlreadyExecuted(
                    f"Action {action_hash[:10]} for operation {operation[:10]} "
                    f"was already executed",
                    operation=operation,
                    action_hash=action_hash,
                )
            if count < policy.threshold:
                logger.warning(
                    "Insufficient approvals: operation=%s action=%s count=%d/%d",
                    operation[:10], action_hash[:10], count, policy.threshold,
                )
                raise InsufficientApprovals(
                    f"Action {action_hash[:10]} has {count} of {policy.threshold} "
                    f"required approvals",
                    operation=operation,
                    action_hash=action_hash,
                    approved_count=count,
                    threshold=policy.threshold,
                )
            if not consume:
                return
            now = self.clock()
            record.consumed = True
            record.consumed_at = now

        logger.info(
            "Approval consumed: operation=%s action=%s",
            operation[:10], action_hash[:10],
        )
        self._emit(
            EventName.APPROVAL_CONSUMED,
            operation=operation,
            action_hash=action_hash,
            approved_count=count,
        )

    def approval_count(self, operation: str, action_hash: str) -> int:
        """Approvals from currently configured approvers."""
        with self._locks(operation):
            policy = self.get_policy(operation)
            record = self._records.get(operation, {}).get(action_hash)
            if policy is None or record is None:
                return 0
            return record.approved_count

    def get_record(self, operation: str, action_hash: str) -> ApprovalRecord | None:
        with self._locks(operation):
            record = self._records.get(operation, {}).get(action_hash)
            return record.model_copy(deep=True) if record is not None else None

    def get_policy(self, operation: str) -> MultiSigPolicy | None:
        with self._config_lock:
            return self._policies.get(operation)

    def has_policy(self, operation: str) -> bool:
        return self.get_policy(operation) is not None

    def _emit(self, event_name: EventName, **args: object) -> None:
        if self.events is not None:
            self.events.emit(event_name, timestamp=self.clock(), **args)
