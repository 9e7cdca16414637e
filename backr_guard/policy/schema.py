"""
Policy Schema — Pydantic models for every entity the policy engine tracks.

These models are the canonical shapes for roles, operation policies,
counters, approval records, breaker state and emitted events. Components own
their instances exclusively; callers receive copies.

Identifiers (roles, operations, action instances) are opaque fixed-size
hashes produced by ``make_id``. Principals are plain address strings.
"""

from __future__ import annotations

import enum
import hashlib
import json
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator


def make_id(name: str) -> str:
    """Return the 32-byte SHA3-256 identifier for ``name`` as 0x-prefixed hex."""
    return "0x" + hashlib.sha3_256(name.encode("utf-8")).hexdigest()


def normalize_address(address: str) -> str:
    """Addresses compare case-insensitively."""
    return address.strip().lower()


# ════════════════════════════════════════════════════════════════
# Well-known identifiers
# ════════════════════════════════════════════════════════════════

ADMIN_ROLE = make_id("ADMIN")
EMERGENCY_ROLE = make_id("EMERGENCY")
OPERATOR_ROLE = make_id("OPERATOR")

ROLE_NAMES = {
    ADMIN_ROLE: "ADMIN",
    EMERGENCY_ROLE: "EMERGENCY",
    OPERATOR_ROLE: "OPERATOR",
}


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class PolicyKind(str, enum.Enum):
    """Which guard protects an operation. Exactly one per operation."""

    RATE_LIMIT = "rate_limit"
    MULTISIG = "multisig"


class RateLimitScope(str, enum.Enum):
    """Whether a rate-limit counter is shared by all callers or kept per caller."""

    GLOBAL = "global"
    PER_CALLER = "per_caller"


class EventName(str, enum.Enum):
    """Observable events consumed by external monitors (indexers)."""

    ROLE_GRANTED = "RoleGranted"
    ROLE_REVOKED = "RoleRevoked"
    RATE_LIMIT_CONFIGURED = "RateLimitConfigured"
    RATE_LIMIT_REMOVED = "RateLimitRemoved"
    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"
    MULTISIG_CONFIGURED = "MultiSigConfigured"
    APPROVAL_RECORDED = "ApprovalRecorded"
    APPROVAL_THRESHOLD_REACHED = "ApprovalThresholdReached"
    APPROVAL_CONSUMED = "ApprovalConsumed"
    EMERGENCY_TRIGGERED = "EmergencyTriggered"
    EMERGENCY_RESOLVED = "EmergencyResolved"


# ════════════════════════════════════════════════════════════════
# Rate Limiting Models
# ════════════════════════════════════════════════════════════════


class RateLimitPolicy(BaseModel):
    """Fixed-window quota for one operation."""

    operation: str
    limit: int = Field(gt=0, description="Admissions allowed per window")
    window_seconds: int = Field(gt=0, description="Window length in seconds")


class RateLimitCounter(BaseModel):
    """
    Usage within the current window.

    ``caller`` is ``None`` for the global counter and set only when the
    limiter runs with per-caller scope.
    """

    operation: str
    window_start: float = 0
    count: int = 0
    caller: str | None = None


# ════════════════════════════════════════════════════════════════
# Multi-Signature Models
# ════════════════════════════════════════════════════════════════


class MultiSigPolicy(BaseModel):
    """Threshold approval requirement for one operation."""

    operation: str
    threshold: int = Field(gt=0)
    approvers: frozenset[str]

    @field_validator("approvers", mode="before")
    @classmethod
    def _normalize_approvers(cls, value: Any) -> frozenset[str]:
        return frozenset(normalize_address(a) for a in value)

    @model_validator(mode="after")
    def _threshold_within_approvers(self) -> MultiSigPolicy:
        if self.threshold > len(self.approvers):
            raise ValueError(
                f"threshold {self.threshold} exceeds approver count {len(self.approvers)}"
            )
        return self


class ApprovalRecord(BaseModel):
    """Approvals collected for one (operation, action_hash) instance."""

    operation: str
    action_hash: str
    approved_by: set[str] = Field(default_factory=set)
    consumed: bool = False
    consumed_at: float | None = None

    @computed_field
    @property
    def approved_count(self) -> int:
        return len(self.approved_by)


# ════════════════════════════════════════════════════════════════
# Circuit Breaker Models
# ════════════════════════════════════════════════════════════════


class CircuitBreakerState(BaseModel):
    """Global pause switch. One instance per engine."""

    paused: bool = False
    reason: str = ""
    triggered_at: float | None = None
    triggered_by: str | None = None


# ════════════════════════════════════════════════════════════════
# Event Models
# ════════════════════════════════════════════════════════════════


class GuardEvent(BaseModel):
    """
    A single observable event in the engine's append-only event log.

    Events are hash-chained: ``entry_hash`` covers ``previous_hash`` and every
    other field, so a monitor replaying a dumped log can detect any
    retroactive alteration.
    """

    id: UUID = Field(default_factory=uuid4)
    sequence_number: int
    event_name: EventName
    timestamp: float
    args: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str
    entry_hash: str = ""

    def compute_hash(self) -> str:
        """SHA-256(previous_hash || canonical_json(fields))."""
        hashable = {
            "id": str(self.id),
            "sequence_number": self.sequence_number,
            "event_name": self.event_name.value,
            "timestamp": self.timestamp,
            "args": self.args,
            "previous_hash": self.previous_hash,
        }
        canonical = json.dumps(hashable, sort_keys=True, default=str)
        return hashlib.sha256(
            (self.previous_hash + canonical).encode("utf-8")
        ).hexdigest()
