"""Shared fixtures: a controllable clock and a bootstrapped engine."""

from __future__ import annotations

import pytest

from backr_guard.engine import PolicyEngine
from backr_guard.policy.schema import EMERGENCY_ROLE

ADMIN = "0xad00000000000000000000000000000000000001"
GUARDIAN = "0xe500000000000000000000000000000000000002"
OUTSIDER = "0x0b00000000000000000000000000000000000003"
APPROVERS = [
    "0xa000000000000000000000000000000000000000",
    "0xa100000000000000000000000000000000000001",
    "0xa200000000000000000000000000000000000002",
]


class FakeClock:
    """Manually advanced clock for deterministic window tests."""

    def __init__(self, start: float = 1_700_000_000) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(clock: FakeClock) -> PolicyEngine:
    engine = PolicyEngine(deployer=ADMIN, clock=clock)
    engine.roles.grant_role(EMERGENCY_ROLE, GUARDIAN, caller=ADMIN)
    return engine
