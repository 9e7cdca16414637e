"""
Tests for the Role Registry.

Validates:
- Deployer bootstrap as administrator
- Admin-only grant/revoke
- Idempotent assignment changes
"""

from __future__ import annotations

import pytest

from backr_guard.events.log import EventLog
from backr_guard.policy.errors import Unauthorized
from backr_guard.policy.roles import RoleRegistry
from backr_guard.policy.schema import (
    ADMIN_ROLE,
    EMERGENCY_ROLE,
    OPERATOR_ROLE,
    EventName,
    make_id,
)

ADMIN = "0xAD00000000000000000000000000000000000001"
ALICE = "0xa11ce00000000000000000000000000000000001"
BOB = "0xb0b0000000000000000000000000000000000002"


class TestIdentifiers:
    """Test role and operation identifiers."""

    def test_make_id_is_fixed_size_hash(self):
        """Identifiers should be 0x-prefixed 32-byte hex digests."""
        role = make_id("EMERGENCY")
        assert role.startswith("0x")
        assert len(role) == 66

    def test_make_id_deterministic_and_distinct(self):
        """The same name maps to the same id; different names do not collide."""
        assert make_id("WITHDRAWAL") == make_id("WITHDRAWAL")
        assert make_id("WITHDRAWAL") != make_id("LARGE_WITHDRAWAL")
        assert len({ADMIN_ROLE, EMERGENCY_ROLE, OPERATOR_ROLE}) == 3


class TestRoleRegistry:
    """Test role assignment and authorization."""

    def setup_method(self):
        self.events = EventLog()
        self.roles = RoleRegistry(deployer=ADMIN, events=self.events, clock=lambda: 100.0)

    def test_deployer_is_admin(self):
        """The deployer should hold the admin role from construction."""
        assert self.roles.has_role(ADMIN_ROLE, ADMIN)

    def test_address_comparison_ignores_case(self):
        """Role lookups should not depend on address casing."""
        assert self.roles.has_role(ADMIN_ROLE, ADMIN.lower())

    def test_admin_grants_role(self):
        """An admin grant should give the role to that principal only."""
        assert self.roles.grant_role(OPERATOR_ROLE, ALICE, caller=ADMIN) is True
        assert self.roles.has_role(OPERATOR_ROLE, ALICE)
        assert not self.roles.has_role(OPERATOR_ROLE, BOB)

    def test_non_admin_cannot_grant(self):
        """A caller without the admin role should be refused and nothing granted."""
        with pytest.raises(Unauthorized):
            self.roles.grant_role(EMERGENCY_ROLE, BOB, caller=ALICE)
        assert not self.roles.has_role(EMERGENCY_ROLE, BOB)

    def test_non_admin_cannot_revoke(self):
        """A caller without the admin role should not be able to revoke."""
        self.roles.grant_role(OPERATOR_ROLE, BOB, caller=ADMIN)
        with pytest.raises(Unauthorized):
            self.roles.revoke_role(OPERATOR_ROLE, BOB, caller=ALICE)
        assert self.roles.has_role(OPERATOR_ROLE, BOB)

    def test_grant_is_idempotent(self):
        """Granting a held role should change nothing and emit no event."""
        self.roles.grant_role(OPERATOR_ROLE, ALICE, caller=ADMIN)
        before = len(self.events)
        assert self.roles.grant_role(OPERATOR_ROLE, ALICE, caller=ADMIN) is False
        assert len(self.events) == before

    def test_revoke_is_idempotent(self):
        """Revoking an absent role should be a no-op."""
        assert self.roles.revoke_role(OPERATOR_ROLE, ALICE, caller=ADMIN) is False
        self.roles.grant_role(OPERATOR_ROLE, ALICE, caller=ADMIN)
        assert self.roles.revoke_role(OPERATOR_ROLE, ALICE, caller=ADMIN) is True
        assert not self.roles.has_role(OPERATOR_ROLE, ALICE)

    def test_granted_admin_can_grant(self):
        """A newly granted admin should be able to grant roles."""
        self.roles.grant_role(ADMIN_ROLE, ALICE, caller=ADMIN)
        self.roles.grant_role(EMERGENCY_ROLE, BOB, caller=ALICE)
        assert self.roles.has_role(EMERGENCY_ROLE, BOB)

    def test_revoked_admin_loses_authority(self):
        """A revoked admin should no longer be able to grant roles."""
        self.roles.grant_role(ADMIN_ROLE, ALICE, caller=ADMIN)
        self.roles.revoke_role(ADMIN_ROLE, ALICE, caller=ADMIN)
        with pytest.raises(Unauthorized):
            self.roles.grant_role(OPERATOR_ROLE, BOB, caller=ALICE)

    def test_members_and_roles_of(self):
        """Read-only queries should reflect current assignments."""
        self.roles.grant_role(OPERATOR_ROLE, ALICE, caller=ADMIN)
        self.roles.grant_role(EMERGENCY_ROLE, ALICE, caller=ADMIN)
        assert self.roles.members(OPERATOR_ROLE) == frozenset({ALICE.lower()})
        assert self.roles.roles_of(ALICE) == {OPERATOR_ROLE, EMERGENCY_ROLE}

    def test_events_emitted(self):
        """Grants and revocations should each append one event."""
        self.roles.grant_role(OPERATOR_ROLE, ALICE, caller=ADMIN)
        self.roles.revoke_role(OPERATOR_ROLE, ALICE, caller=ADMIN)
        names = [e.event_name for e in self.events.get_events()]
        # newest first; bootstrap grant is the oldest
        assert names == [
            EventName.ROLE_REVOKED,
            EventName.ROLE_GRANTED,
            EventName.ROLE_GRANTED,
        ]
        revoked = self.events.get_events(EventName.ROLE_REVOKED)[0]
        assert revoked.args["account"] == ALICE.lower()
        assert revoked.args["role"] == OPERATOR_ROLE
        assert revoked.timestamp == 100.0

    def test_unauthorized_carries_context(self):
        """Unauthorized should expose its code and the missing role."""
        with pytest.raises(Unauthorized) as excinfo:
            self.roles.require_role(EMERGENCY_ROLE, BOB)
        assert excinfo.value.code == "unauthorized"
        assert excinfo.value.context["role"] == EMERGENCY_ROLE
