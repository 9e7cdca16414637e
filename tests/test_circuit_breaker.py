"""
Tests for the emergency Circuit Breaker.

Validates:
- Emergency role requirement for trigger/resolve
- Idempotent re-trigger
- NotPaused on resolve while active
"""

from __future__ import annotations

import pytest

from backr_guard.policy.errors import CircuitOpen, NotPaused, Unauthorized
from backr_guard.policy.schema import EventName

from conftest import ADMIN, GUARDIAN, OUTSIDER


class TestCircuitBreaker:
    """Test pausing and resuming guarded operations."""

    def test_starts_active(self, engine):
        """A new breaker should start active."""
        assert not engine.breaker.is_paused
        engine.breaker.require_active()

    def test_trigger_pauses(self, engine, clock):
        """Triggering should pause and record the reason and time."""
        state = engine.breaker.trigger("oracle compromised", caller=GUARDIAN)
        assert state.paused
        assert state.reason == "oracle compromised"
        assert state.triggered_at == clock()
        with pytest.raises(CircuitOpen) as excinfo:
            engine.breaker.require_active()
        assert excinfo.value.context["reason"] == "oracle compromised"

    def test_admin_without_emergency_role_cannot_trigger(self, engine):
        """Admin alone should not be allowed to trigger the breaker."""
        with pytest.raises(Unauthorized):
            engine.breaker.trigger("nope", caller=ADMIN)
        assert not engine.breaker.is_paused

    def test_outsider_cannot_resolve(self, engine):
        """Accounts without the emergency role should not resolve."""
        engine.breaker.trigger("incident", caller=GUARDIAN)
        with pytest.raises(Unauthorized):
            engine.breaker.resolve(caller=OUTSIDER)
        assert engine.breaker.is_paused

    def test_retrigger_updates_reason(self, engine, clock):
        """Re-triggering while paused should refresh the reason and timestamp."""
        engine.breaker.trigger("first", caller=GUARDIAN)
        clock.advance(30)
        state = engine.breaker.trigger("second", caller=GUARDIAN)
        assert state.paused
        assert state.reason == "second"
        assert state.triggered_at == clock()

    def test_resolve(self, engine):
        """Resolving should clear the pause and the reason."""
        engine.breaker.trigger("incident", caller=GUARDIAN)
        state = engine.breaker.resolve(caller=GUARDIAN)
        assert not state.paused
        assert state.reason == ""
        engine.breaker.require_active()

    def test_resolve_when_active_raises(self, engine):
        """Resolving an active breaker should raise NotPaused."""
        with pytest.raises(NotPaused):
            engine.breaker.resolve(caller=GUARDIAN)

    def test_double_resolve_raises(self, engine):
        """A second resolve should raise NotPaused."""
        engine.breaker.trigger("incident", caller=GUARDIAN)
        engine.breaker.resolve(caller=GUARDIAN)
        with pytest.raises(NotPaused):
            engine.breaker.resolve(caller=GUARDIAN)

    def test_state_is_a_copy(self, engine):
        """Mutating the returned state should not affect the breaker."""
        engine.breaker.state.paused = True
        assert not engine.breaker.is_paused

    def test_events(self, engine, clock):
        """Trigger and resolve should be recorded as events."""
        engine.breaker.trigger("incident", caller=GUARDIAN)
        engine.breaker.trigger("still bad", caller=GUARDIAN)
        engine.breaker.resolve(caller=GUARDIAN)

        triggered = engine.events.get_events(EventName.EMERGENCY_TRIGGERED)
        resolved = engine.events.get_events(EventName.EMERGENCY_RESOLVED)
        assert [e.args["already_paused"] for e in triggered] == [True, False]
        assert triggered[0].args["reason"] == "still bad"
        assert triggered[0].timestamp == clock()
        assert resolved[0].args["resolved_by"] == GUARDIAN
