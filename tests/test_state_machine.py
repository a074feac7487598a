"""
State Machine Tests
-------------------
Turn transitions and recovery.
"""

import pytest

from core.state_machine import InvalidTransitionError, State, StateMachine


class TestTransitions:

    def test_full_cycle(self):
        sm = StateMachine(name="t")
        for state in (State.PLANNING, State.DECIDING, State.EXECUTING,
                      State.PLANNING, State.DECIDING, State.SUMMARIZING, State.IDLE):
            sm.transition(state, "step")

        assert sm.state == State.IDLE
        assert len(sm.history) == 7

    def test_invalid_transition(self):
        sm = StateMachine()
        with pytest.raises(InvalidTransitionError):
            sm.transition(State.EXECUTING, "skip planning")
        assert sm.state == State.IDLE

    def test_cycle_limit_only_from_deciding(self):
        sm = StateMachine()
        for state in (State.PLANNING, State.DECIDING, State.EXECUTING):
            sm.transition(state, "step")
        assert not sm.can_transition(State.CYCLE_LIMIT_EXCEEDED)

    def test_cycle_limit_path(self):
        sm = StateMachine()
        sm.transition(State.PLANNING, "a")
        sm.transition(State.DECIDING, "b")
        sm.transition(State.CYCLE_LIMIT_EXCEEDED, "c")
        assert not sm.can_transition(State.PLANNING)
        sm.transition(State.IDLE, "e")
        assert not sm.is_busy()

    def test_listener_called(self):
        sm = StateMachine()
        seen = []
        sm.add_listener(lambda t: seen.append((t.from_state, t.to_state)))

        sm.transition(State.PLANNING, "go")

        assert seen == [(State.IDLE, State.PLANNING)]

    def test_listener_error_does_not_break_transition(self):
        sm = StateMachine()

        def broken(transition):
            raise RuntimeError("listener bug")

        sm.add_listener(broken)
        sm.transition(State.PLANNING, "go")
        assert sm.state == State.PLANNING


class TestAbort:

    @pytest.mark.parametrize("path", [
        [State.PLANNING],
        [State.PLANNING, State.DECIDING],
        [State.PLANNING, State.DECIDING, State.EXECUTING],
    ])
    def test_abort_recovers_to_idle_through_error(self, path):
        sm = StateMachine()
        for state in path:
            sm.transition(state, "step")

        sm.abort("cancelled")

        assert sm.state == State.IDLE
        assert sm.history[-2].to_state == State.ERROR

    def test_abort_when_idle_is_noop(self):
        sm = StateMachine()
        sm.abort("nothing running")
        assert sm.history == []

    def test_history_summary(self):
        sm = StateMachine()
        assert sm.get_history_summary() == "No transitions recorded."
        sm.transition(State.PLANNING, "user turn")
        assert "user turn" in sm.get_history_summary()
