"""Tests for the generic workflow value objects (crm_kernel.domain.workflow)."""

import pytest

from crm_kernel.domain.workflow import Guard, Transition, Workflow


def _workflow(**overrides):
    params = dict(
        name="ticket",
        description="test lifecycle",
        initial_state="open",
        states=("open", "working", "closed"),
        transitions=(
            Transition("open", "working", action="start"),
            Transition("working", "closed", action="close", guard=Guard("done", "work finished")),
        ),
        terminal_states=("closed",),
    )
    params.update(overrides)
    return Workflow(**params)


class TestWorkflow:

    def test_find_transition(self):
        wf = _workflow()
        t = wf.find_transition("working", "closed")
        assert t is not None
        assert t.guard.name == "done"
        assert wf.find_transition("open", "closed") is None

    def test_targets_from(self):
        assert _workflow().targets_from("open") == ("working",)

    def test_terminal(self):
        wf = _workflow()
        assert wf.is_terminal("closed")
        assert not wf.is_terminal("open")

    def test_unknown_initial_state_rejected(self):
        with pytest.raises(ValueError, match="initial state"):
            _workflow(initial_state="draft")

    def test_unknown_transition_state_rejected(self):
        with pytest.raises(ValueError, match="unknown state"):
            _workflow(transitions=(Transition("open", "gone", action="x"),))

    def test_terminal_state_cannot_have_outgoing_edge(self):
        with pytest.raises(ValueError, match="outgoing"):
            _workflow(transitions=(Transition("closed", "open", action="reopen"),))
