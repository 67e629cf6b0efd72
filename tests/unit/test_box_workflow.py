"""
Transport box workflow tests.

The lifecycle is data; these tests pin down which transitions exist and
that the Workflow type rejects inconsistent definitions.
"""

import pytest

from warehouse_kernel.domain.workflow import Guard, Transition, Workflow
from warehouse_modules.transport.models import TERMINAL_STATES, BoxState
from warehouse_modules.transport.service import GUARD_CHECKS
from warehouse_modules.transport.workflows import BOX_WORKFLOW, HAS_ITEMS, PICKING_COMPLETE


class TestBoxWorkflowDefinition:

    def test_states_match_box_state_enum(self):
        assert set(BOX_WORKFLOW.states) == {s.value for s in BoxState}

    def test_initial_state_is_new(self):
        assert BOX_WORKFLOW.initial_state == BoxState.NEW.value

    def test_terminal_states_match_enum(self):
        assert set(BOX_WORKFLOW.terminal_states) == {s.value for s in TERMINAL_STATES}

    @pytest.mark.parametrize(
        "from_state,action,to_state",
        [
            ("new", "load", "items_loading"),
            ("items_loading", "request_picking", "picking_requested"),
            ("picking_requested", "mark_packed", "packed"),
            ("packed", "ship", "shipped"),
        ],
    )
    def test_happy_path(self, from_state, action, to_state):
        transition = BOX_WORKFLOW.find_transition(from_state, action)
        assert transition is not None
        assert transition.to_state == to_state

    @pytest.mark.parametrize("state", ["new", "items_loading", "picking_requested", "packed"])
    def test_cancel_from_every_non_terminal_state(self, state):
        transition = BOX_WORKFLOW.find_transition(state, "cancel")
        assert transition.to_state == "cancelled"
        assert transition.guard is None

    @pytest.mark.parametrize("state", ["shipped", "cancelled"])
    def test_terminal_states_have_no_transitions(self, state):
        assert BOX_WORKFLOW.is_terminal(state)
        assert not [t for t in BOX_WORKFLOW.transitions if t.from_state == state]

    def test_no_shortcut_from_loading_to_packed(self):
        assert BOX_WORKFLOW.find_transition("items_loading", "mark_packed") is None
        assert BOX_WORKFLOW.find_transition("picking_requested", "ship") is None

    def test_states_allowing(self):
        assert BOX_WORKFLOW.states_allowing("ship") == ("packed",)
        assert BOX_WORKFLOW.states_allowing("request_picking") == ("items_loading",)
        assert BOX_WORKFLOW.states_allowing("teleport") == ()

    def test_guards_attached(self):
        assert BOX_WORKFLOW.find_transition("items_loading", "request_picking").guard is HAS_ITEMS
        assert BOX_WORKFLOW.find_transition("picking_requested", "mark_packed").guard is PICKING_COMPLETE

    def test_every_guard_has_a_check(self):
        guarded = {t.guard.name for t in BOX_WORKFLOW.transitions if t.guard is not None}
        assert guarded == set(GUARD_CHECKS)


class TestWorkflowConsistency:

    def test_initial_state_must_be_declared(self):
        with pytest.raises(ValueError, match="initial state"):
            Workflow(
                name="w", description="", initial_state="x",
                states=("a",), transitions=(),
            )

    def test_transition_to_unknown_state(self):
        with pytest.raises(ValueError, match="unknown state"):
            Workflow(
                name="w", description="", initial_state="a",
                states=("a",), transitions=(Transition("a", "b", action="go"),),
            )

    def test_terminal_state_cannot_have_outgoing(self):
        with pytest.raises(ValueError, match="terminal state"):
            Workflow(
                name="w", description="", initial_state="a",
                states=("a", "b"),
                transitions=(Transition("b", "a", action="back"),),
                terminal_states=("b",),
            )

    def test_transition_carries_guard(self):
        guard = Guard(name="g", description="always")
        assert Transition("a", "b", action="go", guard=guard).guard.name == "g"
