"""
Transport Box Workflow.

The box lifecycle declared as data.  The service looks every transition up
here; a missing transition is an InvalidBoxStateError.  Each guard named
here has a check registered in ``service.GUARD_CHECKS``.
"""

from warehouse_kernel.domain.workflow import Guard, Transition, Workflow
from warehouse_kernel.logging_config import get_logger

logger = get_logger("modules.transport.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_ITEMS = Guard(
    name="has_items",
    description="Box contains at least one item",
)

PICKING_COMPLETE = Guard(
    name="picking_complete",
    description="Every picking list line is acknowledged as picked",
)

logger.info(
    "transport_workflow_guards_defined",
    extra={
        "guards": [
            HAS_ITEMS.name,
            PICKING_COMPLETE.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Box Workflow
# -----------------------------------------------------------------------------

_NON_TERMINAL = ("new", "items_loading", "picking_requested", "packed")

BOX_WORKFLOW = Workflow(
    name="transport_box",
    description="Transport box from creation to shipment",
    initial_state="new",
    states=(
        "new",
        "items_loading",
        "picking_requested",
        "packed",
        "shipped",
        "cancelled",
    ),
    transitions=(
        # Fired by the first item add
        Transition("new", "items_loading", action="load"),
        Transition("items_loading", "picking_requested", action="request_picking", guard=HAS_ITEMS),
        Transition("picking_requested", "packed", action="mark_packed", guard=PICKING_COMPLETE),
        Transition("packed", "shipped", action="ship"),
        *(Transition(state, "cancelled", action="cancel") for state in _NON_TERMINAL),
    ),
    terminal_states=("shipped", "cancelled"),
)

logger.info(
    "transport_box_workflow_registered",
    extra={
        "workflow_name": BOX_WORKFLOW.name,
        "state_count": len(BOX_WORKFLOW.states),
        "transition_count": len(BOX_WORKFLOW.transitions),
        "initial_state": BOX_WORKFLOW.initial_state,
    },
)
