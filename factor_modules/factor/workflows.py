"""
Factor Operation Workflow.

State machine for the lifecycle of an operation sent to a factor.
"""

from factor_kernel.domain.workflow import Guard, Transition, Workflow
from factor_kernel.logging_config import get_logger

logger = get_logger("modules.factor.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_ITEMS = Guard(
    name="has_items",
    description="Operation has at least one item",
)

HAS_RESPONSES = Guard(
    name="has_responses",
    description="Factor answered the current version at least once",
)


# -----------------------------------------------------------------------------
# Operation Workflow
# -----------------------------------------------------------------------------

SEND = "send"
CONCLUDE = "conclude"
CANCEL = "cancel"

OPERATION_WORKFLOW = Workflow(
    name="factor_operation",
    description="Factor operation lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "sent_to_factor",
        "completed",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "sent_to_factor", action=SEND, guard=HAS_ITEMS),
        Transition("sent_to_factor", "completed", action=CONCLUDE, guard=HAS_RESPONSES, posts_entry=True),
        Transition("draft", "cancelled", action=CANCEL),
        Transition("sent_to_factor", "cancelled", action=CANCEL),
    ),
    terminal_states=("completed", "cancelled"),
)

logger.info(
    "factor_operation_workflow_registered",
    extra={
        "workflow_name": OPERATION_WORKFLOW.name,
        "state_count": len(OPERATION_WORKFLOW.states),
        "transition_count": len(OPERATION_WORKFLOW.transitions),
        "initial_state": OPERATION_WORKFLOW.initial_state,
    },
)
