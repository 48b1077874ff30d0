"""
StatusTransitionGuard -- compare-and-swap status changes.

Responsibility:
    Applies a workflow action to a row with a single conditional UPDATE:

        UPDATE <table> SET status = :to, ...
         WHERE id = :id AND status IN (:from_states)

    Zero affected rows means another caller already moved the row; the
    outcome reports ``applied=False`` and the caller decides whether that
    is an idempotent success.

Architecture position:
    Kernel > Services.  Workflow-agnostic: any model with ``id`` and
    ``status`` columns can be guarded.

Failure modes:
    - InvalidTransitionError when the row's current status has no
      transition for the action (checked before the UPDATE).
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from factor_kernel.domain.workflow import Workflow
from factor_kernel.exceptions import InvalidTransitionError
from factor_kernel.logging_config import get_logger

logger = get_logger("services.state_transition")


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of one compare-and-swap attempt."""

    entity_id: UUID
    action: str
    from_states: tuple[str, ...]
    to_state: str
    applied: bool


class StatusTransitionGuard:
    """Workflow-checked compare-and-swap on a ``status`` column."""

    def __init__(self, session: Session, workflow: Workflow):
        self._session = session
        self._workflow = workflow

    @property
    def workflow(self) -> Workflow:
        return self._workflow

    def check(self, entity_id: UUID, current_status: str, action: str) -> None:
        """Raise InvalidTransitionError unless ``action`` is allowed now."""
        if self._workflow.find_transition(current_status, action) is None:
            raise InvalidTransitionError(str(entity_id), current_status, action)

    def transition(
        self,
        model_cls: type,
        entity_id: UUID,
        action: str,
        values: dict[str, Any] | None = None,
    ) -> TransitionOutcome:
        """
        Move ``entity_id`` along ``action`` if it is still in a source state.

        Postconditions:
            - applied=True: exactly one row now has the target status and
              ``values`` written in the same statement.
            - applied=False: nothing was written.
        """
        from_states = self._workflow.sources_for(action)
        to_state = self._workflow.target_for(action)

        stmt = (
            update(model_cls)
            .where(model_cls.id == entity_id, model_cls.status.in_(from_states))
            .values(status=to_state, **(values or {}))
            .execution_options(synchronize_session="fetch")
        )
        result = self._session.execute(stmt)
        applied = result.rowcount == 1

        outcome = TransitionOutcome(
            entity_id=entity_id,
            action=action,
            from_states=from_states,
            to_state=to_state,
            applied=applied,
        )

        if applied:
            logger.info(
                "status_transition_applied",
                extra={
                    "workflow": self._workflow.name,
                    "entity_id": str(entity_id),
                    "action": action,
                    "to_state": to_state,
                },
            )
        else:
            logger.warning(
                "status_transition_lost_race",
                extra={
                    "workflow": self._workflow.name,
                    "entity_id": str(entity_id),
                    "action": action,
                    "from_states": list(from_states),
                },
            )
        return outcome
