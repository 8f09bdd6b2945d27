"""
Session phase state machine.

OPEN accepts trades for the current round. SETTLING is the exclusive window
in which the next round's prices are published. CLOSED is terminal, reached
after the final round or by an administrator.
"""

from typing import Any, Optional

from ..errors import StateTransitionError
from ..logging.config import get_state_logger, log_state_transition
from .models import SessionPhase

state_logger = get_state_logger(__name__)

ALLOWED_TRANSITIONS: dict[SessionPhase, frozenset[SessionPhase]] = {
    SessionPhase.OPEN: frozenset({SessionPhase.SETTLING, SessionPhase.CLOSED}),
    SessionPhase.SETTLING: frozenset({SessionPhase.OPEN, SessionPhase.CLOSED}),
    SessionPhase.CLOSED: frozenset(),
}


def can_transition(current: SessionPhase, target: SessionPhase) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(
    session_id: str,
    current: SessionPhase,
    target: SessionPhase,
    trigger: str,
    context: Optional[dict[str, Any]] = None
) -> SessionPhase:
    """
    Validate and log a phase transition.

    Returns:
        The target phase

    Raises:
        StateTransitionError: target is not reachable from current
    """
    if not can_transition(current, target):
        raise StateTransitionError(
            f"Invalid phase transition from {current.value} to {target.value}",
            current_state=current.value,
            attempted_transition=target.value,
            context={"session_id": session_id, "trigger": trigger}
        )

    log_state_transition(
        state_logger,
        session_id=session_id,
        from_state=current.value,
        to_state=target.value,
        trigger=trigger,
        context=context
    )
    return target
